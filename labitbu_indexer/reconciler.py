"""Attach and verify inscription ids for resolved labitbu records.

An inscription vouches for a labitbu only if it delegates to the labitbu
template inscription and its CBOR metadata names one of the labitbu txids
recorded for the same sat. Inscriptions that merely sit on the sat are not
enough.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Collection, Dict, List, Optional

import cbor2

from .chain import ChainDataClient
from .model import BatchReport, LabitbuRecord
from .rpc_client import ChainServiceError
from .store import RecordStore

logger = logging.getLogger(__name__)

EXPECTED_DELEGATE = "0afcead3c7b6c065ec4e00411aec22f04f8b93d9a81de690bbc161b14d1beb00i0"
METADATA_KEY = "labitbu"

REASON_WRONG_DELEGATE = "wrong delegate"
REASON_NO_METADATA = "no metadata"
REASON_NO_LABITBU_KEY = "no labitbu key"
REASON_WRONG_TXID = "wrong txid"
REASON_API_ERROR = "api error"
REASON_NO_TXIDS = "no txids for sat"


@dataclass(frozen=True)
class CheckResult:
    inscription_id: str
    ok: bool
    reason: Optional[str] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class ValidationOutcome:
    """What validation mode decided for one record.

    ``action`` is ``"kept"``, ``"replaced"`` or ``"cleared"``.
    """

    record_id: Optional[int]
    action: str
    check: CheckResult
    inscription_id: Optional[str] = None


def decode_metadata(metadata_hex: str) -> Optional[Dict[Any, Any]]:
    """Decode hex-encoded CBOR metadata into a mapping, or ``None``."""

    try:
        decoded = cbor2.loads(bytes.fromhex(metadata_hex))
    except (ValueError, cbor2.CBORDecodeError) as exc:
        logger.debug("Error decoding CBOR metadata: %s", exc)
        return None
    if not isinstance(decoded, dict):
        return None
    return decoded


class InscriptionReconciler:
    def __init__(
        self,
        chain: ChainDataClient,
        store: RecordStore,
        expected_delegate: str = EXPECTED_DELEGATE,
    ) -> None:
        self.chain = chain
        self.store = store
        self.expected_delegate = expected_delegate

    def check_candidate(self, inscription_id: str, valid_txids: Collection[str]) -> CheckResult:
        """Run the delegate and metadata round-trip checks for one inscription."""

        try:
            detail = self.chain.get_inscription_detail(inscription_id)
            if detail.delegate != self.expected_delegate:
                return CheckResult(inscription_id, False, REASON_WRONG_DELEGATE, detail.delegate)

            metadata_hex = self.chain.get_inscription_metadata(inscription_id)
        except ChainServiceError as exc:
            return CheckResult(inscription_id, False, REASON_API_ERROR, str(exc))

        if not metadata_hex:
            return CheckResult(inscription_id, False, REASON_NO_METADATA)

        metadata = decode_metadata(metadata_hex)
        if not metadata or not metadata.get(METADATA_KEY):
            return CheckResult(inscription_id, False, REASON_NO_LABITBU_KEY)

        claimed = metadata[METADATA_KEY]
        if not isinstance(claimed, str) or claimed not in valid_txids:
            return CheckResult(inscription_id, False, REASON_WRONG_TXID, str(claimed))
        return CheckResult(inscription_id, True)

    def find_valid_inscription(
        self,
        sat: int,
        valid_txids: Collection[str],
        exclude: Optional[str] = None,
    ) -> Optional[str]:
        """Return the first inscription on ``sat`` that passes the check.

        Listing the sat's inscriptions is not isolated: a failure there raises
        :class:`ChainServiceError` because nothing can be concluded.
        """

        for inscription_id in self.chain.get_inscriptions_for_unit(sat):
            if inscription_id == exclude:
                continue
            result = self.check_candidate(inscription_id, valid_txids)
            if result.ok:
                return inscription_id
            logger.debug("Candidate %s on sat %d rejected: %s", inscription_id, sat, result.reason)
        return None

    def assign(self, sat: int) -> Optional[str]:
        """Assignment mode: attach the first valid inscription to all records on ``sat``."""

        records = self.store.find_by_sat(sat)
        valid_txids = {record.txid for record in records}
        if not valid_txids:
            return None

        inscription_id = self.find_valid_inscription(sat, valid_txids)
        if inscription_id is None:
            logger.info("No valid inscription found for sat %d", sat)
            return None

        for record in records:
            self.store.update_inscription(record.id, inscription_id)
        logger.info("Assigned inscription %s to %d entries on sat %d", inscription_id, len(records), sat)
        return inscription_id

    def validate(self, record: LabitbuRecord) -> ValidationOutcome:
        """Validation mode: keep, replace or clear ``record.inscription_id``."""

        current = record.inscription_id or ""
        valid_txids = self.store.find_txids_for_sat(record.sat) if record.sat is not None else []
        if not valid_txids:
            check = CheckResult(current, False, REASON_NO_TXIDS)
            self.store.update_inscription(record.id, None)
            return ValidationOutcome(record.id, "cleared", check)

        check = self.check_candidate(current, valid_txids)
        if check.ok:
            return ValidationOutcome(record.id, "kept", check, current)

        alternative = self.find_valid_inscription(record.sat, valid_txids, exclude=current)
        if alternative is not None:
            self.store.update_inscription(record.id, alternative)
            return ValidationOutcome(record.id, "replaced", check, alternative)

        self.store.update_inscription(record.id, None)
        return ValidationOutcome(record.id, "cleared", check)


def populate_inscriptions(
    store: RecordStore,
    reconciler: InscriptionReconciler,
    stop_event: threading.Event | None = None,
) -> BatchReport:
    """Assignment mode over every record that has a sat but no inscription."""

    entries = store.find_resolved_sat_no_inscription()
    by_sat: "OrderedDict[int, List[LabitbuRecord]]" = OrderedDict()
    for entry in entries:
        by_sat.setdefault(entry.sat, []).append(entry)

    report = BatchReport(total=len(entries))
    logger.info("Processing %d entries on %d sats with no inscription", len(entries), len(by_sat))

    for sat, group in by_sat.items():
        if stop_event is not None and stop_event.is_set():
            report.interrupted = True
            break
        try:
            inscription_id = reconciler.assign(sat)
        except Exception:
            report.errors += len(group)
            logger.exception("Error assigning inscription for sat %d", sat)
            continue
        if inscription_id is None:
            report.unresolved += len(group)
        else:
            report.updated += len(group)
    return report
