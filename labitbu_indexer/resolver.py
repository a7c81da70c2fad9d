"""Sat provenance: which sat does output 0 of a labitbu transaction carry?

ord can only report sat ranges for unspent outputs. When output 0 has been
spent the sat is followed forward through the spending chain, as long as each
spend consumes it at input 0 (so the first sat lands in the spender's output
0 again). Anything else is ambiguous and left unresolved.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .chain import ChainDataClient
from .model import BatchReport
from .rpc_client import ChainServiceError
from .store import RecordStore

logger = logging.getLogger(__name__)

MAX_SPEND_DEPTH = 10
TRACKED_OUTPUT = 0


class SatResolver:
    def __init__(self, chain: ChainDataClient, max_depth: int = MAX_SPEND_DEPTH) -> None:
        self.chain = chain
        self.max_depth = max_depth

    def resolve(self, txid: str) -> Optional[int]:
        """Return the first sat of ``txid:0`` (following spends), or ``None``."""

        try:
            return self._walk(txid)
        except ChainServiceError as exc:
            logger.warning("Sat lookup for %s failed: %s", txid, exc)
            return None

    def _walk(self, txid: str) -> Optional[int]:
        current = txid
        for depth in range(self.max_depth + 1):
            output = self.chain.get_output(current, TRACKED_OUTPUT)
            if not output.spent:
                if not output.sat_ranges or not output.sat_ranges[0]:
                    logger.info("No sat ranges for %s:%d", current, TRACKED_OUTPUT)
                    return None
                sat = int(output.sat_ranges[0][0])
                logger.info("Found sat %d for %s at depth %d", sat, txid, depth)
                return sat

            if depth == self.max_depth:
                break

            outspend = self.chain.get_outspend(current, TRACKED_OUTPUT)
            if not outspend.spent or outspend.spender_txid is None:
                logger.info(
                    "ord reports %s:%d spent but no spender is known yet", current, TRACKED_OUTPUT
                )
                return None
            if outspend.spender_input_index != 0:
                logger.info(
                    "%s:%d spent by %s:%s (not input 0), stopping",
                    current,
                    TRACKED_OUTPUT,
                    outspend.spender_txid,
                    outspend.spender_input_index,
                )
                return None
            logger.debug("%s:%d spent by %s:0", current, TRACKED_OUTPUT, outspend.spender_txid)
            current = outspend.spender_txid

        logger.info("Reached max depth %d for %s", self.max_depth, txid)
        return None


def populate_sats(
    store: RecordStore,
    resolver: SatResolver,
    stop_event: threading.Event | None = None,
) -> BatchReport:
    """Resolve the sat of every record that does not have one yet."""

    entries = store.find_unresolved_sat()
    report = BatchReport(total=len(entries))
    logger.info("Processing %d entries with null sat values", len(entries))

    for entry in entries:
        if stop_event is not None and stop_event.is_set():
            report.interrupted = True
            break
        try:
            sat = resolver.resolve(entry.txid)
            if sat is None:
                report.unresolved += 1
                logger.info("No sat found for entry %s", entry.id)
                continue
            store.update_sat(entry.id, sat)
            report.updated += 1
            logger.info("Updated entry %s: sat=%d", entry.id, sat)
        except Exception:
            report.errors += 1
            logger.exception("Error processing entry %s", entry.id)
    return report
