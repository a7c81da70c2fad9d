"""Periodic re-validation of records that already carry an inscription id."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field

from .reconciler import InscriptionReconciler
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    total: int = 0
    valid: int = 0
    invalid: int = 0
    replaced: int = 0
    cleared: int = 0
    errors: int = 0
    interrupted: bool = False
    reasons: Counter = field(default_factory=Counter)

    def log_summary(self) -> None:
        logger.info(
            "Validation results: total=%d valid=%d invalid=%d replaced=%d cleared=%d errors=%d",
            self.total,
            self.valid,
            self.invalid,
            self.replaced,
            self.cleared,
            self.errors,
        )
        for reason, count in sorted(self.reasons.items()):
            logger.info("  %s: %d", reason, count)


class ValidationSweep:
    """Re-run the inscription check on every reconciled record.

    Each record is handled on its own: a failure is logged, counted and the
    sweep moves on to the next record.
    """

    def __init__(
        self,
        store: RecordStore,
        reconciler: InscriptionReconciler,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.stop_event = stop_event or threading.Event()

    def run(self) -> SweepReport:
        entries = self.store.find_with_inscription()
        report = SweepReport(total=len(entries))
        logger.info("Found %d entries with inscriptions to validate", len(entries))

        for entry in entries:
            if self.stop_event.is_set():
                report.interrupted = True
                logger.info("Validation sweep interrupted")
                break
            try:
                outcome = self.reconciler.validate(entry)
            except Exception:
                report.errors += 1
                logger.exception("Error processing entry %s", entry.id)
                continue

            if outcome.action == "kept":
                report.valid += 1
                continue

            report.invalid += 1
            report.reasons[outcome.check.reason or "unknown"] += 1
            logger.info(
                "Entry %s (%s): %s%s",
                entry.id,
                entry.txid,
                outcome.check.reason,
                f" ({outcome.check.detail})" if outcome.check.detail else "",
            )
            if outcome.action == "replaced":
                report.replaced += 1
                logger.info("Updated entry %s with valid inscription %s", entry.id, outcome.inscription_id)
            else:
                report.cleared += 1
                logger.info("Cleared invalid inscription from entry %s", entry.id)

        report.log_summary()
        return report
