"""Block polling engine that advances the indexing cursor.

The cursor holds the next height to scan. It only moves forward after a
block's records have been written and the database checkpointed, so an
interrupted run rescans at most the block it was working on. Record inserts
are idempotent on ``(txid, vin)``, which makes that rescan harmless.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from .chain import ChainDataClient
from .config import GENESIS_HEIGHT
from .extractor import extract_payloads
from .model import LabitbuRecord
from .store import RecordStore

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    IDLE = "idle"
    FETCHING_LATEST = "fetching_latest"
    CATCHING_UP = "catching_up"
    ERROR_BACKOFF = "error_backoff"


@dataclass
class CycleResult:
    start_height: int
    tip_height: int
    blocks_processed: int = 0
    records_inserted: int = 0
    caught_up: bool = False
    interrupted: bool = False


class BlockPoller:
    """Scan blocks from the cursor up to the chain tip for labitbu payloads."""

    def __init__(
        self,
        chain: ChainDataClient,
        store: RecordStore,
        start_height: int = GENESIS_HEIGHT,
        poll_interval: float = 1.0,
        error_retry_delay: float = 5.0,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.chain = chain
        self.store = store
        self.start_height = start_height
        self.poll_interval = poll_interval
        self.error_retry_delay = error_retry_delay
        self.stop_event = stop_event or threading.Event()
        self.state = PollerState.IDLE

    def _transition(self, state: PollerState) -> None:
        if state is not self.state:
            logger.info("Poller state %s -> %s", self.state.value, state.value)
        self.state = state

    def stop(self) -> None:
        self.stop_event.set()

    def current_cursor(self) -> int:
        cursor = self.store.get_cursor()
        return cursor if cursor > 0 else self.start_height

    def run_cycle(self) -> CycleResult:
        """Process every block from the cursor through the current tip once."""

        self._transition(PollerState.FETCHING_LATEST)
        cursor = self.current_cursor()
        tip = self.chain.get_chain_tip_height()

        if tip <= cursor:
            logger.info("Caught up to latest block (%d), waiting for new blocks...", tip)
            self._transition(PollerState.IDLE)
            return CycleResult(start_height=cursor, tip_height=tip, caught_up=True)

        self._transition(PollerState.CATCHING_UP)
        logger.info("Processing blocks %d to %d", cursor, tip)
        result = CycleResult(start_height=cursor, tip_height=tip)

        for height in range(cursor, tip + 1):
            if self.stop_event.is_set():
                logger.info("Stop requested, halting before block %d", height)
                result.interrupted = True
                break
            result.records_inserted += self.process_block(height)
            self.store.checkpoint()
            self.store.set_cursor(height + 1)
            result.blocks_processed += 1

        self._transition(PollerState.IDLE)
        return result

    def process_block(self, height: int) -> int:
        """Scan one block and persist its matches; return the number of new records."""

        transactions = self.chain.get_block_transactions(height)
        logger.info("Processing block %d (%d transactions)", height, len(transactions))

        inserted = 0
        for tx in transactions:
            for match in extract_payloads(tx):
                logger.info("Found labitbu in tx %s, checksum %s", tx.txid, match.checksum)
                record = LabitbuRecord(
                    txid=tx.txid, input_index=match.input_index, checksum=match.checksum
                )
                if self.store.insert_if_absent(record):
                    inserted += 1
                else:
                    logger.debug("Record %s:%d already indexed", tx.txid, match.input_index)
        return inserted

    def run_forever(self) -> None:
        """Poll until :meth:`stop` is called, backing off after failures."""

        logger.info("Starting indexing from block %d", self.current_cursor())
        while not self.stop_event.is_set():
            try:
                result = self.run_cycle()
            except Exception:
                logger.exception("Indexing error, retrying in %.1fs", self.error_retry_delay)
                self._transition(PollerState.ERROR_BACKOFF)
                self.stop_event.wait(self.error_retry_delay)
                continue
            if result.caught_up:
                self.stop_event.wait(self.poll_interval)
        self._transition(PollerState.IDLE)
        logger.info("Indexer stopped")
