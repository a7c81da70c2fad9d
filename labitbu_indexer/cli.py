"""Command line interface for the labitbu indexer."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from .chain import ChainDataClient
from .config import ConfigurationError, IndexerConfig, load_indexer_config, set_default_config_path
from .poller import BlockPoller
from .reconciler import InscriptionReconciler, populate_inscriptions
from .resolver import SatResolver, populate_sats
from .rpc_client import ChainServiceError
from .store import SQLiteRecordStore, reset_database
from .sweep import ValidationSweep

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_PATH = Path("docs") / "db_export.json"


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Labitbu indexer")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument("--db", dest="db_path", default=None, help="SQLite database path")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup", help="Create the database schema")
    subparsers.add_parser("reset", help="Delete the database and recreate the schema")

    index_parser = subparsers.add_parser("index", help="Scan blocks for labitbu payloads")
    index_parser.add_argument(
        "--once", action="store_true", help="Run a single catch-up cycle and exit"
    )

    subparsers.add_parser("populate", help="Resolve sats, then assign verified inscriptions")
    subparsers.add_parser("validate", help="Re-validate assigned inscriptions")

    export_parser = subparsers.add_parser("export", help="Write all records and stats to JSON")
    export_parser.add_argument(
        "--output", default=str(DEFAULT_EXPORT_PATH), help="Destination JSON file"
    )

    subparsers.add_parser("stats", help="Print record statistics")
    return parser


def _load_config(args: argparse.Namespace) -> IndexerConfig:
    set_default_config_path(args.config)
    overrides: dict[str, Any] = {}
    if args.db_path:
        overrides["db_path"] = args.db_path
    return load_indexer_config(overrides=overrides)


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, _frame) -> None:
        logger.info("Shutting down gracefully (signal %d)...", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def cmd_setup(config: IndexerConfig) -> None:
    SQLiteRecordStore(config.db_path).close()
    logger.info("Database setup completed at %s", config.db_path)


def cmd_reset(config: IndexerConfig) -> None:
    reset_database(config.db_path).close()
    logger.info("Database reset at %s", config.db_path)


def cmd_index(config: IndexerConfig, args: argparse.Namespace, stop_event: threading.Event) -> None:
    config.rpc.require_credentials()
    _install_signal_handlers(stop_event)
    store = SQLiteRecordStore(config.db_path)
    chain = ChainDataClient.from_config(config)
    try:
        poller = BlockPoller(
            chain,
            store,
            start_height=config.start_height,
            poll_interval=config.poll_interval,
            error_retry_delay=config.error_retry_delay,
            stop_event=stop_event,
        )
        if args.once:
            result = poller.run_cycle()
            logger.info(
                "Cycle complete: %d blocks, %d new records",
                result.blocks_processed,
                result.records_inserted,
            )
        else:
            poller.run_forever()
    finally:
        chain.close()
        store.close()


def cmd_populate(config: IndexerConfig, stop_event: threading.Event) -> None:
    _install_signal_handlers(stop_event)
    store = SQLiteRecordStore(config.db_path)
    chain = ChainDataClient.from_config(config, with_rpc=False)
    try:
        sats = populate_sats(store, SatResolver(chain), stop_event)
        logger.info(
            "Sat population: %d updated, %d unresolved, %d errors",
            sats.updated,
            sats.unresolved,
            sats.errors,
        )
        if stop_event.is_set():
            return
        inscriptions = populate_inscriptions(store, InscriptionReconciler(chain, store), stop_event)
        logger.info(
            "Inscription population: %d updated, %d unresolved, %d errors",
            inscriptions.updated,
            inscriptions.unresolved,
            inscriptions.errors,
        )
    finally:
        chain.close()
        store.close()


def cmd_validate(config: IndexerConfig, stop_event: threading.Event) -> None:
    _install_signal_handlers(stop_event)
    store = SQLiteRecordStore(config.db_path)
    chain = ChainDataClient.from_config(config, with_rpc=False)
    try:
        ValidationSweep(store, InscriptionReconciler(chain, store), stop_event).run()
    finally:
        chain.close()
        store.close()


def cmd_export(config: IndexerConfig, args: argparse.Namespace) -> None:
    output = Path(args.output)
    with SQLiteRecordStore(config.db_path) as store:
        data = store.to_export_rows()
        stats = store.stats()
    output.parent.mkdir(parents=True, exist_ok=True)
    export = {
        "stats": stats,
        "data": data,
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
    }
    output.write_text(json.dumps(export, indent=2))
    logger.info("Exported %d entries to %s", len(data), output)


def cmd_stats(config: IndexerConfig) -> None:
    with SQLiteRecordStore(config.db_path) as store:
        stats = store.stats()
        stats["cursor"] = store.get_cursor()
    print(json.dumps(stats, indent=2))


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    stop_event = threading.Event()
    try:
        config = _load_config(args)
        if args.command == "setup":
            cmd_setup(config)
        elif args.command == "reset":
            cmd_reset(config)
        elif args.command == "index":
            cmd_index(config, args, stop_event)
        elif args.command == "populate":
            cmd_populate(config, stop_event)
        elif args.command == "validate":
            cmd_validate(config, stop_event)
        elif args.command == "export":
            cmd_export(config, args)
        elif args.command == "stats":
            cmd_stats(config)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except (CLIError, ConfigurationError, ChainServiceError) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
