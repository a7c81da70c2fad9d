"""Labitbu indexer: find labitbu images on chain and reconcile their inscriptions."""

from .chain import ChainDataClient
from .config import ConfigurationError, IndexerConfig, RPCConfig, load_indexer_config
from .extractor import LABITBU_INTERNAL_KEY, extract_payloads, parse_control_block
from .model import LabitbuRecord, PayloadMatch, Transaction, TxInput
from .poller import BlockPoller, PollerState
from .reconciler import EXPECTED_DELEGATE, CheckResult, InscriptionReconciler
from .resolver import MAX_SPEND_DEPTH, SatResolver
from .rpc_client import ChainServiceError
from .store import RecordStore, SQLiteRecordStore
from .sweep import SweepReport, ValidationSweep

__all__ = [
    "BlockPoller",
    "ChainDataClient",
    "ChainServiceError",
    "CheckResult",
    "ConfigurationError",
    "EXPECTED_DELEGATE",
    "IndexerConfig",
    "InscriptionReconciler",
    "LABITBU_INTERNAL_KEY",
    "LabitbuRecord",
    "MAX_SPEND_DEPTH",
    "PayloadMatch",
    "PollerState",
    "RPCConfig",
    "RecordStore",
    "SQLiteRecordStore",
    "SatResolver",
    "SweepReport",
    "Transaction",
    "TxInput",
    "ValidationSweep",
    "extract_payloads",
    "load_indexer_config",
    "parse_control_block",
]
