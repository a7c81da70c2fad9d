"""Domain models shared by the extractor, the store and the enrichment passes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class TxInput:
    """A transaction input reduced to what the extractor needs."""

    witness: List[bytes] = field(default_factory=list)


@dataclass
class Transaction:
    txid: str
    inputs: List[TxInput] = field(default_factory=list)


@dataclass(frozen=True)
class PayloadMatch:
    """An embedded image found in the witness of ``input_index``."""

    input_index: int
    checksum: str


@dataclass
class LabitbuRecord:
    """One detected labitbu embedding.

    ``id`` is assigned by the store; records built in memory before insertion
    carry ``None``.
    """

    txid: str
    input_index: int
    checksum: str
    sat: Optional[int] = None
    inscription_id: Optional[str] = None
    id: Optional[int] = None


@dataclass
class OutputInfo:
    """ord's view of a transaction output."""

    spent: bool
    sat_ranges: List[List[int]] = field(default_factory=list)


@dataclass
class OutspendInfo:
    """Esplora's view of what spent a transaction output."""

    spent: bool
    spender_txid: Optional[str] = None
    spender_input_index: Optional[int] = None


@dataclass
class InscriptionDetail:
    inscription_id: str
    delegate: Optional[str] = None


@dataclass
class BatchReport:
    """Counters for one pass over a batch of records."""

    total: int = 0
    updated: int = 0
    unresolved: int = 0
    errors: int = 0
    interrupted: bool = False
