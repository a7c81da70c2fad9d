"""Witness scanning for labitbu payloads.

A labitbu is a taproot script-path spend whose control block carries a fixed
internal key and, hidden in the merkle path bytes, a RIFF (WebP) image. The
routines here are pure: they take bytes and return results, never touching
the network or the database, and malformed input always yields "no match".
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import List, Optional

from .model import PayloadMatch, Transaction

logger = logging.getLogger(__name__)

LABITBU_INTERNAL_KEY = bytes.fromhex(
    "96053db5b18967b5a410326ecca687441579225a6d190f398e2180deec6e429e"
)
WITNESS_STACK_SIZE = 3
MIN_CONTROL_BLOCK_SIZE = 8192
PAYLOAD_SIZE = 8192
RIFF_MARKER = b"RIFF"

# BIP341: <leaf version | parity> <32-byte internal key> <32-byte path nodes...>
_INTERNAL_KEY_OFFSET = 1
_INTERNAL_KEY_SIZE = 32
_CONTROL_BLOCK_HEADER_SIZE = _INTERNAL_KEY_OFFSET + _INTERNAL_KEY_SIZE


@dataclass(frozen=True)
class ControlBlock:
    """The fields of a taproot control block the indexer cares about."""

    leaf_version: int
    parity: int
    internal_key: bytes
    path: bytes


def parse_control_block(data: bytes) -> Optional[ControlBlock]:
    """Split ``data`` into control block fields, or ``None`` if it is too short."""

    if len(data) < _CONTROL_BLOCK_HEADER_SIZE:
        return None
    first = data[0]
    return ControlBlock(
        leaf_version=first & 0xFE,
        parity=first & 0x01,
        internal_key=bytes(data[_INTERNAL_KEY_OFFSET:_CONTROL_BLOCK_HEADER_SIZE]),
        path=bytes(data[_CONTROL_BLOCK_HEADER_SIZE:]),
    )


def find_riff_offset(data: bytes, start: int = 0) -> int:
    """Return the offset of the first RIFF marker at or after ``start``, or -1."""

    if start < 0 or start >= len(data):
        return -1
    return data.find(RIFF_MARKER, start)


def checksum_payload(data: bytes, offset: int) -> str:
    """SHA-256 of up to :data:`PAYLOAD_SIZE` bytes starting at ``offset``."""

    return hashlib.sha256(data[offset : offset + PAYLOAD_SIZE]).hexdigest()


def is_candidate_witness(witness: List[bytes]) -> bool:
    return len(witness) == WITNESS_STACK_SIZE and len(witness[2]) > MIN_CONTROL_BLOCK_SIZE


def extract_from_control_block(data: bytes) -> Optional[str]:
    """Return the payload checksum for a labitbu control block, else ``None``."""

    control_block = parse_control_block(data)
    if control_block is None:
        return None
    if control_block.internal_key != LABITBU_INTERNAL_KEY:
        return None

    offset = find_riff_offset(data, _CONTROL_BLOCK_HEADER_SIZE)
    if offset == -1:
        logger.info("Labitbu control block without a RIFF payload")
        return None
    return checksum_payload(data, offset)


def extract_payloads(tx: Transaction) -> List[PayloadMatch]:
    """Scan every input of ``tx`` and return the labitbu payloads found."""

    matches: List[PayloadMatch] = []
    for input_index, tx_input in enumerate(tx.inputs):
        if not is_candidate_witness(tx_input.witness):
            continue
        checksum = extract_from_control_block(tx_input.witness[2])
        if checksum is None:
            continue
        logger.debug("Labitbu payload in %s:%d checksum=%s", tx.txid, input_index, checksum)
        matches.append(PayloadMatch(input_index=input_index, checksum=checksum))
    return matches
