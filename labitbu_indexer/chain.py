"""Chain data access used by the indexer.

:class:`ChainDataClient` combines three services behind one narrow surface:
blocks come from a Bitcoin Core node over JSON-RPC, sat ranges and
inscriptions from an ord server, and spend edges from an Esplora explorer.
Every failure is raised as a :class:`~labitbu_indexer.rpc_client.ChainServiceError`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .config import IndexerConfig
from .http_client import EsploraClient, HTTPServiceError, OrdClient
from .model import InscriptionDetail, OutputInfo, OutspendInfo, Transaction, TxInput
from .rpc_client import BitcoinRPCClient, RPCTransportError

logger = logging.getLogger(__name__)


def _decode_witness(txid: str, vin_index: int, items: List[Any]) -> List[bytes]:
    witness: List[bytes] = []
    for item in items:
        try:
            witness.append(bytes.fromhex(item))
        except (TypeError, ValueError):
            logger.debug("Skipping undecodable witness on %s:%d", txid, vin_index)
            return []
    return witness


def transaction_from_json(tx_json: Dict[str, Any]) -> Transaction:
    """Build a :class:`Transaction` from ``getblock <hash> 2`` transaction JSON."""

    txid = tx_json.get("txid") or tx_json.get("hash") or ""
    inputs = [
        TxInput(witness=_decode_witness(txid, index, vin.get("txinwitness") or []))
        for index, vin in enumerate(tx_json.get("vin", []))
    ]
    return Transaction(txid=txid, inputs=inputs)


class ChainDataClient:
    """Block, output, outspend and inscription lookups for the indexer."""

    def __init__(
        self,
        ord_client: OrdClient,
        esplora_client: EsploraClient,
        rpc_client: BitcoinRPCClient | None = None,
        tip_timeout: float = 30.0,
    ) -> None:
        self.ord = ord_client
        self.esplora = esplora_client
        self.rpc = rpc_client
        self.tip_timeout = tip_timeout

    @classmethod
    def from_config(cls, config: IndexerConfig, *, with_rpc: bool = True) -> "ChainDataClient":
        rpc = BitcoinRPCClient(config.rpc, timeout=config.tip_timeout) if with_rpc else None
        return cls(
            OrdClient(config.ord_url, timeout=config.lookup_timeout),
            EsploraClient(config.esplora_url, timeout=config.lookup_timeout),
            rpc,
            tip_timeout=config.tip_timeout,
        )

    def get_chain_tip_height(self) -> int:
        return self.ord.block_height(timeout=self.tip_timeout)

    def get_block_transactions(self, height: int) -> List[Transaction]:
        if self.rpc is None:
            raise RPCTransportError("No RPC client configured for block retrieval")
        block = self.rpc.getblock_by_height(height)
        if not isinstance(block, dict):
            raise RPCTransportError(f"Unexpected getblock payload for height {height}")
        return [transaction_from_json(tx) for tx in block.get("tx") or []]

    def get_output(self, txid: str, index: int) -> OutputInfo:
        data = self.ord.output(txid, index)
        ranges = data.get("sat_ranges") or []
        try:
            sat_ranges = [[int(bound) for bound in r] for r in ranges]
        except (TypeError, ValueError) as exc:
            raise HTTPServiceError(f"Unexpected sat_ranges payload: {ranges!r}", self.ord.base_url) from exc
        return OutputInfo(spent=bool(data.get("spent")), sat_ranges=sat_ranges)

    def get_outspend(self, txid: str, index: int) -> OutspendInfo:
        data = self.esplora.outspend(txid, index)
        if not data.get("spent"):
            return OutspendInfo(spent=False)
        vin = data.get("vin")
        try:
            spender_input_index = int(vin) if vin is not None else None
        except (TypeError, ValueError) as exc:
            raise HTTPServiceError(f"Unexpected outspend vin: {vin!r}", self.esplora.base_url) from exc
        return OutspendInfo(
            spent=True,
            spender_txid=data.get("txid"),
            spender_input_index=spender_input_index,
        )

    def get_inscriptions_for_unit(self, sat: int) -> List[str]:
        inscriptions = self.ord.sat(sat).get("inscriptions") or []
        if not isinstance(inscriptions, list):
            raise HTTPServiceError("Unexpected inscriptions payload", self.ord.base_url)
        return [str(item) for item in inscriptions]

    def get_inscription_detail(self, inscription_id: str) -> InscriptionDetail:
        data = self.ord.inscription(inscription_id)
        return InscriptionDetail(inscription_id=inscription_id, delegate=data.get("delegate"))

    def get_inscription_metadata(self, inscription_id: str) -> Optional[str]:
        return self.ord.metadata(inscription_id)

    def close(self) -> None:
        self.ord.close()
        self.esplora.close()
        if self.rpc is not None:
            self.rpc.close()
