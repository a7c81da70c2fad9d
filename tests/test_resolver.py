from __future__ import annotations

import threading

from labitbu_indexer.chain import ChainDataClient
from labitbu_indexer.model import LabitbuRecord, OutputInfo, OutspendInfo
from labitbu_indexer.resolver import MAX_SPEND_DEPTH, SatResolver, populate_sats
from labitbu_indexer.rpc_client import ChainServiceError


class StubChain:
    """Outputs and spend edges keyed by txid (output 0 only)."""

    def __init__(self) -> None:
        self.outputs: dict[str, OutputInfo] = {}
        self.outspends: dict[str, OutspendInfo] = {}
        self.failing: set[str] = set()
        self.output_calls: list[str] = []

    def unspent(self, txid: str, *ranges: list[int]) -> None:
        self.outputs[txid] = OutputInfo(spent=False, sat_ranges=[list(r) for r in ranges])

    def spent(self, txid: str, spender: str, vin: int = 0) -> None:
        self.outputs[txid] = OutputInfo(spent=True)
        self.outspends[txid] = OutspendInfo(spent=True, spender_txid=spender, spender_input_index=vin)

    def get_output(self, txid: str, index: int) -> OutputInfo:
        assert index == 0
        self.output_calls.append(txid)
        if txid in self.failing:
            raise ChainServiceError("timeout")
        return self.outputs[txid]

    def get_outspend(self, txid: str, index: int) -> OutspendInfo:
        assert index == 0
        return self.outspends[txid]


def test_unspent_output_returns_first_sat() -> None:
    chain = StubChain()
    chain.unspent("a", [5000, 5010])
    assert SatResolver(chain).resolve("a") == 5000


def test_follows_input_zero_spend_chain() -> None:
    chain = StubChain()
    chain.spent("a", "b")
    chain.spent("b", "c")
    chain.spent("c", "d")
    chain.unspent("d", [7000, 7001], [9000, 9005])

    assert SatResolver(chain).resolve("a") == 7000
    assert chain.output_calls == ["a", "b", "c", "d"]


def test_spend_at_other_input_is_unresolved() -> None:
    chain = StubChain()
    chain.spent("a", "b")
    chain.spent("b", "c", vin=1)
    chain.unspent("c", [7000, 7001])

    assert SatResolver(chain).resolve("a") is None
    assert "c" not in chain.output_calls


def test_unspent_without_ranges_is_unresolved() -> None:
    chain = StubChain()
    chain.unspent("a")
    assert SatResolver(chain).resolve("a") is None


def test_ord_and_esplora_disagreeing_is_unresolved() -> None:
    chain = StubChain()
    chain.outputs["a"] = OutputInfo(spent=True)
    chain.outspends["a"] = OutspendInfo(spent=False)
    assert SatResolver(chain).resolve("a") is None


def test_depth_bound() -> None:
    chain = StubChain()
    txids = [f"t{i}" for i in range(MAX_SPEND_DEPTH + 2)]
    for current, spender in zip(txids, txids[1:]):
        chain.spent(current, spender)
    chain.unspent(txids[-1], [1, 2])

    assert SatResolver(chain).resolve("t0") is None
    assert len(chain.output_calls) == MAX_SPEND_DEPTH + 1


def test_exactly_max_depth_hops_resolves() -> None:
    chain = StubChain()
    txids = [f"t{i}" for i in range(MAX_SPEND_DEPTH + 1)]
    for current, spender in zip(txids, txids[1:]):
        chain.spent(current, spender)
    chain.unspent(txids[-1], [42, 43])

    assert SatResolver(chain).resolve("t0") == 42


def test_network_error_is_unresolved() -> None:
    chain = StubChain()
    chain.spent("a", "b")
    chain.failing.add("b")
    assert SatResolver(chain).resolve("a") is None


class PayloadOrd:
    base_url = "http://ord"

    def __init__(self, outputs: dict[str, dict]) -> None:
        self.outputs = outputs

    def output(self, txid: str, index: int) -> dict:
        return self.outputs[txid]


class PayloadEsplora:
    base_url = "https://esplora/api"

    def __init__(self, outspends: dict[str, dict]) -> None:
        self.outspends = outspends

    def outspend(self, txid: str, index: int) -> dict:
        return self.outspends[txid]


def test_malformed_sat_ranges_payload_is_unresolved() -> None:
    chain = ChainDataClient(PayloadOrd({"aa": {"spent": False, "sat_ranges": [5000, 5010]}}), PayloadEsplora({}))
    assert SatResolver(chain).resolve("aa") is None


def test_malformed_outspend_vin_is_unresolved() -> None:
    chain = ChainDataClient(
        PayloadOrd({"aa": {"spent": True}}),
        PayloadEsplora({"aa": {"spent": True, "txid": "bb", "vin": "x"}}),
    )
    assert SatResolver(chain).resolve("aa") is None



class MemoryStore:
    def __init__(self, records: list[LabitbuRecord]) -> None:
        self.records = {r.id: r for r in records}
        self.fail_on: set[int] = set()

    def find_unresolved_sat(self) -> list[LabitbuRecord]:
        return [r for r in self.records.values() if r.sat is None]

    def update_sat(self, record_id: int, sat: int) -> None:
        if record_id in self.fail_on:
            raise RuntimeError("disk full")
        self.records[record_id].sat = sat


def test_populate_sats_isolates_failures() -> None:
    chain = StubChain()
    chain.unspent("a", [100, 101])
    chain.unspent("b", [200, 201])
    chain.unspent("c")
    store = MemoryStore(
        [
            LabitbuRecord(id=1, txid="a", input_index=0, checksum="00"),
            LabitbuRecord(id=2, txid="b", input_index=0, checksum="01"),
            LabitbuRecord(id=3, txid="c", input_index=0, checksum="02"),
        ]
    )
    store.fail_on.add(1)

    report = populate_sats(store, SatResolver(chain))

    assert report.total == 3
    assert report.errors == 1
    assert report.updated == 1
    assert report.unresolved == 1
    assert store.records[2].sat == 200
    assert store.records[1].sat is None


def test_populate_sats_honors_stop_event() -> None:
    chain = StubChain()
    chain.unspent("a", [100, 101])
    store = MemoryStore([LabitbuRecord(id=1, txid="a", input_index=0, checksum="00")])
    stop = threading.Event()
    stop.set()

    report = populate_sats(store, SatResolver(chain), stop)

    assert report.interrupted is True
    assert store.records[1].sat is None
