from __future__ import annotations

import json

import pytest
import requests

from labitbu_indexer.chain import ChainDataClient, transaction_from_json
from labitbu_indexer.config import RPCConfig
from labitbu_indexer.http_client import EsploraClient, HTTPServiceError, OrdClient
from labitbu_indexer.rpc_client import BitcoinRPCClient, ChainServiceError, RPCError, RPCTransportError


class FakeResponse:
    def __init__(self, status_code: int = 200, body=None, text: str | None = None) -> None:
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)
        self.url = "http://fake"

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._body is None and self.text:
            return json.loads(self.text)
        return self._body


class FakeSession:
    def __init__(self, routes: dict[str, object]) -> None:
        self.routes = routes
        self.requests: list[tuple[str, float]] = []
        self.posted: list[dict] = []
        self.closed = False

    def get(self, url: str, timeout: float):
        self.requests.append((url, timeout))
        route = self.routes[url]
        if isinstance(route, Exception):
            raise route
        return route

    def post(self, url: str, data: str, headers, auth, timeout: float):
        payload = json.loads(data)
        self.posted.append(payload)
        route = self.routes[payload["method"]]
        if isinstance(route, Exception):
            raise route
        return route

    def close(self) -> None:
        self.closed = True


def _ord(routes: dict[str, object]) -> OrdClient:
    client = OrdClient("http://ord/", timeout=10)
    client._session = FakeSession({f"http://ord{path}": r for path, r in routes.items()})
    return client


def _esplora(routes: dict[str, object]) -> EsploraClient:
    client = EsploraClient("https://esplora/api", timeout=10)
    client._session = FakeSession({f"https://esplora/api{path}": r for path, r in routes.items()})
    return client


def _rpc(routes: dict[str, object]) -> BitcoinRPCClient:
    client = BitcoinRPCClient(RPCConfig(user="u", password="p"))
    client._session = FakeSession(routes)
    return client


def test_tip_height_uses_long_timeout() -> None:
    ord_client = _ord({"/blockheight": FakeResponse(body=908123)})
    chain = ChainDataClient(ord_client, _esplora({}), tip_timeout=30)

    assert chain.get_chain_tip_height() == 908123
    assert ord_client._session.requests == [("http://ord/blockheight", 30)]


def test_output_and_outspend_mapping() -> None:
    chain = ChainDataClient(
        _ord({"/output/aa:0": FakeResponse(body={"spent": False, "sat_ranges": [[5000, 5010]]})}),
        _esplora(
            {
                "/tx/aa/outspend/0": FakeResponse(body={"spent": True, "txid": "bb", "vin": 1}),
                "/tx/cc/outspend/0": FakeResponse(body={"spent": False}),
            }
        ),
    )

    output = chain.get_output("aa", 0)
    assert output.spent is False
    assert output.sat_ranges == [[5000, 5010]]

    outspend = chain.get_outspend("aa", 0)
    assert (outspend.spent, outspend.spender_txid, outspend.spender_input_index) == (True, "bb", 1)
    assert chain.get_outspend("cc", 0).spent is False


def test_malformed_output_and_outspend_payloads_are_service_errors() -> None:
    chain = ChainDataClient(
        _ord({"/output/aa:0": FakeResponse(body={"spent": False, "sat_ranges": [5000, 5010]})}),
        _esplora({"/tx/aa/outspend/0": FakeResponse(body={"spent": True, "txid": "bb", "vin": "x"})}),
    )

    with pytest.raises(HTTPServiceError):
        chain.get_output("aa", 0)
    with pytest.raises(HTTPServiceError):
        chain.get_outspend("aa", 0)



def test_inscription_lookups() -> None:
    chain = ChainDataClient(
        _ord(
            {
                "/sat/5000": FakeResponse(body={"inscriptions": ["i0", "i1"]}),
                "/r/inscription/i0": FakeResponse(body={"delegate": "d0"}),
                "/r/metadata/i0": FakeResponse(body="a1676c6162697462756361626"),
                "/r/metadata/i1": FakeResponse(status_code=404, body=None, text=""),
            }
        ),
        _esplora({}),
    )

    assert chain.get_inscriptions_for_unit(5000) == ["i0", "i1"]
    assert chain.get_inscription_detail("i0").delegate == "d0"
    assert chain.get_inscription_metadata("i0") == "a1676c6162697462756361626"
    assert chain.get_inscription_metadata("i1") is None


def test_http_failures_become_chain_service_errors() -> None:
    chain = ChainDataClient(
        _ord(
            {
                "/output/aa:0": requests.Timeout("slow"),
                "/output/bb:0": FakeResponse(status_code=500, body={"error": "boom"}),
                "/output/cc:0": FakeResponse(status_code=200, body=None, text="<html>"),
            }
        ),
        _esplora({}),
    )

    for txid in ("aa", "bb", "cc"):
        with pytest.raises(ChainServiceError):
            chain.get_output(txid, 0)


def test_http_error_carries_status() -> None:
    client = _ord({"/sat/1": FakeResponse(status_code=503, body={})})
    with pytest.raises(HTTPServiceError) as excinfo:
        client.sat(1)
    assert excinfo.value.status_code == 503


def test_block_transactions_decode_witness_hex() -> None:
    rpc = _rpc(
        {
            "getblockhash": FakeResponse(body={"result": "hash", "error": None}),
            "getblock": FakeResponse(
                body={
                    "result": {
                        "height": 10,
                        "tx": [
                            {"txid": "coinbase", "vin": [{"coinbase": "03"}]},
                            {"txid": "t1", "vin": [{"txinwitness": ["0102", "ff"]}, {}]},
                        ],
                    },
                    "error": None,
                }
            ),
        }
    )
    chain = ChainDataClient(_ord({}), _esplora({}), rpc)

    txs = chain.get_block_transactions(10)

    assert [tx.txid for tx in txs] == ["coinbase", "t1"]
    assert txs[1].inputs[0].witness == [b"\x01\x02", b"\xff"]
    assert txs[1].inputs[1].witness == []
    assert [p["method"] for p in rpc._session.posted] == ["getblockhash", "getblock"]
    assert rpc._session.posted[1]["params"] == ["hash", 2]


def test_undecodable_witness_is_dropped() -> None:
    tx = transaction_from_json({"txid": "t", "vin": [{"txinwitness": ["zz", "00"]}]})
    assert tx.inputs[0].witness == []


def test_rpc_errors() -> None:
    rpc = _rpc(
        {
            "getblockhash": FakeResponse(
                status_code=500,
                body={"result": None, "error": {"code": -8, "message": "Block height out of range"}},
            ),
        }
    )
    with pytest.raises(RPCError) as excinfo:
        rpc.getblockhash(99999999)
    assert excinfo.value.code == -8

    unreachable = _rpc({"getblockhash": requests.ConnectionError("refused")})
    with pytest.raises(RPCTransportError):
        unreachable.getblockhash(1)


def test_rpc_non_object_body_is_transport_error() -> None:
    rpc = _rpc({"getblockhash": FakeResponse(body=["not", "an", "envelope"])})
    with pytest.raises(RPCTransportError):
        rpc.getblockhash(1)


def test_block_fetch_without_rpc_is_an_error() -> None:
    chain = ChainDataClient(_ord({}), _esplora({}))
    with pytest.raises(ChainServiceError):
        chain.get_block_transactions(1)


def test_close_releases_sessions() -> None:
    ord_client, esplora_client, rpc = _ord({}), _esplora({}), _rpc({})
    ChainDataClient(ord_client, esplora_client, rpc).close()
    assert ord_client._session.closed
    assert esplora_client._session.closed
    assert rpc._session.closed
