"""JSON-RPC client for Bitcoin Core compatible nodes.

Only the read paths needed to walk blocks by height are wrapped here. No
consensus logic is implemented; the client forwards well-typed requests and
surfaces failures as :class:`ChainServiceError` subclasses so callers can
decide whether a failure is fatal for the unit of work at hand.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Optional

import requests
from requests import RequestException, Response

from .config import RPCConfig

logger = logging.getLogger(__name__)

DEFAULT_RPC_TIMEOUT = 30


class ChainServiceError(RuntimeError):
    """Base class for failures talking to the node, ord or Esplora."""


class RPCError(ChainServiceError):
    """Raised when the node responds with an RPC error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RPCTransportError(ChainServiceError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BitcoinRPCClient:
    """Thin JSON-RPC client.

    Each helper maps directly to an RPC method exposed by the node and returns
    the parsed ``result`` field. Blocks are large, so the timeout is the long
    one by default.
    """

    def __init__(self, config: RPCConfig, timeout: float = DEFAULT_RPC_TIMEOUT) -> None:
        config.require_credentials()
        self.config = config
        self.timeout = timeout
        self._session = requests.Session()
        self._url = config.base_url

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request."""

        payload = {
            "jsonrpc": "1.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s params=%s", method, params)
        try:
            response = self._session.post(
                self._url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                auth=(self.config.user, self.config.password),
                timeout=self.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                "RPC connection failed. Ensure the node is reachable and LABITBU_RPC_* "
                "variables (or ~/.labitbu.yaml) point to the right host and port."
            ) from exc

        self._raise_for_status(response)
        try:
            result = response.json()
        except ValueError as exc:
            logger.debug("RPC JSON parse error: %s", response.text, exc_info=True)
            raise RPCTransportError("RPC server returned malformed JSON") from exc
        if not isinstance(result, dict):
            raise RPCTransportError("RPC server returned an unexpected JSON body")
        if result.get("error"):
            error = result["error"]
            if not isinstance(error, dict):
                raise RPCError(-1, str(error))
            raise RPCError(error.get("code", -1), error.get("message", "unknown"))
        return result.get("result")

    def _raise_for_status(self, response: Response) -> None:
        if response.ok:
            return
        # Bitcoin Core reports JSON-RPC errors as HTTP 500 with a JSON body.
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            raise RPCError(error.get("code", -1), error.get("message", "unknown"))

        logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
        if response.status_code == 401:
            raise RPCTransportError(
                "Unauthorized (401). Ensure LABITBU_RPC_USER/LABITBU_RPC_PASSWORD contain valid credentials.",
                status_code=response.status_code,
            )
        raise RPCTransportError(
            f"RPC server returned HTTP {response.status_code}",
            status_code=response.status_code,
        )

    def close(self) -> None:
        self._session.close()

    # Convenience wrappers -------------------------------------------------

    def getblockhash(self, height: int) -> str:
        return self.call("getblockhash", [height])

    def getblock(self, block_hash: str, verbosity: int = 1) -> Dict[str, Any]:
        return self.call("getblock", [block_hash, verbosity])

    def getblock_by_height(self, height: int) -> Dict[str, Any]:
        """Retrieve a block JSON payload by height using verbosity=2."""

        block_hash = self.getblockhash(height)
        return self.getblock(block_hash, verbosity=2)
