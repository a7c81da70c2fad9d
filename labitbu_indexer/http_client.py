"""HTTP clients for the ord server and an Esplora-compatible explorer."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from requests import RequestException

from .rpc_client import ChainServiceError

logger = logging.getLogger(__name__)


class HTTPServiceError(ChainServiceError):
    """Raised when an HTTP service is unreachable or answers with an error."""

    def __init__(self, message: str, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class JSONServiceClient:
    """Minimal JSON-over-HTTP client sharing one ``requests`` session."""

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"Accept": "application/json"})

    def get_json(
        self,
        path: str,
        *,
        timeout: float | None = None,
        allow_missing: bool = False,
    ) -> Any:
        """GET ``path`` and decode the JSON body.

        With ``allow_missing`` a 404 answer returns ``None`` instead of raising.
        """

        url = f"{self.base_url}{path}"
        logger.debug("GET %s", url)
        try:
            response = self._session.get(url, timeout=timeout or self.timeout)
        except RequestException as exc:
            logger.warning(
                "Request to %s failed: %s", url, exc, exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise HTTPServiceError(f"Request to {url} failed: {exc}", url) from exc

        if allow_missing and response.status_code == 404:
            return None
        if not response.ok:
            raise HTTPServiceError(
                f"{url} returned HTTP {response.status_code}",
                url,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            logger.debug("Malformed JSON from %s: %s", url, response.text, exc_info=True)
            raise HTTPServiceError(f"{url} returned malformed JSON", url) from exc

    def close(self) -> None:
        self._session.close()


class OrdClient(JSONServiceClient):
    """Read-only wrapper around the ord server's JSON API."""

    def block_height(self, timeout: float | None = None) -> int:
        data = self.get_json("/blockheight", timeout=timeout)
        try:
            return int(data)
        except (TypeError, ValueError) as exc:
            raise HTTPServiceError(f"Unexpected block height payload: {data!r}", self.base_url) from exc

    def output(self, txid: str, vout: int) -> Dict[str, Any]:
        return self._mapping(self.get_json(f"/output/{txid}:{vout}"))

    def sat(self, sat: int) -> Dict[str, Any]:
        return self._mapping(self.get_json(f"/sat/{sat}"))

    def inscription(self, inscription_id: str) -> Dict[str, Any]:
        return self._mapping(self.get_json(f"/r/inscription/{inscription_id}"))

    def metadata(self, inscription_id: str) -> Optional[str]:
        """Return the hex-encoded metadata of an inscription, or ``None``."""

        data = self.get_json(f"/r/metadata/{inscription_id}", allow_missing=True)
        if isinstance(data, str) and data:
            return data
        return None

    def _mapping(self, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise HTTPServiceError(f"Expected a JSON object, got {type(data).__name__}", self.base_url)
        return data


class EsploraClient(JSONServiceClient):
    """Read-only wrapper around an Esplora REST endpoint (mempool.space style)."""

    def outspend(self, txid: str, vout: int) -> Dict[str, Any]:
        data = self.get_json(f"/tx/{txid}/outspend/{vout}")
        if not isinstance(data, dict):
            raise HTTPServiceError("Expected a JSON object for outspend", self.base_url)
        return data
