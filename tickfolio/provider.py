"""HTTP price provider — the only module that imports from requests."""

import math
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from tickfolio.config import AssetDescriptor, AssetKind
from tickfolio.constants import (
    DEFAULT_ENDPOINTS, DEFAULT_FETCH_TIMEOUT, USER_AGENT, CRYPTO_KEY_HEADER,
)


class FetchError(Exception):
    """A single price lookup failed. Never fatal; the row degrades to zero."""


def _as_price(val: Any, where: str) -> float:
    # bool is an int subclass; a JSON true is not a price
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        raise FetchError(f"{where}: price is not a number ({val!r})")
    # json.loads accepts NaN and Infinity tokens
    if not math.isfinite(val):
        raise FetchError(f"{where}: price is not finite ({val!r})")
    return float(val)


def decode_flat(payload: Any) -> float:
    """Stock/commodity schema: {"price": <number>}."""
    if not isinstance(payload, dict) or "price" not in payload:
        raise FetchError("response has no 'price' field")
    return _as_price(payload["price"], "price")


def decode_crypto(payload: Any, symbol: str) -> float:
    """Crypto schema: {"data": {<symbol>: {"quote": {"USD": {"price": <number>}}}}}."""
    if not isinstance(payload, dict):
        raise FetchError("response is not an object")
    node = payload
    for key in ("data", symbol, "quote", "USD"):
        node = node.get(key) if isinstance(node, dict) else None
        if node is None:
            raise FetchError(f"response missing '{key}'")
    if not isinstance(node, dict) or "price" not in node:
        raise FetchError("response missing 'price'")
    return _as_price(node["price"], f"{symbol} USD price")


class PriceProvider:
    """Wraps a shared requests.Session so fetches can run from many threads."""

    def __init__(self, api_key: str = "", timeout: float = DEFAULT_FETCH_TIMEOUT,
                 endpoints: Optional[Dict[str, str]] = None,
                 session: Optional[requests.Session] = None):
        self._api_key = api_key
        self._timeout = timeout
        self._endpoints = dict(DEFAULT_ENDPOINTS)
        if endpoints:
            self._endpoints.update(endpoints)
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    @property
    def timeout(self) -> float:
        return self._timeout

    def endpoint_for(self, asset: AssetDescriptor) -> str:
        """Override endpoint verbatim, else the per-kind template."""
        if asset.override_endpoint:
            return asset.override_endpoint
        template = self._endpoints[asset.kind.value]
        return template.replace("{symbol}", quote(asset.symbol, safe=""))

    def fetch_price(self, asset: AssetDescriptor) -> float:
        """One GET, no retry. Raises FetchError and nothing else."""
        if not asset.symbol:
            raise FetchError("empty symbol")
        url = self.endpoint_for(asset)
        headers = {}
        if asset.kind is AssetKind.CRYPTO and self._api_key:
            headers[CRYPTO_KEY_HEADER] = self._api_key

        try:
            resp = self._session.get(url, headers=headers, timeout=self._timeout)
            resp.raise_for_status()
            payload = resp.json()
        except requests.Timeout:
            raise FetchError(f"{asset.symbol}: timed out") from None
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise FetchError(f"{asset.symbol}: HTTP {status}") from e
        except requests.JSONDecodeError as e:
            raise FetchError(f"{asset.symbol}: malformed response body") from e
        except requests.RequestException as e:
            raise FetchError(f"{asset.symbol}: {type(e).__name__}") from e

        # Decode path is picked by kind, never by sniffing the response shape
        try:
            if asset.kind is AssetKind.CRYPTO:
                return decode_crypto(payload, asset.symbol)
            return decode_flat(payload)
        except FetchError as e:
            raise FetchError(f"{asset.symbol}: {e}") from None

    def close(self):
        self._session.close()
