"""Synchronous CoinGecko crypto adapter.

Single endpoint: ``/coins/markets`` ordered by market cap.  An optional
demo API key (``COINGECKO_API_KEY``) is sent as a header, never as a
query param, so it cannot leak through logged URLs.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ._http import new_client, safe_get, sanitize_url
from .common_types import RawCryptoRecord
from .errors import SourceFetchError

logger = logging.getLogger(__name__)

COINGECKO_BASE = "https://api.coingecko.com/api/v3"


def _as_list(x: Any) -> list[dict[str, Any]]:
    """Safely coerce *x* to a list of dicts."""
    if not isinstance(x, list):
        if x is not None:
            logger.warning(
                "CoinGecko returned %s instead of list, 0 coins ingested.",
                type(x).__name__,
            )
        return []
    return [item for item in x if isinstance(item, dict)]


class CoinGeckoProvider:
    """Top-N coins by market cap, quoted in ``vs_currency``."""

    def __init__(
        self,
        vs_currency: str = "eur",
        *,
        api_key: str = "",
        client: httpx.Client | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self.vs_currency = vs_currency.lower()
        headers = {"x-cg-demo-api-key": api_key} if api_key else {}
        self.client = client or new_client(timeout_s, headers=headers)

    def fetch_top_crypto(self, limit: int = 30) -> list[RawCryptoRecord]:
        """GET /coins/markets?vs_currency=…&order=market_cap_desc&per_page=…"""
        r = safe_get(
            self.client,
            f"{COINGECKO_BASE}/coins/markets",
            {
                "vs_currency": self.vs_currency,
                "order": "market_cap_desc",
                "per_page": limit,
                "page": 1,
                "sparkline": "false",
            },
            source="coingecko",
        )
        try:
            payload = r.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise SourceFetchError(
                f"CoinGecko returned non-JSON (status={r.status_code}, url={sanitize_url(str(r.url))})",
                source="coingecko",
            ) from exc
        rows = _as_list(payload)
        return [
            RawCryptoRecord.from_payload(it, currency=self.vs_currency)
            for it in rows
            if it.get("symbol")
        ]

    def close(self) -> None:
        self.client.close()
