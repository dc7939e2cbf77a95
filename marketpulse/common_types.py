"""Canonical schema shared across providers, ingestion, rules and snapshot.

Every provider emits its own *raw* record type; the normalisers in
``normalize`` turn those into ``NewsItem`` / ``MarketAsset`` before they
enter the pipeline.  Canonical records are frozen: they are produced
fresh every cycle and never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

AssetType = Literal["equity", "index", "crypto", "commodity", "etf"]
Severity = Literal["low", "medium", "high"]
Horizon = Literal["days", "weeks", "months"]

ASSET_TYPES: frozenset[str] = frozenset({"equity", "index", "crypto", "commodity", "etf"})


def opt_float(x: Any) -> float | None:
    """Coerce *x* to float, or ``None`` when missing / not numeric."""
    if x is None or isinstance(x, bool):
        return None
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


# ── Raw provider records ────────────────────────────────────────


@dataclass
class RawFeedItem:
    """One entry of an RSS/Atom feed, before normalisation."""

    title: str = ""
    link: str = ""
    pub_date: str = ""
    content_snippet: str = ""
    source: str = ""

    @classmethod
    def from_payload(cls, it: dict[str, Any], source: str = "") -> RawFeedItem:
        return cls(
            title=str(it.get("title") or "").strip(),
            link=str(it.get("link") or "").strip(),
            pub_date=str(it.get("pubDate") or it.get("published") or it.get("updated") or "").strip(),
            content_snippet=str(it.get("contentSnippet") or it.get("summary") or it.get("description") or "").strip(),
            source=source,
        )


@dataclass
class RawCryptoRecord:
    """CoinGecko ``/coins/markets`` row."""

    symbol: str
    name: str
    current_price: float | None = None
    price_change_percentage_24h: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    total_volume: float | None = None
    market_cap: float | None = None
    currency: str | None = None

    @classmethod
    def from_payload(cls, it: dict[str, Any], currency: str | None = None) -> RawCryptoRecord:
        symbol = str(it.get("symbol") or "").strip()
        return cls(
            symbol=symbol,
            name=str(it.get("name") or symbol).strip(),
            current_price=opt_float(it.get("current_price")),
            price_change_percentage_24h=opt_float(it.get("price_change_percentage_24h")),
            high_24h=opt_float(it.get("high_24h")),
            low_24h=opt_float(it.get("low_24h")),
            total_volume=opt_float(it.get("total_volume")),
            market_cap=opt_float(it.get("market_cap")),
            currency=currency.upper() if currency else None,
        )


@dataclass
class RawQuoteRecord:
    """Quote for one tracked (non-crypto) symbol."""

    symbol: str
    name: str
    type: str = "equity"
    price: float | None = None
    currency: str | None = None
    change24h_pct: float | None = None
    high24h: float | None = None
    low24h: float | None = None
    volume: float | None = None
    market_cap: float | None = None
    estimated: bool = False


@dataclass(frozen=True)
class TrackedAssetRef:
    """Registry entry: which equity/index/commodity/ETF to poll."""

    symbol: str
    name: str
    type: str = "equity"
    currency: str | None = None
    price: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TrackedAssetRef:
        symbol = str(d.get("symbol") or "").strip()
        if not symbol:
            raise ValueError("tracked asset without symbol")
        return cls(
            symbol=symbol,
            name=str(d.get("name") or symbol),
            type=str(d.get("type") or "equity"),
            currency=d.get("currency") or None,
            price=opt_float(d.get("price")),
        )


# ── Canonical records ───────────────────────────────────────────


@dataclass(frozen=True)
class NewsItem:
    """Provider-agnostic news record."""

    id: str
    title: str
    url: str
    source: str
    published_ts: float  # epoch seconds, UTC
    snippet: str
    tags: frozenset[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["tags"] = sorted(self.tags)
        return d


@dataclass(frozen=True)
class MarketAsset:
    """Normalised quote for one asset; ``id`` is ``type:symbol``."""

    id: str
    type: str
    symbol: str
    name: str
    price: float | None
    currency: str
    change24h_pct: float
    high24h: float | None
    low24h: float | None
    volume: float | None
    market_cap: float | None
    as_of: float
    estimated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AlertItem:
    """Advisory alert produced by one rule in one cycle."""

    id: str
    severity: Severity
    title: str
    thesis: str
    confidence: float
    horizon: Horizon
    asset_refs: tuple[str, ...]
    news_refs: tuple[str, ...]
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["asset_refs"] = list(self.asset_refs)
        d["news_refs"] = list(self.news_refs)
        return d


@dataclass(frozen=True)
class CacheEntry:
    data: tuple[MarketAsset, ...]
    timestamp: float


# ── Result envelopes ────────────────────────────────────────────


@dataclass(frozen=True)
class NewsResult:
    items: tuple[NewsItem, ...]
    as_of: float


@dataclass(frozen=True)
class MarketsResult:
    assets: tuple[MarketAsset, ...]
    as_of: float
    from_cache: bool = False
    stale: bool = False


@dataclass(frozen=True)
class Snapshot:
    """The single externally-visible picture, replaced as a whole."""

    news: tuple[NewsItem, ...] = ()
    assets: tuple[MarketAsset, ...] = ()
    alerts: tuple[AlertItem, ...] = ()
    last_updated: float | None = None
    is_refreshing: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "news": [n.to_dict() for n in self.news],
            "assets": [a.to_dict() for a in self.assets],
            "alerts": [a.to_dict() for a in self.alerts],
            "lastUpdated": self.last_updated,
            "isRefreshing": self.is_refreshing,
        }
