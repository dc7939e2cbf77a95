"""Normalisation functions: raw provider records → canonical records.

Each source has its own normaliser.  All of them are **total**: every
canonical field gets a value, with explicit defaults, and optional
numeric fields stay ``None`` when the provider did not supply them.

News:
    RawFeedItem(title, link, pub_date, content_snippet, source) → NewsItem

Markets:
    RawCryptoRecord (CoinGecko)  → MarketAsset  (``crypto:SYMBOL``, EUR default)
    RawQuoteRecord  (quotes)     → MarketAsset  (``type:symbol``, USD default)
"""

from __future__ import annotations

import base64
import logging
import re
from datetime import datetime, timezone

from dateutil import parser as dtparser

from .common_types import ASSET_TYPES, MarketAsset, NewsItem, RawCryptoRecord, RawFeedItem, RawQuoteRecord

logger = logging.getLogger(__name__)

NO_TITLE = "No Title"
SNIPPET_MAX = 300
NEWS_ID_LEN = 16
DEDUP_TITLE_LEN = 20

# Keywords are matched as lower-case substrings of ``title + snippet``.
# The default feeds are Italian financial press, hence the mixed vocabulary.
TAG_KEYWORDS: dict[str, tuple[str, ...]] = {
    "inflation": ("inflazione", "prezzi", "rincari", "costo vita", "inflation"),
    "rates": ("tassi", "bce", "fed", "interessi", "rates", "central bank", "ecb"),
    "tech": ("tecnologia", "intelligenza artificiale", "artificial intelligence", "digitale", "software", "tech"),
    "energy": ("energia", "petrolio", "gas", "elettricità", "energy", "oil"),
    "geopolitics": ("guerra", "conflitto", "sanzioni", "tensioni", "war", "conflict", "sanctions"),
    "crypto": ("bitcoin", "crypto", "ethereum", "blockchain"),
    "banks": ("banche", "credito", "finanza", "mutui", "banks"),
    "equities": ("borsa", "azioni", "indici", "ftse", "sp500", "stock market"),
    "spread": ("spread", "btp", "bund", "differenziale"),
    "gdp": ("pil", "crescita", "recessione", "gdp", "recession"),
}

# ── Shared helpers ──────────────────────────────────────────────

# Shortest valid format: "YYYYMMDD" = 8 chars.  Shorter strings like
# "5" or "12" are ambiguously parsed by dateutil (e.g. "5" → Feb 5).
_MIN_DATE_LEN = 8
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")
_NON_LOWER_ALNUM = re.compile(r"[^a-z0-9]")


def _to_epoch(s: str) -> float | None:
    """Parse a date/time string to epoch seconds.

    Returns ``None`` for empty, too-short, or unparseable strings.
    Naive datetimes (no timezone info) are assumed UTC.
    """
    if not s:
        return None
    s_stripped = s.strip()
    if len(s_stripped) < _MIN_DATE_LEN:
        logger.debug("Date string too short (%d chars): %r", len(s_stripped), s_stripped)
        return None
    try:
        dt = dtparser.parse(s_stripped)
    except (ValueError, OverflowError):
        logger.debug("Unparseable date %r", s_stripped[:80])
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def utc_date(ts: float) -> str:
    """Calendar date (``YYYY-MM-DD``) of *ts* in UTC."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def extract_tags(text: str) -> frozenset[str]:
    lowered = (text or "").lower()
    return frozenset(
        tag for tag, keywords in TAG_KEYWORDS.items()
        if any(kw in lowered for kw in keywords)
    )


def news_id(title: str, source: str, published_ts: float) -> str:
    """Short deterministic id for a news item.

    Base64 of ``title-source-date`` with non-alphanumerics removed,
    truncated.  Not a cryptographic digest: two items sharing a long
    title prefix, source and day collide, which downstream treats as
    "same story".
    """
    raw = f"{title}-{source}-{utc_date(published_ts)}"
    encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    return _NON_ALNUM.sub("", encoded)[:NEWS_ID_LEN]


def dedup_key(item: NewsItem) -> str:
    """Fuzzy identity: first 20 alphanumerics of the title + UTC date."""
    title_key = _NON_LOWER_ALNUM.sub("", item.title.lower())[:DEDUP_TITLE_LEN]
    return f"{title_key}-{utc_date(item.published_ts)}"


# ── News ────────────────────────────────────────────────────────

def normalize_feed_item(raw: RawFeedItem, now: float) -> NewsItem:
    """Normalise one raw feed entry; *now* stands in for a missing date."""
    title = raw.title.strip() or NO_TITLE
    snippet = (raw.content_snippet or "")[:SNIPPET_MAX]
    published_ts = _to_epoch(raw.pub_date)
    if published_ts is None:
        published_ts = now
    return NewsItem(
        id=news_id(title, raw.source, published_ts),
        title=title,
        url=raw.link,
        source=raw.source,
        published_ts=published_ts,
        snippet=snippet,
        tags=extract_tags(f"{title} {snippet}"),
    )


# ── Markets ─────────────────────────────────────────────────────

def normalize_crypto(raw: RawCryptoRecord, now: float) -> MarketAsset:
    """Normalise one CoinGecko row.  Symbol is upper-cased."""
    symbol = raw.symbol.strip().upper()
    return MarketAsset(
        id=f"crypto:{symbol}",
        type="crypto",
        symbol=symbol,
        name=raw.name or symbol,
        price=raw.current_price,
        currency=raw.currency or "EUR",
        change24h_pct=raw.price_change_percentage_24h or 0.0,
        high24h=raw.high_24h,
        low24h=raw.low_24h,
        volume=raw.total_volume,
        market_cap=raw.market_cap,
        as_of=now,
    )


def normalize_quote(raw: RawQuoteRecord, now: float) -> MarketAsset:
    """Normalise one equity/index/commodity/ETF quote.  Symbol kept as-is."""
    asset_type = raw.type if raw.type in ASSET_TYPES else "equity"
    return MarketAsset(
        id=f"{asset_type}:{raw.symbol}",
        type=asset_type,
        symbol=raw.symbol,
        name=raw.name or raw.symbol,
        price=raw.price,
        currency=raw.currency or "USD",
        change24h_pct=raw.change24h_pct or 0.0,
        high24h=raw.high24h,
        low24h=raw.low24h,
        volume=raw.volume,
        market_cap=raw.market_cap,
        as_of=now,
        estimated=raw.estimated,
    )
