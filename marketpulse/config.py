"""Global configuration for the MarketPulse signal pipeline.

All tunables can be overridden via environment variables.  The news feed
list and the seed list of tracked symbols are fixed module-level tuples.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .common_types import TrackedAssetRef
from .errors import ConfigError


def _env_float(key: str, default: float) -> float:
    """Float from the environment; *default* if unset or malformed."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Int from the environment; *default* if unset or malformed."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_bool(key: str, default: bool) -> bool:
    return os.getenv(key, "1" if default else "0") == "1"


# ── News feeds (url, source) ────────────────────────────────────

NEWS_FEEDS: tuple[tuple[str, str], ...] = (
    ("https://www.ansa.it/sito/notizie/economia/economia_rss.xml", "ANSA"),
    ("https://www.ilsole24ore.com/rss/economia--2.xml", "Il Sole 24 Ore"),
    ("https://www.milanofinanza.it/rss", "Milano Finanza"),
    ("https://www.corriere.it/rss/economia.xml", "Corriere della Sera"),
    ("https://www.repubblica.it/rss/economia/rss2.0.xml", "La Repubblica"),
    ("https://www.lastampa.it/economia/rss", "La Stampa"),
    ("https://www.ilgiornale.it/rss-economia.xml", "Il Giornale"),
    ("https://www.wallstreetitalia.com/feed/", "Wall Street Italia"),
)

# ── Tracked symbols (seed registry) ─────────────────────────────

TRACKED_SYMBOLS: tuple[TrackedAssetRef, ...] = (
    # Major indices
    TrackedAssetRef("^GSPC", "S&P 500", "index"),
    TrackedAssetRef("^DJI", "Dow Jones", "index"),
    TrackedAssetRef("^IXIC", "NASDAQ", "index"),
    TrackedAssetRef("^FTSE", "FTSE 100", "index"),
    TrackedAssetRef("^N225", "Nikkei 225", "index"),
    TrackedAssetRef("^HSI", "Hang Seng", "index"),
    TrackedAssetRef("^GDAXI", "DAX", "index", currency="EUR"),
    TrackedAssetRef("FTSEMIB.MI", "FTSE MIB", "index", currency="EUR"),
    # ETFs (seed prices are used when no quote has been seen yet)
    TrackedAssetRef("GOM.MI", "Gold Bullion Securities", "etf", currency="EUR", price=50.67),
    TrackedAssetRef("IB1T.DE", "iShares $ Treasury Bond 1-3yr", "etf", currency="EUR", price=5.733),
    TrackedAssetRef("JEDI.DE", "JPMorgan ETFs (Ireland) ICAV", "etf", currency="EUR", price=66.26),
    TrackedAssetRef("SCWX.MI", "iShares MSCI World Small Cap", "etf", currency="EUR", price=10.554),
    TrackedAssetRef("SILV.MI", "WisdomTree Physical Silver", "etf", currency="EUR", price=39.965),
    TrackedAssetRef("WBLK.MI", "WisdomTree Physical Swiss Gold", "etf", currency="EUR", price=42.61),
    TrackedAssetRef("BNKE.MI", "Lyxor EURO STOXX Banks", "etf", currency="EUR", price=322.6),
    # Large caps
    TrackedAssetRef("AAPL", "Apple Inc.", "equity"),
    TrackedAssetRef("MSFT", "Microsoft", "equity"),
    TrackedAssetRef("GOOGL", "Alphabet Inc.", "equity"),
    TrackedAssetRef("AMZN", "Amazon", "equity"),
    TrackedAssetRef("NVDA", "NVIDIA", "equity"),
    TrackedAssetRef("META", "Meta Platforms", "equity"),
    TrackedAssetRef("TSLA", "Tesla Inc.", "equity"),
    TrackedAssetRef("BRK-B", "Berkshire Hathaway", "equity"),
    TrackedAssetRef("V", "Visa Inc.", "equity"),
    TrackedAssetRef("JPM", "JPMorgan Chase", "equity"),
    TrackedAssetRef("WMT", "Walmart", "equity"),
    TrackedAssetRef("MA", "Mastercard", "equity"),
    TrackedAssetRef("PG", "Procter & Gamble", "equity"),
    TrackedAssetRef("UNH", "UnitedHealth", "equity"),
    TrackedAssetRef("HD", "Home Depot", "equity"),
    TrackedAssetRef("DIS", "Disney", "equity"),
    TrackedAssetRef("NFLX", "Netflix", "equity"),
    TrackedAssetRef("ADBE", "Adobe", "equity"),
    TrackedAssetRef("CRM", "Salesforce", "equity"),
    TrackedAssetRef("INTC", "Intel", "equity"),
    TrackedAssetRef("AMD", "AMD", "equity"),
    TrackedAssetRef("CSCO", "Cisco", "equity"),
    TrackedAssetRef("KO", "Coca-Cola", "equity"),
    # Commodities
    TrackedAssetRef("GC=F", "Gold", "commodity"),
    TrackedAssetRef("CL=F", "Crude Oil", "commodity"),
)

QUOTE_SOURCES = ("simulated", "yahoo")


@dataclass(frozen=True)
class Config:
    """Runtime settings, built once at startup.

    Each field reads its environment variable when ``Config()`` is
    called, so tests and embedding code can set ``os.environ`` first.
    """

    # ── Refresh cadence / cache ─────────────────────────────────
    cache_ttl_s: float = field(default_factory=lambda: _env_float("CACHE_TTL_S", 300.0))
    auto_refresh_interval_s: float = field(default_factory=lambda: _env_float("AUTO_REFRESH_INTERVAL_S", 300.0))

    # ── Alerts ──────────────────────────────────────────────────
    max_alerts: int = field(default_factory=lambda: _env_int("MAX_ALERTS", 10))
    # Carried for consumers; the ranking does not filter on it.
    min_confidence: float = field(default_factory=lambda: _env_float("MIN_CONFIDENCE", 0.5))

    # ── Crypto (CoinGecko) ──────────────────────────────────────
    enable_crypto: bool = field(default_factory=lambda: _env_bool("ENABLE_CRYPTO", True))
    coingecko_api_key: str = field(default_factory=lambda: os.getenv("COINGECKO_API_KEY", ""), repr=False)
    crypto_limit: int = field(default_factory=lambda: _env_int("CRYPTO_LIMIT", 30))
    crypto_vs_currency: str = field(default_factory=lambda: os.getenv("CRYPTO_VS_CURRENCY", "eur"))

    # ── Quotes (equities / indices / commodities / ETFs) ────────
    enable_quotes: bool = field(default_factory=lambda: _env_bool("ENABLE_QUOTES", True))
    quote_source: str = field(default_factory=lambda: os.getenv("QUOTE_SOURCE", "simulated"))
    quote_request_delay_s: float = field(default_factory=lambda: _env_float("QUOTE_REQUEST_DELAY_S", 0.25))
    quote_batch_size: int = field(default_factory=lambda: _env_int("QUOTE_BATCH_SIZE", 10))
    quote_batch_delay_s: float = field(default_factory=lambda: _env_float("QUOTE_BATCH_DELAY_S", 1.0))
    quote_request_timeout_s: float = field(default_factory=lambda: _env_float("QUOTE_REQUEST_TIMEOUT_S", 5.0))

    # ── Timeouts ────────────────────────────────────────────────
    provider_timeout_s: float = field(default_factory=lambda: _env_float("PROVIDER_TIMEOUT_S", 20.0))
    refresh_timeout_s: float = field(default_factory=lambda: _env_float("REFRESH_TIMEOUT_S", 60.0))

    # ── Registry persistence ────────────────────────────────────
    registry_path: str = field(default_factory=lambda: os.getenv(
        "REGISTRY_PATH", "artifacts/marketpulse/tracked_assets.json",
    ))

    # ── Fixed source lists ──────────────────────────────────────
    news_feeds: tuple[tuple[str, str], ...] = NEWS_FEEDS
    tracked_symbols: tuple[TrackedAssetRef, ...] = TRACKED_SYMBOLS

    def __post_init__(self) -> None:
        if self.cache_ttl_s <= 0:
            raise ConfigError(f"cache_ttl_s must be > 0, got {self.cache_ttl_s}")
        if self.auto_refresh_interval_s <= 0:
            raise ConfigError(f"auto_refresh_interval_s must be > 0, got {self.auto_refresh_interval_s}")
        if self.max_alerts < 0:
            raise ConfigError(f"max_alerts must be >= 0, got {self.max_alerts}")
        if self.quote_batch_size < 1:
            raise ConfigError(f"quote_batch_size must be >= 1, got {self.quote_batch_size}")
        if self.quote_request_timeout_s <= 0:
            raise ConfigError(f"quote_request_timeout_s must be > 0, got {self.quote_request_timeout_s}")
        if self.provider_timeout_s <= 0:
            raise ConfigError(f"provider_timeout_s must be > 0, got {self.provider_timeout_s}")
        if self.quote_source not in QUOTE_SOURCES:
            raise ConfigError(f"quote_source must be one of {QUOTE_SOURCES}, got {self.quote_source!r}")

    # ── Derived helpers ─────────────────────────────────────────

    @property
    def active_sources(self) -> list[str]:
        """List of enabled source labels for log output."""
        sources = [f"rss:{name}" for _, name in self.news_feeds]
        if self.enable_crypto:
            sources.append("coingecko")
        if self.enable_quotes:
            sources.append(f"quotes:{self.quote_source}")
        return sources
