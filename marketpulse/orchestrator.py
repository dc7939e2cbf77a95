"""Refresh orchestration: news + markets → rules → one atomic snapshot.

``refresh()`` fans out the news and market fetches, waits for both, runs
the rule engine and swaps in a new immutable ``Snapshot``.  A refresh
requested while another is in flight is a no-op that returns the current
snapshot (no queueing).  A periodic background thread calls
``refresh()`` every ``auto_refresh_interval_s``; its failures are logged
and the loop carries on.

Usage::

    orch = build_orchestrator(Config())
    orch.start()            # load registry, first refresh, start loop
    state = orch.get_state()
    orch.stop()
"""
from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait

from ._http import sanitize_exc
from .common_types import MarketsResult, NewsResult, Snapshot, TrackedAssetRef
from .config import Config
from .errors import RefreshError
from .markets import MarketIngestion
from .news import NewsProvider, fetch_news
from .rules import RuleEngine

logger = logging.getLogger(__name__)

# Share of the market branch timeout the paced Yahoo poll may use.
QUOTE_BUDGET_SHARE = 0.8


class Orchestrator:
    """Owns the externally-visible snapshot and the refresh loop.

    Thread-safe: the snapshot is an immutable value replaced by a single
    attribute assignment; the refresh guard is a non-blocking lock.
    """

    def __init__(
        self,
        news_providers: Sequence[NewsProvider],
        markets: MarketIngestion,
        engine: RuleEngine,
        *,
        auto_refresh_interval_s: float = 300.0,
        provider_timeout_s: float = 20.0,
        refresh_timeout_s: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.news_providers = list(news_providers)
        self.markets = markets
        self.engine = engine
        self.auto_refresh_interval_s = auto_refresh_interval_s
        self.provider_timeout_s = provider_timeout_s
        self.refresh_timeout_s = refresh_timeout_s
        self._clock = clock

        self._state = Snapshot()
        self._refresh_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        # Observable loop status
        self.refresh_count: int = 0
        self.last_refresh_error: str = ""

    # ── Snapshot API ────────────────────────────────────────

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_lock.locked()

    def get_state(self) -> Snapshot:
        """Current snapshot (non-blocking)."""
        return dataclasses.replace(self._state, is_refreshing=self.is_refreshing)

    def refresh(self) -> Snapshot:
        """Run one refresh cycle and return the new snapshot.

        Returns the current snapshot untouched if a refresh is already
        running.  Raises ``RefreshError`` when the cycle fails; the
        previous snapshot is kept in that case.
        """
        if not self._refresh_lock.acquire(blocking=False):
            logger.debug("Refresh already in progress, returning current snapshot")
            return self.get_state()
        try:
            logger.info("Refresh started")
            news, markets = self._fetch_all()
            alerts = self.engine.generate_alerts(news.items, markets.assets)
            self._state = Snapshot(
                news=news.items,
                assets=markets.assets,
                alerts=tuple(alerts),
                last_updated=self._clock(),
            )
            self.refresh_count += 1
            logger.info(
                "Refresh done: %d news, %d assets%s, %d alerts",
                len(news.items),
                len(markets.assets),
                " (stale)" if markets.stale else " (cached)" if markets.from_cache else "",
                len(alerts),
            )
        finally:
            self._refresh_lock.release()
        return self.get_state()

    def _fetch_all(self) -> tuple[NewsResult, MarketsResult]:
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="refresh")
        try:
            news_f = executor.submit(
                fetch_news, self.news_providers, timeout_s=self.provider_timeout_s,
            )
            markets_f = executor.submit(self.markets.fetch_markets)
            _, not_done = wait((news_f, markets_f), timeout=self.refresh_timeout_s)
            if not_done:
                raise RefreshError(f"refresh timed out after {self.refresh_timeout_s:.1f}s")
            try:
                return news_f.result(), markets_f.result()
            except Exception as exc:
                raise RefreshError(f"refresh failed: {sanitize_exc(exc)}") from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    # ── Registry passthrough ────────────────────────────────

    def add_asset(self, ref: TrackedAssetRef) -> bool:
        """Track a new symbol; ``True`` if it was not tracked before."""
        return self.markets.add_asset(ref)

    def remove_asset(self, symbol: str) -> bool:
        return self.markets.remove_asset(symbol)

    def tracked_assets(self) -> list[TrackedAssetRef]:
        return self.markets.tracked_assets()

    # ── Lifecycle ───────────────────────────────────────────

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> Snapshot:
        """Load the registry, refresh once, then start the periodic loop."""
        self.markets.load()
        state = self.refresh()
        self.start_auto_refresh()
        return state

    def start_auto_refresh(self, interval_s: float | None = None) -> None:
        """Start (or restart) the background refresh thread."""
        self.stop_auto_refresh()
        if interval_s is not None:
            self.auto_refresh_interval_s = interval_s
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(self._stop_event,),
            name="marketpulse-refresh",
            daemon=True,
        )
        self._thread.start()
        logger.info("Auto-refresh started (interval=%.1fs)", self.auto_refresh_interval_s)

    def stop_auto_refresh(self) -> None:
        """Signal the loop to stop (non-blocking)."""
        self._stop_event.set()
        self._thread = None

    stop = stop_auto_refresh

    def _run_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(timeout=self.auto_refresh_interval_s):
            try:
                self.refresh()
                self.last_refresh_error = ""
            except Exception as exc:
                self.last_refresh_error = sanitize_exc(exc)
                logger.exception("Auto-refresh failed: %s", self.last_refresh_error)
        logger.info("Auto-refresh loop exited")


def build_orchestrator(cfg: Config | None = None) -> Orchestrator:
    """Wire the concrete providers from *cfg* into an ``Orchestrator``."""
    from .ingest_coingecko import CoinGeckoProvider
    from .ingest_quotes import SimulatedQuoteProvider, YahooQuoteProvider
    from .ingest_rss import build_rss_providers
    from .registry_store import JsonRegistryStore

    if cfg is None:
        cfg = Config()

    crypto = None
    if cfg.enable_crypto:
        crypto = CoinGeckoProvider(
            cfg.crypto_vs_currency, api_key=cfg.coingecko_api_key, timeout_s=cfg.provider_timeout_s,
        )
    stocks: YahooQuoteProvider | SimulatedQuoteProvider | None = None
    if cfg.enable_quotes:
        if cfg.quote_source == "yahoo":
            stocks = YahooQuoteProvider(
                request_delay_s=cfg.quote_request_delay_s,
                batch_size=cfg.quote_batch_size,
                batch_delay_s=cfg.quote_batch_delay_s,
                request_timeout_s=cfg.quote_request_timeout_s,
                budget_s=cfg.provider_timeout_s * QUOTE_BUDGET_SHARE,
            )
        else:
            stocks = SimulatedQuoteProvider()

    markets = MarketIngestion(
        crypto,
        stocks,
        store=JsonRegistryStore(cfg.registry_path),
        seed=cfg.tracked_symbols,
        cache_ttl_s=cfg.cache_ttl_s,
        crypto_limit=cfg.crypto_limit,
        timeout_s=cfg.provider_timeout_s,
    )
    return Orchestrator(
        build_rss_providers(cfg.news_feeds, timeout_s=cfg.provider_timeout_s),
        markets,
        RuleEngine(max_alerts=cfg.max_alerts),
        auto_refresh_interval_s=cfg.auto_refresh_interval_s,
        provider_timeout_s=cfg.provider_timeout_s,
        refresh_timeout_s=cfg.refresh_timeout_s,
    )
