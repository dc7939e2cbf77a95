"""Market ingestion: crypto + quote providers behind a single TTL cache slot.

Per call:

1. cache fresh (``now - ts < ttl``)  → cached assets, ``from_cache=True``
2. otherwise fan out crypto and stock branches concurrently; a failing
   branch contributes nothing but does not fail the other one
3. normalise, merge by ``id`` (last writer wins)
4. commit to the cache slot and return
5. if every branch failed (or none is configured) → last cache flagged
   ``stale=True``, or an empty list

Also owns the tracked-asset registry (the non-crypto symbols to poll).
Add/remove invalidate the cache and persist the registry best-effort.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Protocol

from ._http import log_fetch_warning, sanitize_exc
from .common_types import CacheEntry, MarketAsset, MarketsResult, RawCryptoRecord, RawQuoteRecord, TrackedAssetRef
from .errors import TotalMarketFetchError
from .normalize import normalize_crypto, normalize_quote

logger = logging.getLogger(__name__)

CACHE_KEY = "markets:all"


class CryptoProvider(Protocol):
    def fetch_top_crypto(self, limit: int) -> list[RawCryptoRecord]: ...


class StockProvider(Protocol):
    def fetch_stocks(self, refs: list[TrackedAssetRef]) -> list[RawQuoteRecord]: ...


class RegistryStore(Protocol):
    def load(self) -> list[TrackedAssetRef]: ...

    def save(self, refs: list[TrackedAssetRef]) -> None: ...


def merge_assets(assets: Iterable[MarketAsset]) -> list[MarketAsset]:
    """Make ``id`` unique; a later asset replaces an earlier one in place."""
    merged: dict[str, MarketAsset] = {}
    for a in assets:
        merged[a.id] = a
    return list(merged.values())


class MarketIngestion:
    """TTL-cached market snapshot plus the mutable tracked-asset registry.

    Parameters
    ----------
    crypto : CryptoProvider or None
    stocks : StockProvider or None
    store : RegistryStore or None
        Persistence for the registry; ``None`` keeps it in memory only.
    seed : iterable of TrackedAssetRef
        Used when the store has nothing saved (or fails to load).
    clock : callable
        Returns "now" in epoch seconds; injected for deterministic TTL tests.
    """

    def __init__(
        self,
        crypto: CryptoProvider | None = None,
        stocks: StockProvider | None = None,
        *,
        store: RegistryStore | None = None,
        seed: Iterable[TrackedAssetRef] = (),
        cache_ttl_s: float = 300.0,
        crypto_limit: int = 30,
        timeout_s: float = 20.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._crypto = crypto
        self._stocks = stocks
        self._store = store
        self._seed = list(seed)
        self.cache_ttl_s = cache_ttl_s
        self.crypto_limit = crypto_limit
        self.timeout_s = timeout_s
        self._clock = clock

        # Guards _cache and _registry; never held across provider I/O.
        self._lock = threading.Lock()
        self._cache: dict[str, CacheEntry] = {}
        self._registry: list[TrackedAssetRef] = list(self._seed)

    # ── Registry ────────────────────────────────────────────────

    def load(self) -> list[TrackedAssetRef]:
        """Load the persisted registry once, before the first fetch.

        Falls back to the seed list when nothing is saved or the store
        fails.  Returns the registry now in effect.
        """
        loaded: list[TrackedAssetRef] = []
        if self._store is not None:
            try:
                loaded = self._store.load()
            except Exception as exc:
                logger.warning("Registry load failed, using seed list: %s", sanitize_exc(exc))
        with self._lock:
            self._registry = list(loaded) if loaded else list(self._seed)
            self._cache.clear()
            registry = list(self._registry)
        logger.info(
            "Tracked-asset registry: %d symbols (%s)",
            len(registry), "persisted" if loaded else "seed",
        )
        return registry

    def tracked_assets(self) -> list[TrackedAssetRef]:
        with self._lock:
            return list(self._registry)

    def add_asset(self, ref: TrackedAssetRef) -> bool:
        """Track *ref*; ``False`` (and no side effect) if already tracked."""
        with self._lock:
            if any(r.symbol == ref.symbol for r in self._registry):
                return False
            self._registry.append(ref)
            self._cache.clear()
            registry = list(self._registry)
        logger.info("Added tracked asset %s", ref.symbol)
        self._persist(registry)
        return True

    def remove_asset(self, symbol: str) -> bool:
        """Stop tracking *symbol* (exact match); ``False`` if unknown."""
        with self._lock:
            remaining = [r for r in self._registry if r.symbol != symbol]
            if len(remaining) == len(self._registry):
                return False
            self._registry = remaining
            self._cache.clear()
            registry = list(self._registry)
        logger.info("Removed tracked asset %s", symbol)
        self._persist(registry)
        return True

    def _persist(self, registry: list[TrackedAssetRef]) -> None:
        if self._store is None:
            return
        try:
            self._store.save(registry)
        except Exception as exc:
            # The in-memory registry stays authoritative for this process.
            logger.warning("Registry save failed: %s", sanitize_exc(exc))

    # ── Cache ───────────────────────────────────────────────────

    def invalidate_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def cached(self) -> CacheEntry | None:
        with self._lock:
            return self._cache.get(CACHE_KEY)

    # ── Fetch ───────────────────────────────────────────────────

    def fetch_markets(self) -> MarketsResult:
        now = self._clock()
        with self._lock:
            entry = self._cache.get(CACHE_KEY)
            registry = list(self._registry)
        if entry is not None and now - entry.timestamp < self.cache_ttl_s:
            return MarketsResult(assets=entry.data, as_of=entry.timestamp, from_cache=True)

        try:
            assets = self._fetch_fresh(registry, now)
        except TotalMarketFetchError as exc:
            logger.error("Market fetch failed: %s", exc)
            with self._lock:
                entry = self._cache.get(CACHE_KEY)
            if entry is not None:
                return MarketsResult(assets=entry.data, as_of=entry.timestamp, stale=True)
            return MarketsResult(assets=(), as_of=now)

        data = tuple(assets)
        with self._lock:
            self._cache[CACHE_KEY] = CacheEntry(data=data, timestamp=now)
        logger.info("Markets: %d assets fetched", len(data))
        return MarketsResult(assets=data, as_of=now)

    def _fetch_fresh(self, registry: list[TrackedAssetRef], now: float) -> list[MarketAsset]:
        branches: dict[str, Callable[[], list[MarketAsset]]] = {}
        if self._crypto is not None:
            crypto = self._crypto
            branches["crypto"] = lambda: [
                normalize_crypto(r, now) for r in crypto.fetch_top_crypto(self.crypto_limit)
            ]
        if self._stocks is not None:
            stocks = self._stocks
            branches["stocks"] = lambda: [
                normalize_quote(r, now) for r in stocks.fetch_stocks(registry)
            ]
        if not branches:
            raise TotalMarketFetchError("no market providers configured")

        executor = ThreadPoolExecutor(max_workers=len(branches), thread_name_prefix="market-fetch")
        try:
            futures: dict[str, Future[list[MarketAsset]]] = {
                name: executor.submit(fn) for name, fn in branches.items()
            }
            _, not_done = wait(futures.values(), timeout=self.timeout_s)
            assets: list[MarketAsset] = []
            ok = 0
            # Crypto first, then stocks: stock quotes win an id collision.
            for name, future in futures.items():
                if future in not_done:
                    logger.warning("Market branch %s timed out after %.1fs", name, self.timeout_s)
                    continue
                try:
                    assets.extend(future.result())
                    ok += 1
                except Exception as exc:
                    log_fetch_warning(f"Market branch {name}", exc)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if ok == 0:
            raise TotalMarketFetchError(f"all market branches failed ({', '.join(branches)})")
        return merge_assets(assets)
