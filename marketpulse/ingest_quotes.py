"""Quote sources for tracked equities, indices, commodities and ETFs.

``YahooQuoteProvider`` polls Yahoo Finance through yfinance, one symbol
at a time, with a pause between requests and a longer pause between
batches so the upstream does not rate-limit us.  A symbol whose request
fails is replaced by a local estimate around its last known price
(``estimated=True``) so it never drops out of the snapshot.

``SimulatedQuoteProvider`` produces estimates for every symbol; it is the
default source so the pipeline runs without hitting Yahoo.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any

import yfinance as yf

from ._http import sanitize_exc
from .common_types import RawQuoteRecord, TrackedAssetRef, opt_float
from .errors import SourceFetchError

logger = logging.getLogger(__name__)

# Starting points when neither a quote nor a seed price is known.
_BASE_PRICES: dict[str, float] = {
    "index": 4000.0,
    "commodity": 100.0,
    "etf": 50.0,
    "equity": 100.0,
}

ESTIMATE_DRIFT_PCT = 0.5
SIMULATED_DRIFT_PCT = 2.0


def estimate_quote(
    ref: TrackedAssetRef,
    last_price: float | None,
    rng: random.Random,
    drift_pct: float = ESTIMATE_DRIFT_PCT,
) -> RawQuoteRecord:
    """Synthesise a quote within ±*drift_pct* % of the best known price."""
    base = last_price or ref.price or _BASE_PRICES.get(ref.type, 100.0)
    change = (rng.random() - 0.5) * 2 * drift_pct
    price = base * (1 + change / 100)
    return RawQuoteRecord(
        symbol=ref.symbol,
        name=ref.name,
        type=ref.type,
        price=round(price, 4),
        currency=ref.currency,
        change24h_pct=round(change, 4),
        high24h=round(price * (1 + rng.random() * 0.01), 4),
        low24h=round(price * (1 - rng.random() * 0.01), 4),
        volume=None,
        market_cap=None,
        estimated=True,
    )


def _quote_from_info(ref: TrackedAssetRef, info: dict[str, Any]) -> RawQuoteRecord:
    price = opt_float(info.get("regularMarketPrice")) or opt_float(info.get("currentPrice"))
    if price is None:
        raise SourceFetchError(f"no price in Yahoo response for {ref.symbol}", source="yahoo")
    change_pct = opt_float(info.get("regularMarketChangePercent"))
    if change_pct is None:
        prev = opt_float(info.get("regularMarketPreviousClose")) or opt_float(info.get("previousClose"))
        change_pct = (price / prev - 1) * 100 if prev else None
    return RawQuoteRecord(
        symbol=ref.symbol,
        name=ref.name or str(info.get("shortName") or ref.symbol),
        type=ref.type,
        price=price,
        currency=ref.currency or info.get("currency") or None,
        change24h_pct=change_pct,
        high24h=opt_float(info.get("dayHigh")) or opt_float(info.get("regularMarketDayHigh")),
        low24h=opt_float(info.get("dayLow")) or opt_float(info.get("regularMarketDayLow")),
        volume=opt_float(info.get("volume")) or opt_float(info.get("regularMarketVolume")),
        market_cap=opt_float(info.get("marketCap")),
    )


class YahooQuoteProvider:
    """Paced per-symbol Yahoo Finance quotes with estimate fallback.

    Each ``Ticker.info`` call runs on a small worker pool and is abandoned
    after *request_timeout_s*.  With *budget_s* set, one ``fetch_stocks``
    call never runs longer than that: once the next pause plus request
    would overrun it, the remaining symbols are estimated without asking
    Yahoo.  A call that overlaps a running one estimates everything.

    Parameters
    ----------
    request_delay_s : float
        Pause between two symbols of the same batch.
    batch_size : int
        Symbols per batch.
    batch_delay_s : float
        Pause between batches (replaces the per-request pause there).
    request_timeout_s : float
        Upper bound for a single symbol request.
    budget_s : float or None
        Upper bound for a whole ``fetch_stocks`` call; ``None`` disables it.
    sleep, clock, rng, ticker_factory
        Injected for tests; default to ``time.sleep``, ``time.monotonic``,
        a fresh ``random.Random`` and ``yfinance.Ticker``.
    """

    def __init__(
        self,
        *,
        request_delay_s: float = 0.25,
        batch_size: int = 10,
        batch_delay_s: float = 1.0,
        request_timeout_s: float = 5.0,
        budget_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
        ticker_factory: Callable[[str], Any] = yf.Ticker,
    ) -> None:
        self.request_delay_s = request_delay_s
        self.batch_size = max(1, batch_size)
        self.batch_delay_s = batch_delay_s
        self.request_timeout_s = request_timeout_s
        self.budget_s = budget_s
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self._ticker_factory = ticker_factory
        self._last_prices: dict[str, float] = {}
        self._lock = threading.Lock()
        self._fetch_lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="yahoo-quote")

    def _pause_for(self, index: int) -> float:
        if index == 0:
            return 0.0
        if index % self.batch_size == 0:
            return self.batch_delay_s
        return max(0.0, self.request_delay_s)

    def _request_info(self, symbol: str, timeout_s: float) -> dict[str, Any]:
        future = self._pool.submit(lambda: self._ticker_factory(symbol).info or {})
        try:
            return future.result(timeout=timeout_s)
        except FuturesTimeoutError:
            future.cancel()
            raise SourceFetchError(
                f"Yahoo quote {symbol} timed out after {timeout_s:.1f}s", source="yahoo",
            ) from None

    def _estimate(self, ref: TrackedAssetRef) -> RawQuoteRecord:
        with self._lock:
            last = self._last_prices.get(ref.symbol)
        return estimate_quote(ref, last, self._rng)

    def fetch_stocks(self, refs: list[TrackedAssetRef]) -> list[RawQuoteRecord]:
        if not self._fetch_lock.acquire(blocking=False):
            logger.warning("Yahoo fetch already running, estimating %d quotes locally", len(refs))
            return [self._estimate(ref) for ref in refs]
        try:
            return self._fetch_paced(refs)
        finally:
            self._fetch_lock.release()

    def _fetch_paced(self, refs: list[TrackedAssetRef]) -> list[RawQuoteRecord]:
        deadline = None if self.budget_s is None else self._clock() + self.budget_s
        out: list[RawQuoteRecord] = []
        estimated = 0
        for i, ref in enumerate(refs):
            pause = self._pause_for(i)
            timeout_s = self.request_timeout_s
            if deadline is not None:
                timeout_s = min(timeout_s, deadline - self._clock() - pause)
                if timeout_s <= 0:
                    logger.warning(
                        "Yahoo: %.1fs budget spent, estimating the last %d quotes",
                        self.budget_s, len(refs) - i,
                    )
                    out.extend(self._estimate(r) for r in refs[i:])
                    estimated += len(refs) - i
                    break
            if pause > 0:
                self._sleep(pause)
            try:
                rec = _quote_from_info(ref, self._request_info(ref.symbol, timeout_s))
                with self._lock:
                    self._last_prices[ref.symbol] = rec.price  # type: ignore[assignment]
            except Exception as exc:
                logger.debug("Yahoo quote %s failed, estimating: %s", ref.symbol, sanitize_exc(exc))
                rec = self._estimate(ref)
                estimated += 1
            out.append(rec)
        if estimated:
            logger.warning("Yahoo: %d/%d quotes estimated locally", estimated, len(refs))
        return out


class SimulatedQuoteProvider:
    """Synthetic quotes for every tracked symbol (no network)."""

    def __init__(self, *, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def fetch_stocks(self, refs: list[TrackedAssetRef]) -> list[RawQuoteRecord]:
        out: list[RawQuoteRecord] = []
        for ref in refs:
            rec = estimate_quote(ref, None, self._rng, drift_pct=SIMULATED_DRIFT_PCT)
            rec.volume = float(self._rng.randrange(100_000_000))
            rec.market_cap = float(self._rng.randrange(1_000_000_000_000))
            out.append(rec)
        return out
