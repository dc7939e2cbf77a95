"""News ingestion: RSS providers → normalise → dedupe → newest first.

Every provider is fetched in its own worker thread.  A provider that
raises or does not answer within the timeout contributes zero items;
the failure is logged and never reaches the caller.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Protocol

from ._http import log_fetch_warning
from .common_types import NewsItem, NewsResult, RawFeedItem
from .normalize import dedup_key, normalize_feed_item

logger = logging.getLogger(__name__)


class NewsProvider(Protocol):
    source_name: str

    def fetch(self) -> list[RawFeedItem]: ...


def dedupe_news(items: Iterable[NewsItem]) -> list[NewsItem]:
    """Drop later items whose fuzzy key was already seen (first wins)."""
    seen: set[str] = set()
    out: list[NewsItem] = []
    for it in items:
        key = dedup_key(it)
        if key in seen:
            continue
        seen.add(key)
        out.append(it)
    return out


def process_raw_items(raw_items: Iterable[RawFeedItem], now: float) -> list[NewsItem]:
    """Normalise → dedupe → sort by ``published_ts`` desc (stable)."""
    normalized = [normalize_feed_item(raw, now) for raw in raw_items]
    unique = dedupe_news(normalized)
    unique.sort(key=lambda n: n.published_ts, reverse=True)
    return unique


def _fetch_one(provider: NewsProvider) -> list[RawFeedItem]:
    items = provider.fetch()
    for raw in items:
        if not raw.source:
            raw.source = provider.source_name
    return items


def fetch_news(
    providers: Sequence[NewsProvider],
    *,
    timeout_s: float = 20.0,
    clock: Callable[[], float] = time.time,
) -> NewsResult:
    """Fetch all providers concurrently and return the canonical news set."""
    raw_items: list[RawFeedItem] = []
    if providers:
        executor = ThreadPoolExecutor(
            max_workers=min(8, len(providers)), thread_name_prefix="news-fetch",
        )
        try:
            future_map = {executor.submit(_fetch_one, p): p for p in providers}
            _, not_done = wait(future_map, timeout=timeout_s)
            # Iterate in provider order so dedup "first wins" is deterministic.
            for future, provider in future_map.items():
                if future in not_done:
                    logger.warning("News source %s timed out after %.1fs", provider.source_name, timeout_s)
                    continue
                try:
                    raw_items.extend(future.result())
                except Exception as exc:
                    log_fetch_warning(f"News source {provider.source_name}", exc)
        finally:
            # A hung provider must not hold the cycle; its thread is abandoned.
            executor.shutdown(wait=False, cancel_futures=True)

    now = clock()
    items = process_raw_items(raw_items, now)
    logger.info("News: %d raw items from %d sources → %d unique", len(raw_items), len(providers), len(items))
    return NewsResult(items=tuple(items), as_of=now)
