"""RSS/Atom news source.

Fetches the feed with httpx (so timeouts and redirects are under our
control) and hands the body to feedparser.  Returns ``RawFeedItem``
records; normalisation happens in ``news``.
"""

from __future__ import annotations

import logging

import feedparser
import httpx

from ._http import new_client, safe_get
from .common_types import RawFeedItem
from .errors import SourceFetchError

logger = logging.getLogger(__name__)


class RssProvider:
    """One feed URL, labelled with the publisher name."""

    def __init__(
        self,
        feed_url: str,
        source_name: str,
        *,
        client: httpx.Client | None = None,
        timeout_s: float = 10.0,
        max_items: int = 50,
    ) -> None:
        self.feed_url = feed_url
        self.source_name = source_name
        self.max_items = max_items
        self.client = client or new_client(timeout_s)

    def fetch(self) -> list[RawFeedItem]:
        r = safe_get(self.client, self.feed_url, source=self.source_name)
        feed = feedparser.parse(r.content)
        entries = list(feed.entries or [])
        if not entries and feed.bozo:
            raise SourceFetchError(
                f"unparseable feed from {self.feed_url}: {feed.get('bozo_exception')}",
                source=self.source_name,
            )
        items = [RawFeedItem.from_payload(e, source=self.source_name) for e in entries[: self.max_items]]
        logger.debug("RSS %s: %d entries", self.source_name, len(items))
        return items

    def close(self) -> None:
        self.client.close()


def build_rss_providers(
    feeds: tuple[tuple[str, str], ...],
    timeout_s: float = 10.0,
) -> list[RssProvider]:
    """One provider per ``(url, source)`` pair, sharing one HTTP client."""
    client = new_client(timeout_s)
    return [RssProvider(url, name, client=client) for url, name in feeds]
