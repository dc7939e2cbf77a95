"""Shared HTTP helpers for the upstream provider adapters.

Every provider goes through these helpers, so credentials are masked in
logs whichever adapter failed, and tier-limited HTTP errors are reported
once per source.

No retries: a failed request fails its branch for the current cycle.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any

import httpx

from .errors import SourceFetchError

logger = logging.getLogger(__name__)

# Masks credential query params (apikey=, token=, ...).
_TOKEN_RE = re.compile(r"(apikey|api_key|token|key)=[^&\s]+", re.IGNORECASE)

# ── Once-per-source error suppression ───────────────────────────
# 400/401/403/404 responses typically mean the endpoint is not available
# on the user's API plan (or the feed moved).  Warn once, then suppress.
_WARNED_SOURCES: set[str] = set()
_warned_lock = threading.Lock()

_TIER_LIMITED_CODES: frozenset[int] = frozenset({400, 401, 403, 404})

USER_AGENT = "marketpulse/0.1"


def sanitize_url(url: str) -> str:
    """*url* with credential query values replaced by ``***``."""
    return _TOKEN_RE.sub(r"\1=***", url)


def sanitize_exc(exc: BaseException) -> str:
    """``str(exc)`` with credential values masked."""
    return _TOKEN_RE.sub(r"\1=***", str(exc))


def _is_tier_limited_error(exc: BaseException) -> bool:
    cause = exc.__cause__ if isinstance(exc, SourceFetchError) else exc
    return (
        isinstance(cause, httpx.HTTPStatusError)
        and cause.response.status_code in _TIER_LIMITED_CODES
    )


def log_fetch_warning(label: str, exc: BaseException) -> None:
    """Report a provider failure under *label*.

    The first 400/401/403/404 for a given *label* is logged at WARNING
    with a note that further occurrences are suppressed; later ones go to
    DEBUG.  Other errors (network, 5xx, parse) are always WARNING.
    """
    msg = sanitize_exc(exc)
    if _is_tier_limited_error(exc):
        with _warned_lock:
            already_warned = label in _WARNED_SOURCES
            _WARNED_SOURCES.add(label)
        if not already_warned:
            logger.warning(
                "%s fetch failed (client error) – suppressing further warnings: %s",
                label, msg,
            )
        else:
            logger.debug("%s fetch failed (suppressed): %s", label, msg)
    else:
        logger.warning("%s fetch failed: %s", label, msg)


def new_client(timeout_s: float, headers: dict[str, str] | None = None) -> httpx.Client:
    return httpx.Client(
        timeout=timeout_s,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT, **(headers or {})},
    )


def safe_get(
    client: httpx.Client,
    url: str,
    params: dict[str, Any] | None = None,
    *,
    source: str,
) -> httpx.Response:
    """GET *url*; any transport or status failure becomes ``SourceFetchError``."""
    try:
        r = client.get(url, params=params)
        r.raise_for_status()
        return r
    except httpx.HTTPStatusError as exc:
        raise SourceFetchError(
            f"HTTP {exc.response.status_code} from {sanitize_url(str(exc.request.url))}",
            source=source,
        ) from exc
    except httpx.HTTPError as exc:
        raise SourceFetchError(
            f"{type(exc).__name__}: {sanitize_exc(exc)}", source=source,
        ) from exc
