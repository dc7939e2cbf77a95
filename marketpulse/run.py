"""Entry point: ``python -m marketpulse.run``

Standalone refresh loop.  Starts the orchestrator (registry load, first
refresh, periodic auto-refresh) and logs a one-line summary of each new
snapshot until interrupted.

Environment variables control which sources are active:
    ENABLE_CRYPTO=1           (default: on)
    ENABLE_QUOTES=1           (default: on)
    QUOTE_SOURCE=simulated    (or: yahoo)
"""

from __future__ import annotations

import logging
import sys
import time

from .config import Config
from .errors import RefreshError
from .orchestrator import Orchestrator, build_orchestrator

logger = logging.getLogger(__name__)


def _log_snapshot(orch: Orchestrator) -> None:
    state = orch.get_state()
    logger.info(
        "Snapshot: %d news, %d assets, %d alerts (refreshes=%d)",
        len(state.news), len(state.assets), len(state.alerts), orch.refresh_count,
    )
    for alert in state.alerts:
        logger.info("  [%s] %.2f %s", alert.severity.upper(), alert.confidence, alert.title)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    cfg = Config()
    logger.info("Active sources: %s", cfg.active_sources)

    orch = build_orchestrator(cfg)
    try:
        orch.start()
    except RefreshError as exc:
        # The loop keeps running; the next cycle may succeed.
        logger.error("Initial refresh failed: %s", exc)
        orch.start_auto_refresh()

    last_seen = -1
    try:
        while True:
            if orch.refresh_count != last_seen:
                last_seen = orch.refresh_count
                _log_snapshot(orch)
            time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    finally:
        orch.stop()


if __name__ == "__main__":
    main()
