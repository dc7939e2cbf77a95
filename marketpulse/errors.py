"""Structured error taxonomy for the signal pipeline.

Callers can catch specific failure modes without resorting to bare
``Exception``.  Only ``RefreshError`` (from an explicit ``refresh()``)
and ``ConfigError`` (at startup) ever reach a caller; everything else is
isolated, logged and turned into empty / fallback data.
"""
from __future__ import annotations


class MarketPulseError(Exception):
    """Base error for all marketpulse subsystems."""
    pass


class SourceFetchError(MarketPulseError):
    """One provider or fan-out branch failed."""

    def __init__(self, message: str, *, source: str = ""):
        self.source = source
        super().__init__(message)


class TotalMarketFetchError(MarketPulseError):
    """Every configured market branch failed (or none is configured)."""
    pass


class RuleEvaluationError(MarketPulseError):
    """A rule's condition or generator raised."""

    def __init__(self, message: str, *, rule_id: str = ""):
        self.rule_id = rule_id
        super().__init__(message)


class PersistenceError(MarketPulseError):
    """Tracked-asset registry could not be loaded or saved."""

    def __init__(self, message: str, *, path: str = ""):
        self.path = path
        super().__init__(message)


class RefreshError(MarketPulseError):
    """A refresh cycle failed past every isolation boundary."""
    pass


class ConfigError(MarketPulseError):
    """Invalid configuration value."""
    pass
