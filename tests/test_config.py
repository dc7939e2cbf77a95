"""Tests for marketpulse.config: env overrides and validation."""
from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from marketpulse.config import NEWS_FEEDS, TRACKED_SYMBOLS, Config
from marketpulse.errors import ConfigError


class TestConfigEnvVarsAtInstantiationTime(unittest.TestCase):
    """Env vars are read when Config() is called, not at import time."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = Config()
        self.assertEqual(cfg.cache_ttl_s, 300.0)
        self.assertEqual(cfg.auto_refresh_interval_s, 300.0)
        self.assertEqual(cfg.max_alerts, 10)
        self.assertEqual(cfg.min_confidence, 0.5)
        self.assertEqual(cfg.quote_source, "simulated")
        self.assertEqual(cfg.quote_request_timeout_s, 5.0)
        self.assertEqual(cfg.news_feeds, NEWS_FEEDS)
        self.assertEqual(cfg.tracked_symbols, TRACKED_SYMBOLS)

    def test_env_override(self):
        with patch.dict(os.environ, {"CACHE_TTL_S": "60", "MAX_ALERTS": "3", "QUOTE_SOURCE": "yahoo"}):
            cfg = Config()
        self.assertEqual(cfg.cache_ttl_s, 60.0)
        self.assertEqual(cfg.max_alerts, 3)
        self.assertEqual(cfg.quote_source, "yahoo")

    def test_different_instances_see_different_env(self):
        with patch.dict(os.environ, {"CRYPTO_LIMIT": "5"}):
            a = Config()
        with patch.dict(os.environ, {"CRYPTO_LIMIT": "50"}):
            b = Config()
        self.assertEqual((a.crypto_limit, b.crypto_limit), (5, 50))

    def test_unparseable_falls_back_to_default(self):
        with patch.dict(os.environ, {"CACHE_TTL_S": "five minutes", "MAX_ALERTS": "lots"}):
            cfg = Config()
        self.assertEqual(cfg.cache_ttl_s, 300.0)
        self.assertEqual(cfg.max_alerts, 10)

    def test_boolean_flags(self):
        with patch.dict(os.environ, {"ENABLE_CRYPTO": "0", "ENABLE_QUOTES": "1"}):
            cfg = Config()
        self.assertFalse(cfg.enable_crypto)
        self.assertTrue(cfg.enable_quotes)
        self.assertEqual(cfg.active_sources[-1], "quotes:simulated")
        self.assertNotIn("coingecko", cfg.active_sources)

    def test_api_key_not_in_repr(self):
        with patch.dict(os.environ, {"COINGECKO_API_KEY": "cg-secret"}):
            cfg = Config()
        self.assertEqual(cfg.coingecko_api_key, "cg-secret")
        self.assertNotIn("cg-secret", repr(cfg))


class TestConfigValidation(unittest.TestCase):
    def test_invalid_values_rejected(self):
        cases = [
            {"cache_ttl_s": 0},
            {"auto_refresh_interval_s": -1},
            {"max_alerts": -1},
            {"quote_batch_size": 0},
            {"quote_request_timeout_s": 0},
            {"provider_timeout_s": 0},
            {"quote_source": "bloomberg"},
        ]
        for kwargs in cases:
            with self.subTest(**kwargs), self.assertRaises(ConfigError):
                Config(**kwargs)

    def test_zero_max_alerts_allowed(self):
        self.assertEqual(Config(max_alerts=0).max_alerts, 0)


class TestSeedData(unittest.TestCase):
    def test_seed_symbols_unique(self):
        symbols = [r.symbol for r in TRACKED_SYMBOLS]
        self.assertEqual(len(symbols), len(set(symbols)))

    def test_seed_contains_rule_inputs(self):
        symbols = {r.symbol for r in TRACKED_SYMBOLS}
        self.assertTrue({"GC=F", "CL=F", "AAPL", "MSFT", "GOOGL", "NVDA", "TSLA"} <= symbols)
        self.assertGreaterEqual(sum(1 for r in TRACKED_SYMBOLS if r.type == "index"), 2)
