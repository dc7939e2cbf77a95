"""Tests for marketpulse.rules: the eight market-condition rules, rule
isolation and alert ranking."""
from __future__ import annotations

import random

import pytest

from marketpulse.common_types import AlertItem, MarketAsset, NewsItem
from marketpulse.errors import RuleEvaluationError
from marketpulse.rules import (
    MAX_ASSET_REFS,
    MAX_NEWS_REFS,
    RULES,
    SEVERITY_RANK,
    THESIS_MAX,
    THESIS_MIN,
    TITLE_MAX,
    Rule,
    RuleEngine,
    evaluate_rule,
    make_alert,
    rank_alerts,
)

NOW = 1_700_000_000.0


def _news(i: int, *tags: str, title: str | None = None) -> NewsItem:
    return NewsItem(
        id=f"n{i}",
        title=title or f"Headline {i}",
        url=f"https://example.com/{i}",
        source="Test",
        published_ts=NOW - i,
        snippet="",
        tags=frozenset(tags),
    )


def _asset(symbol: str, type_: str, change: float) -> MarketAsset:
    return MarketAsset(
        id=f"{type_}:{symbol}",
        type=type_,
        symbol=symbol,
        name=symbol,
        price=100.0,
        currency="USD",
        change24h_pct=change,
        high24h=None,
        low24h=None,
        volume=None,
        market_cap=None,
        as_of=NOW,
    )


def _alert(rule_id: str, severity: str, confidence: float) -> AlertItem:
    return AlertItem(
        id=f"alert_0_{rule_id}",
        severity=severity,  # type: ignore[arg-type]
        title=rule_id,
        thesis="x" * THESIS_MIN,
        confidence=confidence,
        horizon="days",
        asset_refs=(),
        news_refs=(),
        created_at=NOW,
    )


def _engine(**kw) -> RuleEngine:
    return RuleEngine(clock=lambda: NOW, **kw)


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_inflation_risk_off(self):
        news = [_news(1, "inflation"), _news(2, "inflation")]
        assets = [_asset(s, "index", -1.5) for s in ("^GSPC", "^DJI", "^IXIC")]
        alerts = _engine().generate_alerts(news, assets)
        by_id = {a.id: a for a in alerts}
        alert = by_id[f"alert_{int(NOW * 1000)}_inflation_risk_off"]
        assert alert.severity == "medium"
        assert alert.confidence == pytest.approx(0.70)
        assert alert.horizon == "days"
        assert alert.news_refs == ("n1", "n2")

    def test_empty_input_yields_no_alerts(self):
        assert _engine().generate_alerts([], []) == []

    def test_crypto_rally_references_all_pumping_assets(self):
        assets = [_asset(s, "crypto", c) for s, c in (("BTC", 6), ("ETH", 7), ("SOL", 8), ("XRP", 9))]
        alerts = _engine().generate_alerts([_news(1, "crypto")], assets)
        rally = [a for a in alerts if a.id.endswith("_crypto_rally")]
        assert len(rally) == 1
        assert rally[0].asset_refs == ("crypto:BTC", "crypto:ETH", "crypto:SOL", "crypto:XRP")
        assert rally[0].severity == "low"


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------


def _rule(rule_id: str) -> Rule:
    return next(r for r in RULES if r.id == rule_id)


class TestRuleConditions:
    def test_rule_order_is_fixed(self):
        assert [r.id for r in RULES] == [
            "inflation_risk_off",
            "crypto_rally",
            "tech_weakness",
            "rate_decision",
            "gold_safe_haven",
            "energy_volatility",
            "sentiment_shift",
            "crypto_decoupling",
        ]

    def test_inflation_needs_three_declining(self):
        rule = _rule("inflation_risk_off")
        news = [_news(1, "inflation"), _news(2, "inflation")]
        assets = [_asset("A", "equity", -1.5), _asset("B", "index", -2.0), _asset("C", "equity", -0.5)]
        assert rule.matches(news, assets) is False

    def test_crypto_rally_needs_crypto_news(self):
        rule = _rule("crypto_rally")
        assets = [_asset(s, "crypto", 10) for s in ("BTC", "ETH", "SOL")]
        assert rule.matches([], assets) is False
        assert rule.matches([_news(1, "crypto")], assets) is True

    def test_tech_weakness(self):
        rule = _rule("tech_weakness")
        assets = [
            _asset("AAPL", "equity", -2.5),
            _asset("MSFT", "equity", -3.0),
            _asset("NVDA", "equity", -4.0),
            _asset("AMZN", "equity", -9.0),  # not in the big-tech set
        ]
        assert rule.matches([], assets) is True
        alert = rule.describe([], assets, NOW)
        assert alert.asset_refs == ("equity:AAPL", "equity:MSFT", "equity:NVDA")
        assert alert.horizon == "weeks"
        assert alert.confidence == pytest.approx(0.75)

    def test_rate_decision_requires_central_bank_mention(self):
        rule = _rule("rate_decision")
        plain = [_news(1, "rates", title="Mutui, salgono i tassi"), _news(2, "rates", title="Tassi in crescita")]
        assert rule.matches(plain, []) is False
        cb = [
            _news(1, "rates", title="La BCE alza i tassi"),
            _news(2, "rates", title="Fed holds rates steady"),
        ]
        assert rule.matches(cb, []) is True
        alert = rule.describe(cb, [], NOW)
        assert alert.severity == "high"
        assert alert.confidence == pytest.approx(0.90)
        assert alert.asset_refs == ()

    def test_gold_safe_haven(self):
        rule = _rule("gold_safe_haven")
        assets = [
            _asset("GC=F", "commodity", 1.2),
            _asset("^GSPC", "index", -0.3),
            _asset("^DJI", "index", -0.8),
        ]
        news = [_news(1, "geopolitics")]
        assert rule.matches(news, assets) is True
        alert = rule.describe(news, assets, NOW)
        assert alert.asset_refs[0] == "commodity:GC=F"
        assert len(alert.asset_refs) == 3

    def test_gold_safe_haven_needs_gold_up(self):
        rule = _rule("gold_safe_haven")
        assets = [
            _asset("GC=F", "commodity", 0.4),
            _asset("^GSPC", "index", -0.3),
            _asset("^DJI", "index", -0.8),
        ]
        assert rule.matches([_news(1, "geopolitics")], assets) is False

    def test_energy_volatility_either_direction(self):
        rule = _rule("energy_volatility")
        news = [_news(1, "energy"), _news(2, "energy")]
        assert rule.matches(news, [_asset("CL=F", "commodity", -2.5)]) is True
        assert rule.matches(news, [_asset("CL=F", "commodity", 2.5)]) is True
        assert rule.matches(news, [_asset("CL=F", "commodity", 1.9)]) is False

    def test_sentiment_shift_severity_by_mean_move(self):
        rule = _rule("sentiment_shift")
        strong = [_asset("^GSPC", "index", 2.0), _asset("^DJI", "index", 1.8)]
        mild = [_asset("^GSPC", "index", 0.5), _asset("^DJI", "index", 0.2)]
        assert rule.describe([], strong, NOW).severity == "high"
        assert rule.describe([], mild, NOW).severity == "medium"
        assert "BULLISH" in rule.describe([], mild, NOW).title

    def test_sentiment_shift_mixed_directions(self):
        rule = _rule("sentiment_shift")
        assets = [_asset("^GSPC", "index", 0.5), _asset("^DJI", "index", -0.2)]
        assert rule.matches([], assets) is False

    def test_sentiment_shift_needs_two_indices(self):
        assert _rule("sentiment_shift").matches([], [_asset("^GSPC", "index", 3.0)]) is False

    def test_crypto_decoupling(self):
        rule = _rule("crypto_decoupling")
        assets = [
            _asset("BTC", "crypto", 4.0),
            _asset("^GSPC", "index", -0.5),
            _asset("^DJI", "index", -0.5),
        ]
        assert rule.matches([], assets) is True
        assert rule.describe([], assets, NOW).asset_refs == ("crypto:BTC",)

    def test_crypto_decoupling_same_direction(self):
        rule = _rule("crypto_decoupling")
        assets = [_asset("BTC", "crypto", 8.0), _asset("^GSPC", "index", 0.5)]
        assert rule.matches([], assets) is False


# ---------------------------------------------------------------------------
# Alert construction
# ---------------------------------------------------------------------------


class TestMakeAlert:
    def test_bounds_applied(self):
        alert = make_alert(
            "x",
            severity="low",
            title="T" * 200,
            thesis="short",
            confidence=1.7,
            horizon="days",
            asset_refs=(),
            news_refs=(),
            now=NOW,
        )
        assert len(alert.title) == TITLE_MAX
        assert THESIS_MIN <= len(alert.thesis) <= THESIS_MAX
        assert alert.confidence == 1.0
        assert alert.id == f"alert_{int(NOW * 1000)}_x"

    def test_long_thesis_clipped(self):
        alert = make_alert(
            "x",
            severity="low",
            title="t",
            thesis="word " * 200,
            confidence=0.5,
            horizon="days",
            asset_refs=(),
            news_refs=(),
            now=NOW,
        )
        assert len(alert.thesis) == THESIS_MAX

    def test_every_rule_respects_reference_caps(self):
        news = [_news(i, "inflation", "crypto", "tech", "geopolitics", "energy", "rates",
                      title=f"Fed e BCE {i}") for i in range(10)]
        assets = (
            [_asset(s, "index", -2.0) for s in ("^GSPC", "^DJI", "^IXIC", "^FTSE", "^N225", "^HSI")]
            + [_asset(s, "equity", -3.0) for s in ("AAPL", "MSFT", "GOOGL", "NVDA", "TSLA")]
            + [_asset(s, "crypto", 9.0) for s in ("BTC", "ETH", "SOL", "ADA", "XRP", "DOT")]
            + [_asset("GC=F", "commodity", 1.0), _asset("CL=F", "commodity", 4.0)]
        )
        alerts = _engine(max_alerts=100).generate_alerts(news, assets)
        assert len(alerts) == 8
        for a in alerts:
            assert len(a.asset_refs) <= MAX_ASSET_REFS
            assert len(a.news_refs) <= MAX_NEWS_REFS
            assert THESIS_MIN <= len(a.thesis) <= THESIS_MAX
            assert len(a.title) <= TITLE_MAX


# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------


def _boom(*_args):
    raise RuntimeError("boom")


class TestRuleIsolation:
    def test_evaluate_rule_wraps_errors(self):
        rule = Rule("broken", _boom, _boom)
        with pytest.raises(RuleEvaluationError) as ei:
            evaluate_rule(rule, [], [], NOW)
        assert ei.value.rule_id == "broken"

    def test_failing_matches_does_not_stop_others(self):
        always = Rule("always", lambda n, a: True, lambda n, a, now: make_alert(
            "always", severity="low", title="ok", thesis="ok", confidence=0.5,
            horizon="days", asset_refs=(), news_refs=(), now=now,
        ))
        engine = _engine(rules=(Rule("broken", _boom, _boom), always))
        alerts = engine.generate_alerts([], [])
        assert [a.id for a in alerts] == [f"alert_{int(NOW * 1000)}_always"]

    def test_failing_describe_excluded(self):
        engine = _engine(rules=(Rule("broken", lambda n, a: True, _boom),))
        assert engine.generate_alerts([], []) == []


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


class TestRanking:
    def test_order_severity_then_confidence(self):
        alerts = [
            _alert("a", "low", 0.9),
            _alert("b", "high", 0.5),
            _alert("c", "medium", 0.8),
            _alert("d", "high", 0.9),
        ]
        assert [a.title for a in rank_alerts(alerts, 10)] == ["d", "b", "c", "a"]

    def test_ties_keep_generation_order(self):
        alerts = [_alert("first", "medium", 0.7), _alert("second", "medium", 0.7)]
        assert [a.title for a in rank_alerts(alerts, 10)] == ["first", "second"]

    def test_truncates_to_max(self):
        alerts = [_alert(str(i), "low", 0.5) for i in range(5)]
        assert len(rank_alerts(alerts, 3)) == 3
        assert rank_alerts(alerts, 0) == []

    def test_ranking_law_on_random_sets(self):
        rng = random.Random(42)
        for _ in range(50):
            alerts = [
                _alert(str(i), rng.choice(["low", "medium", "high"]), round(rng.random(), 2))
                for i in range(rng.randrange(0, 12))
            ]
            ranked = rank_alerts(alerts, 6)
            assert len(ranked) <= 6
            for a, b in zip(ranked, ranked[1:]):
                ra, rb = SEVERITY_RANK[a.severity], SEVERITY_RANK[b.severity]
                assert ra >= rb
                if ra == rb:
                    assert a.confidence >= b.confidence

    def test_min_confidence_not_applied(self):
        engine = _engine(rules=(Rule("low_conf", lambda n, a: True, lambda n, a, now: make_alert(
            "low_conf", severity="low", title="t", thesis="t", confidence=0.1,
            horizon="days", asset_refs=(), news_refs=(), now=now,
        )),))
        assert len(engine.generate_alerts([], [])) == 1
