"""Market-condition rules + alert ranking.

The rule set is closed and versioned with the code: ``RULES`` is an
ordered tuple of ``Rule`` values, each a ``matches`` predicate and a
``describe`` generator over the full ``(news, assets)`` snapshot.

Rules are independent.  A rule that raises is logged by id and skipped
for the cycle; the others are still evaluated.  The surviving alerts are
ordered by severity (high > medium > low), then confidence, both
descending, keeping generation order for ties, and truncated.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .common_types import AlertItem, Horizon, MarketAsset, NewsItem, Severity
from .errors import RuleEvaluationError

logger = logging.getLogger(__name__)

SEVERITY_RANK: dict[str, int] = {"high": 3, "medium": 2, "low": 1}

TITLE_MAX = 80
THESIS_MIN = 200
THESIS_MAX = 500
MAX_ASSET_REFS = 5
MAX_NEWS_REFS = 3

BIG_TECH: frozenset[str] = frozenset({"AAPL", "MSFT", "GOOGL", "NVDA", "TSLA"})
GOLD_SYMBOLS: frozenset[str] = frozenset({"GC=F", "GOLD"})
OIL_SYMBOLS: frozenset[str] = frozenset({"CL=F", "OIL"})
CENTRAL_BANK_TERMS: tuple[str, ...] = ("fed", "fomc", "bce", "ecb", "central bank", "banca centrale")

_ADVISORY = (
    "Advisory signal derived from headline keywords and 24h price changes only; "
    "confirm with primary sources before acting."
)

News = Sequence[NewsItem]
Assets = Sequence[MarketAsset]


@dataclass(frozen=True)
class Rule:
    id: str
    matches: Callable[[News, Assets], bool]
    describe: Callable[[News, Assets, float], AlertItem]


# ── Helpers ─────────────────────────────────────────────────────

def _tagged(news: News, tag: str) -> list[NewsItem]:
    return [n for n in news if tag in n.tags]


def _of_type(assets: Assets, *types: str) -> list[MarketAsset]:
    return [a for a in assets if a.type in types]


def _find(assets: Assets, symbols: frozenset[str]) -> MarketAsset | None:
    return next((a for a in assets if a.symbol in symbols), None)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _mentions_central_bank(n: NewsItem) -> bool:
    title = n.title.lower()
    return any(term in title or term in n.tags for term in CENTRAL_BANK_TERMS)


def _ids(items: Sequence[NewsItem] | Sequence[MarketAsset], limit: int) -> tuple[str, ...]:
    return tuple(x.id for x in items[:limit])


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def make_alert(
    rule_id: str,
    *,
    severity: Severity,
    title: str,
    thesis: str,
    confidence: float,
    horizon: Horizon,
    asset_refs: tuple[str, ...],
    news_refs: tuple[str, ...],
    now: float,
) -> AlertItem:
    """Build an alert with the title/thesis length bounds applied."""
    thesis = thesis.strip()
    if len(thesis) < THESIS_MIN:
        thesis = f"{thesis} {_ADVISORY}"
    return AlertItem(
        id=f"alert_{int(now * 1000)}_{rule_id}",
        severity=severity,
        title=_clip(title, TITLE_MAX),
        thesis=_clip(thesis, THESIS_MAX),
        confidence=max(0.0, min(1.0, confidence)),
        horizon=horizon,
        asset_refs=asset_refs,
        news_refs=news_refs,
        created_at=now,
    )


# ── 1. Inflation risk-off ───────────────────────────────────────

def _declining_equities(assets: Assets) -> list[MarketAsset]:
    return [a for a in _of_type(assets, "equity", "index") if a.change24h_pct < -1]


def _inflation_matches(news: News, assets: Assets) -> bool:
    return len(_tagged(news, "inflation")) >= 2 and len(_declining_equities(assets)) >= 3


def _inflation_describe(news: News, assets: Assets, now: float) -> AlertItem:
    relevant = _tagged(news, "inflation")
    declining = _declining_equities(assets)
    return make_alert(
        "inflation_risk_off",
        severity="medium",
        title="Inflation pressure with falling equity markets",
        thesis=(
            f"{len(relevant)} headlines point to inflation pressure while {len(declining)} "
            "equities and indices are down more than 1% over 24h. Price pressure plus broad "
            "selling is a classic risk-off setup: expect defensive rotation and weaker "
            "high-multiple names until the inflation narrative cools."
        ),
        confidence=0.70,
        horizon="days",
        asset_refs=_ids(declining, MAX_ASSET_REFS),
        news_refs=_ids(relevant, MAX_NEWS_REFS),
        now=now,
    )


# ── 2. Crypto rally ─────────────────────────────────────────────

def _pumping_crypto(assets: Assets) -> list[MarketAsset]:
    return [a for a in _of_type(assets, "crypto") if a.change24h_pct > 5]


def _crypto_rally_matches(news: News, assets: Assets) -> bool:
    return bool(_tagged(news, "crypto")) and len(_pumping_crypto(assets)) >= 3


def _crypto_rally_describe(news: News, assets: Assets, now: float) -> AlertItem:
    pumping = _pumping_crypto(assets)
    return make_alert(
        "crypto_rally",
        severity="low",
        title="Crypto rally under way",
        thesis=(
            f"{len(pumping)} crypto assets are up more than 5% over 24h and crypto is in the "
            "news flow. Broad participation across several coins suggests a sector-wide move "
            "rather than a single-token story; momentum can persist for days but reverses "
            "sharply when the headlines fade."
        ),
        confidence=0.60,
        horizon="days",
        asset_refs=_ids(pumping, MAX_ASSET_REFS),
        news_refs=_ids(_tagged(news, "crypto"), MAX_NEWS_REFS),
        now=now,
    )


# ── 3. Big-tech weakness ────────────────────────────────────────

def _weak_tech(assets: Assets) -> list[MarketAsset]:
    return [a for a in assets if a.symbol in BIG_TECH and a.change24h_pct < -2]


def _tech_weakness_matches(news: News, assets: Assets) -> bool:
    return len(_weak_tech(assets)) >= 3


def _tech_weakness_describe(news: News, assets: Assets, now: float) -> AlertItem:
    weak = _weak_tech(assets)
    return make_alert(
        "tech_weakness",
        severity="medium",
        title="Big Tech weakness",
        thesis=(
            f"{len(weak)} of the largest technology names are down more than 2% over 24h. "
            "Simultaneous weakness across mega-caps usually reflects sector rotation or "
            "profit taking rather than company news, and it weighs on the cap-weighted "
            "indices for several weeks when it persists."
        ),
        confidence=0.75,
        horizon="weeks",
        asset_refs=_ids(weak, MAX_ASSET_REFS),
        news_refs=_ids(_tagged(news, "tech"), MAX_NEWS_REFS),
        now=now,
    )


# ── 4. Central-bank rate decision ───────────────────────────────

def _central_bank_news(news: News) -> list[NewsItem]:
    return [n for n in _tagged(news, "rates") if _mentions_central_bank(n)]


def _rate_decision_matches(news: News, assets: Assets) -> bool:
    return len(_central_bank_news(news)) >= 2


def _rate_decision_describe(news: News, assets: Assets, now: float) -> AlertItem:
    rate_news = _central_bank_news(news)
    return make_alert(
        "rate_decision",
        severity="high",
        title="Central-bank rate decision imminent or released",
        thesis=(
            f"{len(rate_news)} headlines discuss central-bank interest rates (Fed/ECB). "
            "Rate decisions reprice every asset class at once: bonds, currencies, equities "
            "and crypto. Expect elevated volatility around the announcement and in the "
            "following weeks as guidance is digested."
        ),
        confidence=0.90,
        horizon="weeks",
        asset_refs=(),
        news_refs=_ids(rate_news, MAX_NEWS_REFS),
        now=now,
    )


# ── 5. Gold as safe haven ───────────────────────────────────────

def _falling_indices(assets: Assets) -> list[MarketAsset]:
    return [a for a in _of_type(assets, "index") if a.change24h_pct < 0]


def _gold_matches(news: News, assets: Assets) -> bool:
    gold = _find(assets, GOLD_SYMBOLS)
    return (
        bool(_tagged(news, "geopolitics"))
        and gold is not None
        and gold.change24h_pct > 0.5
        and len(_falling_indices(assets)) >= 2
    )


def _gold_describe(news: News, assets: Assets, now: float) -> AlertItem:
    gold = _find(assets, GOLD_SYMBOLS)
    if gold is None:
        raise ValueError("gold asset disappeared between match and describe")
    falling = _falling_indices(assets)
    return make_alert(
        "gold_safe_haven",
        severity="medium",
        title="Flight to safety: gold bid",
        thesis=(
            f"Gold is up {gold.change24h_pct:+.2f}% while {len(falling)} equity indices are in "
            "the red and geopolitical tension is in the headlines. Money is moving out of "
            "risk assets into the traditional safe haven; the move typically lasts as long "
            "as the tension stays in the news."
        ),
        confidence=0.80,
        horizon="days",
        asset_refs=(gold.id,) + _ids(falling, MAX_ASSET_REFS - 1),
        news_refs=_ids(_tagged(news, "geopolitics"), MAX_NEWS_REFS),
        now=now,
    )


# ── 6. Energy volatility ────────────────────────────────────────

def _energy_matches(news: News, assets: Assets) -> bool:
    oil = _find(assets, OIL_SYMBOLS)
    return len(_tagged(news, "energy")) >= 2 and oil is not None and abs(oil.change24h_pct) > 2


def _energy_describe(news: News, assets: Assets, now: float) -> AlertItem:
    oil = _find(assets, OIL_SYMBOLS)
    if oil is None:
        raise ValueError("oil asset disappeared between match and describe")
    return make_alert(
        "energy_volatility",
        severity="medium",
        title="Energy sector volatility",
        thesis=(
            f"Crude oil moved {oil.change24h_pct:+.2f}% over 24h, backed by several energy and "
            "supply-chain headlines. Large oil swings feed into inflation expectations, "
            "transport and industrial margins, and energy-heavy indices over the following "
            "weeks."
        ),
        confidence=0.70,
        horizon="weeks",
        asset_refs=(oil.id,),
        news_refs=_ids(_tagged(news, "energy"), MAX_NEWS_REFS),
        now=now,
    )


# ── 7. Market-wide sentiment shift ──────────────────────────────

def _sentiment_matches(news: News, assets: Assets) -> bool:
    indices = _of_type(assets, "index")
    if len(indices) < 2:
        return False
    return all(i.change24h_pct > 0 for i in indices) or all(i.change24h_pct < 0 for i in indices)


def _sentiment_describe(news: News, assets: Assets, now: float) -> AlertItem:
    indices = _of_type(assets, "index")
    is_positive = indices[0].change24h_pct > 0
    avg_abs = _mean([abs(i.change24h_pct) for i in indices])
    direction = "bullish" if is_positive else "bearish"
    return make_alert(
        "sentiment_shift",
        severity="high" if avg_abs > 1.5 else "medium",
        title=f"Market sentiment: {direction.upper()}",
        thesis=(
            f"All {len(indices)} tracked indices are moving in the same direction "
            f"({'+' if is_positive else '-'}{avg_abs:.2f}% on average). A synchronised move "
            f"across regions signals a {direction} shift in global risk appetite rather than "
            "local news, and tends to carry into the next sessions."
        ),
        confidence=0.85,
        horizon="days",
        asset_refs=_ids(indices, MAX_ASSET_REFS),
        news_refs=(),
        now=now,
    )


# ── 8. Crypto decoupling ────────────────────────────────────────

def _btc(assets: Assets) -> MarketAsset | None:
    return next((a for a in assets if a.symbol == "BTC"), None)


def _decoupling_matches(news: News, assets: Assets) -> bool:
    btc = _btc(assets)
    indices = _of_type(assets, "index")
    if btc is None or not indices:
        return False
    avg_index = _mean([i.change24h_pct for i in indices])
    opposite = (btc.change24h_pct > 0 and avg_index < 0) or (btc.change24h_pct < 0 and avg_index > 0)
    return opposite and abs(btc.change24h_pct - avg_index) > 3


def _decoupling_describe(news: News, assets: Assets, now: float) -> AlertItem:
    btc = _btc(assets)
    if btc is None:
        raise ValueError("BTC asset disappeared between match and describe")
    return make_alert(
        "crypto_decoupling",
        severity="low",
        title="Crypto decoupling from equities",
        thesis=(
            f"Bitcoin ({btc.change24h_pct:+.2f}%) is moving against the average of traditional "
            "equity indices by more than 3 points. A break in the usual correlation often "
            "marks crypto-specific flows (regulation, ETF demand, liquidations) and is worth "
            "watching before it reverts."
        ),
        confidence=0.60,
        horizon="days",
        asset_refs=(btc.id,),
        news_refs=_ids(_tagged(news, "crypto"), MAX_NEWS_REFS),
        now=now,
    )


RULES: tuple[Rule, ...] = (
    Rule("inflation_risk_off", _inflation_matches, _inflation_describe),
    Rule("crypto_rally", _crypto_rally_matches, _crypto_rally_describe),
    Rule("tech_weakness", _tech_weakness_matches, _tech_weakness_describe),
    Rule("rate_decision", _rate_decision_matches, _rate_decision_describe),
    Rule("gold_safe_haven", _gold_matches, _gold_describe),
    Rule("energy_volatility", _energy_matches, _energy_describe),
    Rule("sentiment_shift", _sentiment_matches, _sentiment_describe),
    Rule("crypto_decoupling", _decoupling_matches, _decoupling_describe),
)


# ── Engine ──────────────────────────────────────────────────────

def rank_alerts(alerts: Sequence[AlertItem], max_alerts: int) -> list[AlertItem]:
    """Severity desc, confidence desc; stable for ties; at most *max_alerts*."""
    ranked = sorted(alerts, key=lambda a: (-SEVERITY_RANK[a.severity], -a.confidence))
    return ranked[:max_alerts]


def evaluate_rule(rule: Rule, news: News, assets: Assets, now: float) -> AlertItem | None:
    """Run one rule; any exception is re-raised as ``RuleEvaluationError``."""
    try:
        if not rule.matches(news, assets):
            return None
        return rule.describe(news, assets, now)
    except Exception as exc:
        raise RuleEvaluationError(f"{type(exc).__name__}: {exc}", rule_id=rule.id) from exc


class RuleEngine:
    """Evaluates ``rules`` in order and ranks what they produce."""

    def __init__(
        self,
        rules: Sequence[Rule] = RULES,
        *,
        max_alerts: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.rules = tuple(rules)
        self.max_alerts = max_alerts
        self._clock = clock

    def generate_alerts(self, news: News, assets: Assets) -> list[AlertItem]:
        now = self._clock()
        alerts: list[AlertItem] = []
        for rule in self.rules:
            try:
                alert = evaluate_rule(rule, news, assets, now)
            except RuleEvaluationError as exc:
                logger.warning("Rule %s failed: %s", exc.rule_id, exc)
                continue
            if alert is not None:
                alerts.append(alert)
        ranked = rank_alerts(alerts, self.max_alerts)
        logger.debug("Rules: %d fired, %d kept", len(alerts), len(ranked))
        return ranked
