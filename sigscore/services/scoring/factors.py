"""Pure scoring core.

Four factors, each in [0, 1]:
  signal_velocity  recent signal rate vs. the window's average rate
  user_breadth     distinct actors vs. expected users for the company size
  recency          step decay on days since the last signal
  diversity        distinct signal types vs. a saturation count

score = clamp(round_half_up(100 * sum(weight * value)), 0, 100)

No I/O: identical inputs and ``as_of`` always give identical output.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sigscore.models.enums import ScoreTier, ScoreTrend
from sigscore.schemas.score import ScoreFactor

FACTOR_DESCRIPTIONS = {
    "signal_velocity": "Recent signal rate compared to the window average",
    "user_breadth": "Distinct active users relative to company size",
    "recency": "How recently the account produced a signal",
    "diversity": "Variety of signal types",
}


@dataclass(frozen=True)
class SignalPoint:
    """The parts of a signal scoring looks at."""

    type: str
    timestamp: datetime
    actor: str | None


@dataclass
class ScoreResult:
    score: int
    tier: ScoreTier
    factors: list[ScoreFactor]
    signal_count: int
    user_count: int
    last_signal_at: datetime | None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def expected_users(employee_count: int | None, config: dict[str, Any]) -> float:
    """Expected active users for an account from the configured size bands."""
    breadth = config["user_breadth"]
    if employee_count is None:
        return float(breadth["default_expected_users"])
    for band in breadth.get("size_bands") or []:
        max_employees = band.get("max_employees")
        if max_employees is None or employee_count <= max_employees:
            return float(band["expected_users"])
    return float(breadth["default_expected_users"])


def signal_velocity(
    points: list[SignalPoint], as_of: datetime, window_days: int, config: dict[str, Any]
) -> float:
    if not points:
        return 0.0
    recent_days = config["velocity"]["recent_days"]
    saturation = config["velocity"]["saturation"]
    cutoff = as_of - timedelta(days=recent_days)
    recent = sum(1 for p in points if p.timestamp > cutoff)
    expected_recent = len(points) * min(recent_days, window_days) / window_days
    return clamp((recent / expected_recent) / saturation, 0.0, 1.0)


def user_breadth(
    points: list[SignalPoint], employee_count: int | None, config: dict[str, Any]
) -> float:
    actors = {p.actor for p in points if p.actor}
    if not actors:
        return 0.0
    return clamp(len(actors) / expected_users(employee_count, config), 0.0, 1.0)


def recency(points: list[SignalPoint], as_of: datetime, config: dict[str, Any]) -> float:
    if not points:
        return 0.0
    last = max(p.timestamp for p in points)
    days = max(0.0, (as_of - last).total_seconds() / 86400)
    for step in config["recency_decay"]:
        if days <= step["max_days"]:
            return float(step["value"])
    return 0.0


def diversity(points: list[SignalPoint], config: dict[str, Any]) -> float:
    types = {p.type for p in points}
    return clamp(len(types) / config["diversity"]["saturation"], 0.0, 1.0)


def compute_factors(
    points: list[SignalPoint],
    as_of: datetime,
    employee_count: int | None,
    window_days: int,
    config: dict[str, Any],
) -> list[ScoreFactor]:
    """Weighted factors for signals already limited to the scoring window."""
    values = {
        "signal_velocity": signal_velocity(points, as_of, window_days, config),
        "user_breadth": user_breadth(points, employee_count, config),
        "recency": recency(points, as_of, config),
        "diversity": diversity(points, config),
    }
    weights = config["factors"]
    return [
        ScoreFactor(
            name=name,
            weight=float(weights[name]["weight"]),
            value=round(value, 4),
            description=FACTOR_DESCRIPTIONS[name],
        )
        for name, value in values.items()
    ]


def combine(factors: list[ScoreFactor]) -> int:
    total = sum(f.weight * f.value for f in factors)
    return int(clamp(round_half_up(100 * total), 0, 100))


def tier_for_score(score: int, tiers: dict[str, Any]) -> ScoreTier:
    """Tier by inclusive lower bounds: HOT >= tiers['HOT'], and so on."""
    if score >= tiers["HOT"]:
        return ScoreTier.HOT
    if score >= tiers["WARM"]:
        return ScoreTier.WARM
    if score >= tiers["COLD"]:
        return ScoreTier.COLD
    return ScoreTier.INACTIVE


def trend_for(new_score: int, prior_score: int | None, threshold_pct: float) -> ScoreTrend:
    """Direction of change vs. the prior snapshot.

    No prior is STABLE. From a prior of 0 any positive score is RISING.
    Otherwise the relative change must exceed the threshold strictly.
    """
    if prior_score is None:
        return ScoreTrend.STABLE
    if prior_score == 0:
        return ScoreTrend.RISING if new_score > 0 else ScoreTrend.STABLE
    # Integer cross-multiplication: a change exactly at the threshold stays STABLE
    change = (new_score - prior_score) * 100
    if change > threshold_pct * prior_score:
        return ScoreTrend.RISING
    if change < -threshold_pct * prior_score:
        return ScoreTrend.FALLING
    return ScoreTrend.STABLE


def score_signals(
    points: list[SignalPoint],
    as_of: datetime,
    employee_count: int | None,
    window_days: int,
    config: dict[str, Any],
) -> ScoreResult:
    """Score an account from its in-window signals."""
    factors = compute_factors(points, as_of, employee_count, window_days, config)
    score = combine(factors)
    return ScoreResult(
        score=score,
        tier=tier_for_score(score, config["tiers"]),
        factors=factors,
        signal_count=len(points),
        user_count=len({p.actor for p in points if p.actor}),
        last_signal_at=max((p.timestamp for p in points), default=None),
    )
