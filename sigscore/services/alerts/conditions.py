"""Pure alert condition evaluation.

``evaluate_condition`` answers "does the condition hold now?". Edge
detection (fire only on the transition into the condition) lives in the
evaluator, which keeps per (rule, account) state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sigscore.models.enums import AlertTriggerType
from sigscore.schemas.alert import AlertConditions


@dataclass(frozen=True)
class ScorePoint:
    version: int
    score: int
    tier: str
    computed_at: datetime

    def to_snapshot(self) -> dict:
        return {
            "version": self.version,
            "score": self.score,
            "tier": self.tier,
            "computed_at": self.computed_at.isoformat(),
        }


@dataclass
class AccountContext:
    """What the evaluator knows about one account at ``as_of``.

    ``history`` holds recent snapshots up to and including ``current``,
    oldest first. ``count_signals(since, until)`` counts signals with
    since <= timestamp < until.
    """

    account_id: int
    as_of: datetime
    current: ScorePoint | None = None
    previous: ScorePoint | None = None
    history: list[ScorePoint] = field(default_factory=list)
    last_signal_at: datetime | None = None
    count_signals: Callable[[datetime, datetime], int] = lambda since, until: 0


@dataclass
class ConditionResult:
    holds: bool
    reason: str
    baseline: ScorePoint | None = None


@dataclass(frozen=True)
class ConditionDefaults:
    """Operator defaults for values a rule leaves out."""

    drop_percent: float = 20.0
    rise_percent: float = 20.0
    within_days: int = 7
    engagement_days: int = 7
    inactive_days: int = 14

    @classmethod
    def from_settings(cls, settings) -> "ConditionDefaults":
        return cls(
            drop_percent=settings.alert_default_drop_percent,
            rise_percent=settings.alert_default_rise_percent,
            within_days=settings.alert_default_within_days,
            engagement_days=settings.alert_default_engagement_days,
            inactive_days=settings.alert_default_inactive_days,
        )


def baseline_for(ctx: AccountContext, within_days: int) -> ScorePoint | None:
    """Oldest snapshot within ``within_days`` before the current one, else the previous one."""
    current = ctx.current
    if current is None:
        return None
    start = current.computed_at - timedelta(days=within_days)
    in_window = [
        p for p in ctx.history if p.version < current.version and p.computed_at >= start
    ]
    if in_window:
        return min(in_window, key=lambda p: p.version)
    return ctx.previous


def _score_drop(conditions, ctx, defaults) -> ConditionResult:
    percent = conditions.drop_percent or defaults.drop_percent
    within = conditions.within_days or defaults.within_days
    baseline = baseline_for(ctx, within)
    if ctx.current is None or baseline is None or baseline.score <= 0:
        return ConditionResult(False, "no baseline score", baseline)
    drop = baseline.score - ctx.current.score
    holds = drop * 100 >= percent * baseline.score
    reason = (
        f"Score dropped from {baseline.score} to {ctx.current.score} "
        f"({drop / baseline.score * 100:.1f}%) within {within} days"
    )
    return ConditionResult(holds, reason, baseline)


def _score_rise(conditions, ctx, defaults) -> ConditionResult:
    percent = conditions.rise_percent or defaults.rise_percent
    within = conditions.within_days or defaults.within_days
    baseline = baseline_for(ctx, within)
    if ctx.current is None or baseline is None:
        return ConditionResult(False, "no baseline score", baseline)
    rise = ctx.current.score - baseline.score
    if baseline.score == 0:
        holds = ctx.current.score > 0
    else:
        holds = rise * 100 >= percent * baseline.score
    reason = f"Score rose from {baseline.score} to {ctx.current.score} within {within} days"
    return ConditionResult(holds, reason, baseline)


def threshold_holds(score: int, threshold: int, direction: str) -> bool:
    """``below``: score < threshold. ``above``: score >= threshold."""
    if direction == "below":
        return score < threshold
    return score >= threshold


def _score_threshold(conditions, ctx, defaults) -> ConditionResult:
    if ctx.current is None:
        return ConditionResult(False, "account not scored")
    direction = conditions.direction or "above"
    holds = threshold_holds(ctx.current.score, conditions.threshold, direction)
    reason = f"Score {ctx.current.score} is {direction} threshold {conditions.threshold}"
    return ConditionResult(holds, reason, ctx.previous)


def _engagement_drop(conditions, ctx, defaults) -> ConditionResult:
    days = conditions.inactive_days or defaults.engagement_days
    span = timedelta(days=days)
    recent = ctx.count_signals(ctx.as_of - span, ctx.as_of + timedelta(microseconds=1))
    earlier = ctx.count_signals(ctx.as_of - 2 * span, ctx.as_of - span)
    holds = earlier > 0 and recent == 0
    reason = f"No signals in the last {days} days after {earlier} in the {days} days before"
    return ConditionResult(holds, reason, ctx.current)


def _account_inactive(conditions, ctx, defaults) -> ConditionResult:
    days = conditions.inactive_days or defaults.inactive_days
    if ctx.last_signal_at is None:
        return ConditionResult(False, "account has no signals", ctx.current)
    idle = ctx.as_of - ctx.last_signal_at
    holds = idle >= timedelta(days=days)
    reason = f"No signals for {idle.days} days (threshold {days})"
    return ConditionResult(holds, reason, ctx.current)


_EVALUATORS = {
    AlertTriggerType.SCORE_DROP: _score_drop,
    AlertTriggerType.SCORE_RISE: _score_rise,
    AlertTriggerType.SCORE_THRESHOLD: _score_threshold,
    AlertTriggerType.ENGAGEMENT_DROP: _engagement_drop,
    AlertTriggerType.ACCOUNT_INACTIVE: _account_inactive,
}


def evaluate_condition(
    trigger_type: AlertTriggerType | str,
    conditions: AlertConditions,
    ctx: AccountContext,
    defaults: ConditionDefaults | None = None,
) -> ConditionResult:
    """Whether the rule's condition holds for the account right now."""
    trigger = AlertTriggerType(trigger_type)
    evaluator = _EVALUATORS.get(trigger)
    if evaluator is None:
        return ConditionResult(False, f"{trigger.value} is evaluated per signal")
    return evaluator(conditions, ctx, defaults or ConditionDefaults())
