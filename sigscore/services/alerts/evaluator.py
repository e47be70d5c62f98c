"""Edge-triggered alert evaluation.

Stateful rules fire when their condition starts holding for an account
and stay quiet while it keeps holding; state resets once it stops.
``score_threshold`` needs a previous side to cross from, so its first
observation only seeds state. ``new_hot_signal`` fires per matching signal.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from sigscore.config import get_settings
from sigscore.models.account import Account
from sigscore.models.account_score import AccountScore
from sigscore.models.alert_event import AlertEvent
from sigscore.models.alert_rule import AlertRule, AlertRuleState
from sigscore.models.enums import INACTIVITY_TRIGGERS, STATEFUL_TRIGGERS, AlertTriggerType
from sigscore.models.job_run import JobRun
from sigscore.models.signal import Signal
from sigscore.schemas.alert import AlertChannels, AlertConditions
from sigscore.services.alerts.conditions import (
    AccountContext,
    ConditionDefaults,
    ScorePoint,
    evaluate_condition,
    threshold_holds,
)
from sigscore.services.alerts.dispatch import get_dispatcher
from sigscore.services.alerts.rules import get_rule
from sigscore.services.identity.resolver import get_account_or_404
from sigscore.timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

# Longest look-back a score rule may configure (within_days <= 365)
HISTORY_DAYS = 365


def _point(snapshot: AccountScore | None) -> ScorePoint | None:
    if snapshot is None:
        return None
    return ScorePoint(
        version=snapshot.version,
        score=snapshot.score,
        tier=snapshot.tier,
        computed_at=snapshot.computed_at,
    )


def build_context(
    db: Session,
    account_id: int,
    as_of: datetime,
    after: AccountScore | None = None,
    before: AccountScore | None = None,
) -> AccountContext:
    """Load score history and signal activity for one account."""
    if after is None:
        after = db.scalar(
            select(AccountScore)
            .where(AccountScore.account_id == account_id)
            .order_by(AccountScore.version.desc())
            .limit(1)
        )
    if after is not None and before is None:
        before = db.scalar(
            select(AccountScore)
            .where(AccountScore.account_id == account_id, AccountScore.version < after.version)
            .order_by(AccountScore.version.desc())
            .limit(1)
        )

    history: list[ScorePoint] = []
    if after is not None:
        rows = db.scalars(
            select(AccountScore)
            .where(
                AccountScore.account_id == account_id,
                AccountScore.version <= after.version,
                AccountScore.computed_at >= after.computed_at - timedelta(days=HISTORY_DAYS),
            )
            .order_by(AccountScore.version.asc())
        ).all()
        history = [_point(r) for r in rows]

    last_signal_at = db.scalar(
        select(func.max(Signal.timestamp)).where(
            Signal.account_id == account_id, Signal.timestamp <= as_of
        )
    )

    def count_signals(since: datetime, until: datetime) -> int:
        return (
            db.scalar(
                select(func.count(Signal.id)).where(
                    Signal.account_id == account_id,
                    Signal.timestamp >= since,
                    Signal.timestamp < until,
                )
            )
            or 0
        )

    return AccountContext(
        account_id=account_id,
        as_of=as_of,
        current=_point(after),
        previous=_point(before),
        history=history,
        last_signal_at=last_signal_at,
        count_signals=count_signals,
    )


def _in_cooldown(db: Session, rule: AlertRule, account_id: int | None) -> bool:
    minutes = get_settings().alert_cooldown_minutes
    if minutes <= 0:
        return False
    last_fired = db.scalar(
        select(func.max(AlertEvent.fired_at)).where(
            AlertEvent.rule_id == rule.id,
            AlertEvent.account_id == account_id,
            AlertEvent.is_test.is_(False),
        )
    )
    return last_fired is not None and utcnow() - last_fired < timedelta(minutes=minutes)


def _evaluate_rule(
    db: Session,
    rule: AlertRule,
    ctx: AccountContext,
    defaults: ConditionDefaults,
) -> AlertEvent | None:
    """Apply edge logic for one rule and account. Commits state and any event."""
    conditions = AlertConditions.model_validate(rule.conditions or {})
    result = evaluate_condition(rule.trigger_type, conditions, ctx, defaults)

    state = db.scalar(
        select(AlertRuleState).where(
            AlertRuleState.rule_id == rule.id, AlertRuleState.account_id == ctx.account_id
        )
    )
    if state is None:
        if rule.trigger_type == AlertTriggerType.SCORE_THRESHOLD.value and ctx.previous is None:
            db.add(AlertRuleState(rule_id=rule.id, account_id=ctx.account_id, active=result.holds))
            db.commit()
            return None
        was_active = False
        if rule.trigger_type == AlertTriggerType.SCORE_THRESHOLD.value:
            was_active = threshold_holds(
                ctx.previous.score, conditions.threshold, conditions.direction or "above"
            )
        state = AlertRuleState(rule_id=rule.id, account_id=ctx.account_id, active=was_active)
        db.add(state)

    event: AlertEvent | None = None
    if result.holds and not state.active:
        if _in_cooldown(db, rule, ctx.account_id):
            logger.info("Alert suppressed by cooldown: rule=%s account=%s", rule.id, ctx.account_id)
        else:
            event = AlertEvent(
                organization_id=rule.organization_id,
                rule_id=rule.id,
                account_id=ctx.account_id,
                reason=result.reason,
                snapshot_before=result.baseline.to_snapshot() if result.baseline else None,
                snapshot_after=ctx.current.to_snapshot() if ctx.current else None,
                channels=AlertChannels.model_validate(rule.channels or {}).enabled(),
            )
            db.add(event)
            rule.last_triggered_at = utcnow()
        # A suppressed fire still consumes the edge
        state.active = True
    elif not result.holds and state.active:
        state.active = False
    state.last_evaluated_at = utcnow()
    db.commit()
    return event


def _dispatch(db: Session, rule: AlertRule, event: AlertEvent) -> None:
    account = db.get(Account, event.account_id) if event.account_id is not None else None
    get_dispatcher().dispatch(rule, event, account.name if account is not None else None)


def evaluate_account(
    db: Session,
    organization_id: str,
    account_id: int,
    before: AccountScore | None = None,
    after: AccountScore | None = None,
    as_of: datetime | None = None,
    trigger_types: frozenset[AlertTriggerType] = STATEFUL_TRIGGERS,
) -> list[AlertEvent]:
    """Evaluate the organization's enabled stateful rules for one account.

    One failing rule is logged and does not stop the others.
    """
    rules = db.scalars(
        select(AlertRule)
        .where(
            AlertRule.organization_id == organization_id,
            AlertRule.enabled.is_(True),
            AlertRule.trigger_type.in_([t.value for t in trigger_types]),
        )
        .order_by(AlertRule.id)
    ).all()
    if not rules:
        return []

    if as_of is None:
        as_of = after.computed_at if after is not None else utcnow()
    ctx = build_context(db, account_id, to_naive_utc(as_of), after=after, before=before)
    defaults = ConditionDefaults.from_settings(get_settings())

    fired: list[tuple[AlertRule, AlertEvent]] = []
    for rule in rules:
        try:
            event = _evaluate_rule(db, rule, ctx, defaults)
            if event is not None:
                fired.append((rule, event))
        except Exception:
            logger.exception("Alert evaluation failed: rule=%s account=%s", rule.id, account_id)
            db.rollback()

    for rule, event in fired:
        logger.info("Alert fired: rule=%s account=%s event=%s", rule.id, account_id, event.id)
        _dispatch(db, rule, event)
    return [event for _, event in fired]


def signal_matches(signal: Signal, source_types: list[str]) -> bool:
    wanted = {s.lower() for s in source_types}
    return signal.source_type.lower() in wanted or signal.type.lower() in wanted


def evaluate_signal(db: Session, signal: Signal) -> list[AlertEvent]:
    """Fire every enabled new_hot_signal rule whose source types match the signal."""
    rules = db.scalars(
        select(AlertRule)
        .where(
            AlertRule.organization_id == signal.organization_id,
            AlertRule.enabled.is_(True),
            AlertRule.trigger_type == AlertTriggerType.NEW_HOT_SIGNAL.value,
        )
        .order_by(AlertRule.id)
    ).all()

    fired: list[tuple[AlertRule, AlertEvent]] = []
    for rule in rules:
        try:
            conditions = AlertConditions.model_validate(rule.conditions or {})
            if not signal_matches(signal, conditions.source_types or []):
                continue
            latest = None
            if signal.account_id is not None:
                latest = db.scalar(
                    select(AccountScore)
                    .where(AccountScore.account_id == signal.account_id)
                    .order_by(AccountScore.version.desc())
                    .limit(1)
                )
            event = AlertEvent(
                organization_id=rule.organization_id,
                rule_id=rule.id,
                account_id=signal.account_id,
                signal_id=signal.id,
                reason=f"New {signal.type} signal from {signal.source_type}",
                snapshot_after=latest.to_snapshot() if latest is not None else None,
                channels=AlertChannels.model_validate(rule.channels or {}).enabled(),
            )
            db.add(event)
            rule.last_triggered_at = utcnow()
            db.commit()
            fired.append((rule, event))
        except Exception:
            logger.exception("Signal alert failed: rule=%s signal=%s", rule.id, signal.id)
            db.rollback()

    for rule, event in fired:
        _dispatch(db, rule, event)
    return [event for _, event in fired]


def send_test_alert(
    db: Session, organization_id: str, rule_id: int, account_id: int | None = None
) -> AlertEvent:
    """Fire a rule once on demand.

    Ignores the enabled flag, edge state and cooldown; the event is recorded
    with is_test=True and rule state is left untouched.
    """
    rule = get_rule(db, organization_id, rule_id)
    latest = None
    if account_id is not None:
        get_account_or_404(db, organization_id, account_id)
        latest = db.scalar(
            select(AccountScore)
            .where(AccountScore.account_id == account_id)
            .order_by(AccountScore.version.desc())
            .limit(1)
        )
    event = AlertEvent(
        organization_id=organization_id,
        rule_id=rule.id,
        account_id=account_id,
        reason=f"Test alert for rule '{rule.name}'",
        snapshot_after=latest.to_snapshot() if latest is not None else None,
        channels=AlertChannels.model_validate(rule.channels or {}).enabled(),
        is_test=True,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    _dispatch(db, rule, event)
    return event


def run_inactivity_check(
    db: Session, organization_id: str | None = None, as_of: datetime | None = None
) -> dict:
    """Evaluate time-based rules for every account that has signals.

    Creates a JobRun record for audit.

    Returns:
        dict with status, job_run_id, accounts_checked, alerts_fired, error
    """
    as_of = to_naive_utc(as_of) if as_of else utcnow()
    job = JobRun(job_type="alert_check", organization_id=organization_id, status="running")
    db.add(job)
    db.commit()
    db.refresh(job)

    try:
        rule_orgs = select(AlertRule.organization_id).where(
            AlertRule.enabled.is_(True),
            AlertRule.trigger_type.in_([t.value for t in INACTIVITY_TRIGGERS]),
        )
        query = (
            select(Account.organization_id, Account.id)
            .join(Signal, Signal.account_id == Account.id)
            .where(Account.organization_id.in_(rule_orgs))
            .distinct()
            .order_by(Account.id)
        )
        if organization_id is not None:
            query = query.where(Account.organization_id == organization_id)
        targets = db.execute(query).all()

        fired = 0
        errors: list[str] = []
        for org_id, account_id in targets:
            try:
                fired += len(
                    evaluate_account(
                        db, org_id, account_id, as_of=as_of, trigger_types=INACTIVITY_TRIGGERS
                    )
                )
            except Exception as exc:
                logger.exception("Inactivity check failed for account %s", account_id)
                db.rollback()
                errors.append(f"Account {account_id}: {exc}")

        job.finished_at = utcnow()
        job.status = "completed"
        job.items_processed = len(targets)
        job.items_failed = len(errors)
        job.error_message = "; ".join(errors[:10]) if errors else None
        db.commit()
        logger.info("Alert check completed: accounts=%d fired=%d", len(targets), fired)
        return {
            "status": "completed",
            "job_run_id": job.id,
            "accounts_checked": len(targets),
            "alerts_fired": fired,
            "error": "; ".join(errors) if errors else None,
        }
    except Exception as exc:
        logger.exception("Alert check job failed")
        db.rollback()
        job.finished_at = utcnow()
        job.status = "failed"
        job.error_message = str(exc)
        db.commit()
        return {
            "status": "failed",
            "job_run_id": job.id,
            "accounts_checked": 0,
            "alerts_fired": 0,
            "error": str(exc),
        }
