"""Tests for alert conditions, edge-triggered evaluation and the inactivity check."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import func, select

from sigscore.config import get_settings
from sigscore.errors import NotFoundError
from sigscore.models import AlertEvent, AlertRuleState, JobRun
from sigscore.schemas.alert import AlertConditions
from sigscore.services.alerts.conditions import (
    AccountContext,
    ScorePoint,
    baseline_for,
    evaluate_condition,
)
from sigscore.services.alerts.dispatch import get_dispatcher
from sigscore.services.alerts.evaluator import (
    evaluate_account,
    evaluate_signal,
    run_inactivity_check,
    send_test_alert,
)
from tests.factories import make_account, make_rule, make_score, make_signal
from tests.test_constants import TEST_ORG

NOW = datetime(2026, 3, 1, 12, 0, 0)


def point(version: int, score: int, days: float = 0) -> ScorePoint:
    return ScorePoint(version, score, "WARM", NOW + timedelta(days=days))


def context(*points: ScorePoint, **kwargs) -> AccountContext:
    history = list(points)
    return AccountContext(
        account_id=1,
        as_of=kwargs.pop("as_of", NOW),
        current=history[-1] if history else None,
        previous=history[-2] if len(history) > 1 else None,
        history=history,
        **kwargs,
    )


def conditions(**values) -> AlertConditions:
    return AlertConditions(**values)


class TestConditions:
    def test_drop_at_exact_percent_holds(self):
        ctx = context(point(1, 100), point(2, 80, days=1))
        assert evaluate_condition("score_drop", conditions(drop_percent=20), ctx).holds

    def test_drop_below_percent_does_not_hold(self):
        ctx = context(point(1, 100), point(2, 81, days=1))
        assert not evaluate_condition("score_drop", conditions(drop_percent=20), ctx).holds

    def test_drop_baseline_is_oldest_in_window(self):
        """A slow slide across several snapshots counts from the window start."""
        ctx = context(
            point(1, 100), point(2, 92, days=2), point(3, 85, days=4), point(4, 78, days=6)
        )
        result = evaluate_condition("score_drop", conditions(drop_percent=20, within_days=7), ctx)
        assert result.holds
        assert result.baseline.version == 1

    def test_baseline_falls_back_to_previous(self):
        ctx = context(point(1, 100), point(2, 60, days=30))
        assert baseline_for(ctx, 7).version == 1

    def test_rise_from_zero(self):
        ctx = context(point(1, 0), point(2, 5, days=1))
        assert evaluate_condition("score_rise", conditions(), ctx).holds

    def test_threshold_directions(self):
        ctx = context(point(1, 70))
        above = conditions(threshold=70, direction="above")
        assert evaluate_condition("score_threshold", above, ctx).holds
        assert not evaluate_condition(
            "score_threshold", conditions(threshold=70, direction="below"), ctx
        ).holds

    def test_engagement_drop(self):
        counts = {"recent": 0, "earlier": 3}

        def count_signals(since, until):
            return counts["recent"] if until > NOW else counts["earlier"]

        ctx = context(count_signals=count_signals)
        assert evaluate_condition("engagement_drop", conditions(), ctx).holds
        counts["recent"] = 1
        assert not evaluate_condition("engagement_drop", conditions(), ctx).holds

    def test_account_inactive_boundary(self):
        at_limit = context(last_signal_at=NOW - timedelta(days=14))
        just_inside = context(last_signal_at=NOW - timedelta(days=13, hours=23))
        assert evaluate_condition("account_inactive", conditions(), at_limit).holds
        assert not evaluate_condition("account_inactive", conditions(), just_inside).holds
        assert not evaluate_condition("account_inactive", conditions(), context()).holds

    def test_new_hot_signal_is_not_account_state(self):
        hot = conditions(source_types=["GITHUB"])
        result = evaluate_condition("new_hot_signal", hot, context())
        assert not result.holds


@pytest.fixture
def account(db):
    return make_account(db)


def scored(db, account, version, score, days=0):
    """Append a snapshot and run evaluation for it."""
    snapshot = make_score(db, account, version, score, NOW + timedelta(days=days))
    return evaluate_account(db, TEST_ORG, account.id, after=snapshot)


def event_count(db) -> int:
    return db.scalar(select(func.count(AlertEvent.id)))


class TestEvaluateAccount:
    def test_threshold_fires_once_per_crossing(self, db, account):
        make_rule(db, "score_threshold", {"threshold": 70, "direction": "below"})

        assert scored(db, account, 1, 85) == []
        assert scored(db, account, 2, 85, days=1) == []
        fired = scored(db, account, 3, 60, days=2)
        assert len(fired) == 1
        assert scored(db, account, 4, 55, days=3) == []
        assert scored(db, account, 5, 80, days=4) == []
        assert len(scored(db, account, 6, 65, days=5)) == 1
        assert event_count(db) == 2

    def test_threshold_first_observation_only_seeds(self, db, account):
        make_rule(db, "score_threshold", {"threshold": 70, "direction": "below"})
        assert scored(db, account, 1, 40) == []
        state = db.scalar(select(AlertRuleState))
        assert state.active is True

    def test_threshold_already_below_before_rule_existed(self, db, account):
        """With no state, the previous snapshot decides which side the account was on."""
        make_score(db, account, 1, 60, NOW)
        make_rule(db, "score_threshold", {"threshold": 70, "direction": "below"})
        assert scored(db, account, 2, 50, days=1) == []
        assert event_count(db) == 0

    def test_score_drop_event_snapshots(self, db, account):
        rule = make_rule(db, "score_drop", {"drop_percent": 20})
        scored(db, account, 1, 100)
        fired = scored(db, account, 2, 75, days=1)

        assert len(fired) == 1
        event = fired[0]
        assert event.rule_id == rule.id
        assert event.account_id == account.id
        assert event.snapshot_before["score"] == 100
        assert event.snapshot_after["score"] == 75
        assert event.snapshot_after["version"] == 2
        assert event.channels == ["in_app"]
        assert event.is_test is False
        assert rule.last_triggered_at is not None

    def test_disabled_rule_is_skipped(self, db, account):
        make_rule(db, "score_drop", {"drop_percent": 20}, enabled=False)
        scored(db, account, 1, 100)
        assert scored(db, account, 2, 50, days=1) == []

    def test_failing_rule_does_not_block_others(self, db, account):
        make_rule(db, "score_drop", {"unknown_option": 1}, name="broken")
        good = make_rule(db, "score_drop", {"drop_percent": 20}, name="good")
        scored(db, account, 1, 100)
        fired = scored(db, account, 2, 70, days=1)
        assert [e.rule_id for e in fired] == [good.id]

    def test_cooldown_suppresses_refire(self, db, account):
        make_rule(db, "score_threshold", {"threshold": 70, "direction": "below"})
        with patch.object(get_settings(), "alert_cooldown_minutes", 60):
            scored(db, account, 1, 85)
            assert len(scored(db, account, 2, 60, days=1)) == 1
            scored(db, account, 3, 85, days=2)
            assert scored(db, account, 4, 60, days=3) == []
        assert event_count(db) == 1

    def test_suppressed_fire_consumes_the_edge(self, db, account):
        """After a suppressed crossing the rule waits for the next crossing."""
        make_rule(db, "score_threshold", {"threshold": 70, "direction": "below"})
        with patch.object(get_settings(), "alert_cooldown_minutes", 60):
            scored(db, account, 1, 85)
            assert len(scored(db, account, 2, 60, days=1)) == 1
            scored(db, account, 3, 85, days=2)
            assert scored(db, account, 4, 60, days=3) == []
        assert db.scalar(select(AlertRuleState)).active is True
        assert scored(db, account, 5, 55, days=4) == []
        scored(db, account, 6, 85, days=5)
        assert len(scored(db, account, 7, 60, days=6)) == 1
        assert event_count(db) == 2

    def test_delivery_failure_keeps_event(self, db, account):
        """Slack is retried once; the stored event survives the failed delivery."""
        make_rule(db, "score_drop", {"drop_percent": 20}, channels={"in_app": True, "slack": True})
        dispatcher = get_dispatcher()
        scored(db, account, 1, 100)
        with patch.object(dispatcher.settings, "slack_webhook_url", "https://hooks.slack.test/T0"):
            with patch(
                "sigscore.services.alerts.dispatch.httpx.post",
                side_effect=httpx.ConnectError("connection refused"),
            ) as post:
                fired = scored(db, account, 2, 60, days=1)

        assert len(fired) == 1
        assert post.call_count == 2
        assert event_count(db) == 1
        assert db.get(AlertEvent, fired[0].id).channels == ["in_app", "slack"]


class TestSignalAlerts:
    def test_matches_source_type_or_signal_type(self, db, account):
        by_source = make_rule(db, "new_hot_signal", {"source_types": ["github"]}, name="gh")
        by_type = make_rule(db, "new_hot_signal", {"source_types": ["signup"]}, name="signup")
        make_score(db, account, 1, 72, NOW)

        star = make_signal(db, NOW, account=account, signal_type="repo_star", source_type="GITHUB")
        fired = evaluate_signal(db, star)
        assert [e.rule_id for e in fired] == [by_source.id]
        assert fired[0].signal_id == star.id
        assert fired[0].reason == "New repo_star signal from GITHUB"
        assert fired[0].snapshot_after["score"] == 72

        signup = make_signal(
            db, NOW, account=account, signal_type="signup", source_type="PRODUCT_API"
        )
        assert [e.rule_id for e in evaluate_signal(db, signup)] == [by_type.id]

        view = make_signal(db, NOW, account=account)
        assert evaluate_signal(db, view) == []


class TestSendTestAlert:
    def test_fires_disabled_rule_without_touching_state(self, db, account):
        rule = make_rule(db, "score_drop", enabled=False, name="Quiet")
        make_score(db, account, 1, 42, NOW)

        event = send_test_alert(db, TEST_ORG, rule.id, account_id=account.id)

        assert event.is_test is True
        assert event.reason == "Test alert for rule 'Quiet'"
        assert event.snapshot_after["score"] == 42
        assert db.scalar(select(func.count(AlertRuleState.id))) == 0

    def test_unknown_rule_or_account(self, db, account):
        rule = make_rule(db, "score_drop")
        with pytest.raises(NotFoundError):
            send_test_alert(db, TEST_ORG, rule.id + 100)
        with pytest.raises(NotFoundError):
            send_test_alert(db, TEST_ORG, rule.id, account_id=account.id + 100)


class TestInactivityCheck:
    def test_fires_time_based_rules_once(self, db):
        idle = make_account(db, domain="idle.io", name="Idle")
        fading = make_account(db, domain="fading.io", name="Fading")
        make_signal(db, NOW - timedelta(days=20), account=idle)
        make_signal(db, NOW - timedelta(days=10), account=fading)
        inactive_rule = make_rule(db, "account_inactive", name="inactive")
        engagement_rule = make_rule(db, "engagement_drop", name="engagement")

        result = run_inactivity_check(db, TEST_ORG, as_of=NOW)

        assert result["status"] == "completed"
        assert result["accounts_checked"] == 2
        assert result["alerts_fired"] == 2
        fired = {
            (e.rule_id, e.account_id) for e in db.scalars(select(AlertEvent)).all()
        }
        assert fired == {(inactive_rule.id, idle.id), (engagement_rule.id, fading.id)}
        job = db.get(JobRun, result["job_run_id"])
        assert (job.job_type, job.status) == ("alert_check", "completed")

        again = run_inactivity_check(db, TEST_ORG, as_of=NOW + timedelta(hours=1))
        assert again["alerts_fired"] == 0

    def test_no_time_based_rules_checks_nothing(self, db, account):
        make_signal(db, NOW - timedelta(days=30), account=account)
        make_rule(db, "score_drop")
        result = run_inactivity_check(db, TEST_ORG, as_of=NOW)
        assert result["accounts_checked"] == 0
        assert result["alerts_fired"] == 0
