"""Tests for the scoring core, score persistence and the scoring job."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from sigscore import events
from sigscore.errors import ComputationError, ConflictError, NotFoundError
from sigscore.models import AccountScore, JobRun
from sigscore.models.enums import ScoreTier, ScoreTrend
from sigscore.services.scoring import engine
from sigscore.services.scoring.engine import (
    compute_account_score,
    get_account_score,
    get_score_history,
    list_top_accounts,
)
from sigscore.services.scoring.factors import (
    SignalPoint,
    expected_users,
    recency,
    round_half_up,
    score_signals,
    signal_velocity,
    tier_for_score,
    trend_for,
)
from sigscore.services.scoring.scheduler import run_scoring_job
from sigscore.taxonomy.loader import get_scoring_section
from sigscore.timeutil import utcnow
from tests.factories import make_account, make_contact, make_score, make_signal
from tests.test_constants import TEST_ORG

NOW = datetime(2026, 3, 1, 12, 0, 0)
WINDOW = 90


@pytest.fixture
def config():
    return get_scoring_section()


class TestFactors:
    @pytest.mark.parametrize(
        "score,tier",
        [
            (100, ScoreTier.HOT),
            (80, ScoreTier.HOT),
            (79, ScoreTier.WARM),
            (50, ScoreTier.WARM),
            (49, ScoreTier.COLD),
            (20, ScoreTier.COLD),
            (19, ScoreTier.INACTIVE),
            (0, ScoreTier.INACTIVE),
        ],
    )
    def test_tier_boundaries(self, config, score, tier):
        assert tier_for_score(score, config["tiers"]) == tier

    @pytest.mark.parametrize(
        "new,prior,trend",
        [
            (110, 100, ScoreTrend.STABLE),
            (111, 100, ScoreTrend.RISING),
            (90, 100, ScoreTrend.STABLE),
            (89, 100, ScoreTrend.FALLING),
            (5, 0, ScoreTrend.RISING),
            (0, 0, ScoreTrend.STABLE),
            (42, None, ScoreTrend.STABLE),
        ],
    )
    def test_trend(self, new, prior, trend):
        assert trend_for(new, prior, 10) == trend

    @pytest.mark.parametrize(
        "new,prior,trend",
        [
            (50, 40, ScoreTrend.RISING),
            (60, 50, ScoreTrend.STABLE),
            (40, 50, ScoreTrend.STABLE),
            (30, 40, ScoreTrend.FALLING),
        ],
    )
    def test_trend_at_twenty_percent(self, new, prior, trend):
        """+25% rises past a 20% threshold; exactly 20% either way stays stable."""
        assert trend_for(new, prior, 20) == trend

    def test_round_half_up(self):
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3
        assert round_half_up(2.4999) == 2

    def test_no_signals_scores_zero(self, config):
        result = score_signals([], NOW, None, WINDOW, config)
        assert result.score == 0
        assert result.tier == ScoreTier.INACTIVE
        assert result.last_signal_at is None
        assert {f.name for f in result.factors} == {
            "signal_velocity",
            "user_breadth",
            "recency",
            "diversity",
        }

    def test_single_signal(self, config):
        """Velocity and recency saturate; one user of five, one type of five."""
        points = [SignalPoint("page_view", NOW, "contact:1")]
        result = score_signals(points, NOW, None, WINDOW, config)
        assert result.score == 60
        assert result.tier == ScoreTier.WARM
        assert result.user_count == 1

    def test_anonymous_signal_adds_no_breadth(self, config):
        result = score_signals([SignalPoint("page_view", NOW, None)], NOW, None, WINDOW, config)
        assert result.score == 54
        assert result.user_count == 0

    def test_deterministic(self, config):
        points = [
            SignalPoint("page_view", NOW - timedelta(days=d), f"contact:{d % 3}")
            for d in range(0, 40, 4)
        ]
        first = score_signals(points, NOW, 120, WINDOW, config)
        second = score_signals(list(points), NOW, 120, WINDOW, config)
        assert first == second

    @pytest.mark.parametrize(
        "days_ago,value",
        [(0, 1.0), (1, 1.0), (2, 0.8), (5, 0.6), (10, 0.4), (20, 0.2), (60, 0.05), (91, 0.0)],
    )
    def test_recency_steps(self, config, days_ago, value):
        points = [SignalPoint("page_view", NOW - timedelta(days=days_ago), None)]
        assert recency(points, NOW, config) == value

    @pytest.mark.parametrize(
        "employees,expected", [(None, 5), (8, 2), (40, 4), (200, 8), (900, 15), (50000, 25)]
    )
    def test_expected_users_by_size(self, config, employees, expected):
        assert expected_users(employees, config) == expected

    def test_velocity_zero_without_recent_signals(self, config):
        points = [SignalPoint("page_view", NOW - timedelta(days=30), None)]
        assert signal_velocity(points, NOW, WINDOW, config) == 0.0


class TestComputeAccountScore:
    def test_versions_increase(self, db):
        account = make_account(db)
        contact = make_contact(db)
        make_signal(db, NOW, account=account, contact=contact)

        first = compute_account_score(db, TEST_ORG, account.id, as_of=NOW)
        second = compute_account_score(db, TEST_ORG, account.id, as_of=NOW)

        assert (first.version, first.score, first.tier) == (1, 60, "WARM")
        assert first.computed_at == NOW
        assert first.last_signal_at == NOW
        assert second.version == 2
        assert second.trend == "STABLE"
        assert get_account_score(db, TEST_ORG, account.id).version == 2

    def test_account_without_signals_scores_zero(self, db):
        account = make_account(db)
        snapshot = compute_account_score(db, TEST_ORG, account.id, as_of=NOW)
        assert (snapshot.score, snapshot.tier, snapshot.signal_count) == (0, "INACTIVE", 0)

    def test_signals_outside_window_ignored(self, db):
        account = make_account(db)
        make_signal(db, NOW - timedelta(days=WINDOW + 1), account=account)
        make_signal(db, NOW + timedelta(hours=1), account=account)
        assert compute_account_score(db, TEST_ORG, account.id, as_of=NOW).signal_count == 0

    def test_unknown_account(self, db):
        with pytest.raises(NotFoundError):
            compute_account_score(db, TEST_ORG, 999, as_of=NOW)

    def test_version_conflict_retries_from_fresh_prior(self, db):
        """A stale read of the prior version conflicts once, then succeeds as the next version."""
        account = make_account(db)
        make_score(db, account, 1, 30, NOW - timedelta(days=1), tier="COLD")
        real_latest = engine.latest_snapshot
        calls = []

        def stale_first(session, account_id):
            calls.append(account_id)
            if len(calls) == 1:
                return None
            return real_latest(session, account_id)

        with patch("sigscore.services.scoring.engine.latest_snapshot", side_effect=stale_first):
            snapshot = compute_account_score(db, TEST_ORG, account.id, as_of=NOW)

        assert snapshot.version == 2
        assert len(calls) == 2
        versions = db.scalars(select(AccountScore.version).order_by(AccountScore.version)).all()
        assert versions == [1, 2]

    def test_version_conflict_exhausted(self, db):
        account = make_account(db)
        make_score(db, account, 1, 30, NOW - timedelta(days=1))
        with patch("sigscore.services.scoring.engine.latest_snapshot", return_value=None):
            with pytest.raises(ConflictError):
                compute_account_score(db, TEST_ORG, account.id, as_of=NOW)
        assert db.scalars(select(AccountScore.version)).all() == [1]

    def test_failed_computation_keeps_prior(self, db):
        account = make_account(db)
        make_score(db, account, 1, 45, NOW - timedelta(days=1))
        with patch(
            "sigscore.services.scoring.engine.score_signals", side_effect=ValueError("bad factor")
        ):
            with pytest.raises(ComputationError):
                compute_account_score(db, TEST_ORG, account.id, as_of=NOW)
        current = get_account_score(db, TEST_ORG, account.id)
        assert (current.version, current.score) == (1, 45)

    def test_emits_events(self, db):
        account = make_account(db)
        make_signal(db, NOW, account=account)
        received = []

        def listener(event_type, organization_id, payload):
            received.append((event_type, payload["version"]))

        events.subscribe(events.SCORE_COMPUTED, listener)
        events.subscribe(events.SCORE_CHANGED, listener)
        try:
            compute_account_score(db, TEST_ORG, account.id, as_of=NOW)
            compute_account_score(db, TEST_ORG, account.id, as_of=NOW)
        finally:
            events.unsubscribe(events.SCORE_COMPUTED, listener)
            events.unsubscribe(events.SCORE_CHANGED, listener)

        assert received == [
            (events.SCORE_COMPUTED, 1),
            (events.SCORE_CHANGED, 1),
            (events.SCORE_COMPUTED, 2),
        ]


class TestScoreQueries:
    def test_unscored_account_not_found(self, db):
        account = make_account(db)
        with pytest.raises(NotFoundError):
            get_account_score(db, TEST_ORG, account.id)

    def test_history_limited_by_days(self, db):
        account = make_account(db)
        now = utcnow()
        make_score(db, account, 1, 10, now - timedelta(days=40))
        make_score(db, account, 2, 20, now - timedelta(days=5))
        make_score(db, account, 3, 30, now - timedelta(hours=1))
        history = get_score_history(db, TEST_ORG, account.id, days=30)
        assert [s.version for s in history] == [2, 3]

    def test_top_accounts_use_latest_snapshot(self, db):
        acme = make_account(db, domain="acme.io", name="Acme")
        globex = make_account(db, domain="globex.com", name="Globex")
        initech = make_account(db, domain="initech.com", name="Initech")
        make_score(db, acme, 1, 90, NOW, tier="HOT")
        make_score(db, acme, 2, 40, NOW, tier="COLD")
        make_score(db, globex, 1, 85, NOW, tier="HOT")
        make_score(db, initech, 1, 60, NOW, tier="WARM")

        top = list_top_accounts(db, TEST_ORG, limit=2)
        assert [(i.account_name, i.score) for i in top] == [("Globex", 85), ("Initech", 60)]

        hot = list_top_accounts(db, TEST_ORG, tier="HOT")
        assert [i.account_name for i in hot] == ["Globex"]


class TestScoringJob:
    def test_scores_accounts_with_recent_signals(self, db):
        active = make_account(db, domain="acme.io")
        stale = make_account(db, domain="globex.com")
        make_signal(db, NOW - timedelta(days=2), account=active)
        make_signal(db, NOW - timedelta(days=WINDOW + 5), account=stale)

        result = run_scoring_job(db, TEST_ORG, as_of=NOW)

        assert result["status"] == "completed"
        assert result["accounts_scored"] == 1
        assert result["accounts_failed"] == 0
        assert get_account_score(db, TEST_ORG, active.id).version == 1
        with pytest.raises(NotFoundError):
            get_account_score(db, TEST_ORG, stale.id)

    def test_one_failing_account_does_not_stop_the_run(self, db):
        good = make_account(db, domain="acme.io")
        bad = make_account(db, domain="globex.com")
        make_signal(db, NOW, account=good)
        make_signal(db, NOW, account=bad)
        real_compute = engine.compute_account_score

        def flaky(session, organization_id, account_id, as_of=None):
            if account_id == bad.id:
                raise ComputationError("factor store down")
            return real_compute(session, organization_id, account_id, as_of=as_of)

        with patch("sigscore.services.scoring.scheduler.compute_account_score", side_effect=flaky):
            result = run_scoring_job(db, TEST_ORG, as_of=NOW)

        assert result["accounts_scored"] == 1
        assert result["accounts_failed"] == 1
        assert "factor store down" in result["error"]
        job = db.get(JobRun, result["job_run_id"])
        assert (job.status, job.items_processed, job.items_failed) == ("completed", 1, 1)
