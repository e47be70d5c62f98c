"""Tests for per-organization scoring overrides, preview and apply."""

from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import func, select

from sigscore.errors import ValidationError
from sigscore.models import AccountScore, JobRun, ScoringOverride
from sigscore.schemas.score import ScoringConfigUpdate
from sigscore.services.scoring.engine import compute_account_score
from sigscore.services.scoring.org_config import (
    effective_scoring_config,
    get_scoring_config,
    reset_scoring_config,
    update_scoring_config,
)
from sigscore.services.scoring.preview import apply_scoring_config, preview_scores
from tests.factories import make_account, make_contact, make_score, make_signal
from tests.test_constants import OTHER_ORG, TEST_ORG

NOW = datetime(2026, 3, 1, 12, 0, 0)

# One fresh signal from one user scores 60 under the defaults and 84 under these
VELOCITY_HEAVY = {
    "signal_velocity": 0.5,
    "user_breadth": 0.1,
    "recency": 0.3,
    "diversity": 0.1,
}


def active_account(db, domain="acme.io", organization_id=TEST_ORG):
    account = make_account(db, domain=domain, name=domain, organization_id=organization_id)
    contact = make_contact(db, organization_id=organization_id)
    make_signal(db, NOW, account=account, contact=contact, organization_id=organization_id)
    return account


def snapshot_count(db) -> int:
    return db.scalar(select(func.count(AccountScore.id)))


class TestOrgScoringConfig:
    def test_defaults_when_not_customized(self, db):
        config = get_scoring_config(db, TEST_ORG)
        assert config.customized is False
        assert config.weights == {
            "signal_velocity": 0.3,
            "user_breadth": 0.3,
            "recency": 0.2,
            "diversity": 0.2,
        }
        assert config.tiers == {"HOT": 80, "WARM": 50, "COLD": 20}
        assert config.trend_threshold_pct == 10

    def test_weights_change_the_score(self, db):
        account = active_account(db)
        update_scoring_config(db, TEST_ORG, ScoringConfigUpdate(weights=VELOCITY_HEAVY))

        snapshot = compute_account_score(db, TEST_ORG, account.id, as_of=NOW)

        assert (snapshot.score, snapshot.tier) == (84, "HOT")
        weights = {f["name"]: f["weight"] for f in snapshot.factors}
        assert weights["signal_velocity"] == 0.5

    def test_tiers_change_the_tier(self, db):
        account = active_account(db)
        update_scoring_config(db, TEST_ORG, ScoringConfigUpdate(tiers={"WARM": 65}))
        snapshot = compute_account_score(db, TEST_ORG, account.id, as_of=NOW)
        assert (snapshot.score, snapshot.tier) == (60, "COLD")

    def test_other_organizations_keep_defaults(self, db):
        other = active_account(db, domain="other.io", organization_id=OTHER_ORG)
        update_scoring_config(db, TEST_ORG, ScoringConfigUpdate(weights=VELOCITY_HEAVY))
        assert compute_account_score(db, OTHER_ORG, other.id, as_of=NOW).score == 60

    def test_partial_updates_accumulate(self, db):
        update_scoring_config(db, TEST_ORG, ScoringConfigUpdate(tiers={"WARM": 65}))
        config = update_scoring_config(db, TEST_ORG, ScoringConfigUpdate(trend_threshold_pct=20))
        assert config.customized is True
        assert config.tiers == {"HOT": 80, "WARM": 65, "COLD": 20}
        assert config.trend_threshold_pct == 20

    @pytest.mark.parametrize(
        "update",
        [
            ScoringConfigUpdate(weights={"recency": 0.5}),
            ScoringConfigUpdate(weights={**VELOCITY_HEAVY, "karma": 0.0}),
            ScoringConfigUpdate(tiers={"WARM": 90}),
            ScoringConfigUpdate(tiers={"LUKEWARM": 30}),
        ],
    )
    def test_invalid_overrides_rejected(self, db, update):
        with pytest.raises(ValidationError):
            update_scoring_config(db, TEST_ORG, update)
        assert db.scalar(select(func.count(ScoringOverride.id))) == 0

    def test_reset(self, db):
        update_scoring_config(db, TEST_ORG, ScoringConfigUpdate(tiers={"WARM": 65}))
        config = reset_scoring_config(db, TEST_ORG)
        assert config.customized is False
        assert config.tiers["WARM"] == 50
        assert get_scoring_config(db, TEST_ORG).customized is False

    def test_stored_override_that_no_longer_validates_is_ignored(self, db):
        db.add(ScoringOverride(organization_id=TEST_ORG, weights={"recency": 0.9}))
        db.commit()
        section = effective_scoring_config(db, TEST_ORG)
        assert section["factors"]["recency"]["weight"] == 0.2


class TestPreviewAndApply:
    def test_preview_saves_nothing(self, db):
        account = active_account(db)
        compute_account_score(db, TEST_ORG, account.id, as_of=NOW)

        preview = preview_scores(
            db, TEST_ORG, ScoringConfigUpdate(weights=VELOCITY_HEAVY), as_of=NOW
        )

        [item] = preview.items
        assert (item.current_score, item.current_tier) == (60, "WARM")
        assert (item.projected_score, item.projected_tier) == (84, "HOT")
        assert item.delta == 24
        assert snapshot_count(db) == 1
        assert get_scoring_config(db, TEST_ORG).customized is False

    def test_preview_orders_by_size_of_change(self, db):
        steady = active_account(db, domain="steady.io")
        climbing = active_account(db, domain="climbing.io")
        make_score(db, steady, 1, 70, NOW)
        make_score(db, climbing, 1, 40, NOW)

        preview = preview_scores(
            db, TEST_ORG, ScoringConfigUpdate(weights=VELOCITY_HEAVY), as_of=NOW
        )

        assert [(i.account_id, i.delta) for i in preview.items] == [
            (climbing.id, 44),
            (steady.id, 14),
        ]

    def test_preview_rejects_invalid_config(self, db):
        with pytest.raises(ValidationError):
            preview_scores(db, TEST_ORG, ScoringConfigUpdate(weights={"recency": 0.5}))

    def test_apply_rescores_scored_accounts(self, db):
        account = active_account(db)
        unscored = active_account(db, domain="new.io")
        compute_account_score(db, TEST_ORG, account.id, as_of=NOW)

        result = apply_scoring_config(
            db, TEST_ORG, ScoringConfigUpdate(weights=VELOCITY_HEAVY), as_of=NOW
        )

        assert (result.updated, result.failed) == (1, 0)
        assert result.config.customized is True
        latest = db.scalar(
            select(AccountScore).where(AccountScore.account_id == account.id, AccountScore.version == 2)
        )
        assert (latest.score, latest.tier, latest.trend) == (84, "HOT", "RISING")
        assert db.scalar(
            select(func.count(AccountScore.id)).where(AccountScore.account_id == unscored.id)
        ) == 0
        job = db.scalar(select(JobRun).where(JobRun.job_type == "rescore"))
        assert (job.status, job.items_processed, job.items_failed) == ("completed", 1, 0)
