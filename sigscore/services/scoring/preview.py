"""Preview and apply organization scoring overrides."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from sigscore.config import get_settings
from sigscore.errors import SignalEngineError
from sigscore.models.account import Account
from sigscore.models.account_score import AccountScore
from sigscore.models.job_run import JobRun
from sigscore.schemas.score import (
    ApplyScoringResult,
    ScorePreviewItem,
    ScorePreviewResponse,
    ScoringConfigUpdate,
)
from sigscore.services.scoring.engine import (
    compute_account_score,
    list_top_accounts,
    load_signal_points,
)
from sigscore.services.scoring.factors import score_signals
from sigscore.services.scoring.org_config import (
    proposed_scoring_section,
    update_scoring_config,
)
from sigscore.timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


def preview_scores(
    db: Session,
    organization_id: str,
    update: ScoringConfigUpdate,
    limit: int = 10,
    as_of: datetime | None = None,
) -> ScorePreviewResponse:
    """Project the top accounts' scores under ``update`` without saving anything.

    Items are ordered by the size of the change, largest first.

    Raises:
        ValidationError: the proposed configuration is invalid.
    """
    section = proposed_scoring_section(db, organization_id, update)
    window_days = get_settings().score_window_days
    as_of = to_naive_utc(as_of) if as_of else utcnow()

    items = []
    for top in list_top_accounts(db, organization_id, limit=limit):
        account = db.get(Account, top.account_id)
        points = load_signal_points(db, account.id, as_of, window_days)
        result = score_signals(points, as_of, account.employee_count, window_days, section)
        items.append(
            ScorePreviewItem(
                account_id=account.id,
                account_name=account.name,
                domain=account.domain,
                current_score=top.score,
                current_tier=top.tier,
                projected_score=result.score,
                projected_tier=result.tier.value,
                delta=result.score - top.score,
            )
        )
    items.sort(key=lambda item: -abs(item.delta))
    return ScorePreviewResponse(items=items)


def apply_scoring_config(
    db: Session,
    organization_id: str,
    update: ScoringConfigUpdate,
    as_of: datetime | None = None,
) -> ApplyScoringResult:
    """Save ``update`` and rescore every account of the organization that has a score.

    Each rescore appends a new snapshot. Accounts that fail keep their prior
    snapshot and are counted in ``failed``.
    """
    config = update_scoring_config(db, organization_id, update)

    job = JobRun(job_type="rescore", organization_id=organization_id, status="running")
    db.add(job)
    db.commit()

    account_ids = db.scalars(
        select(AccountScore.account_id)
        .where(AccountScore.organization_id == organization_id)
        .distinct()
        .order_by(AccountScore.account_id)
    ).all()

    updated = 0
    errors: list[str] = []
    for account_id in account_ids:
        try:
            compute_account_score(db, organization_id, account_id, as_of=as_of)
            updated += 1
        except SignalEngineError as exc:
            logger.warning("Rescore failed for account %s: %s", account_id, exc)
            db.rollback()
            errors.append(f"Account {account_id}: {exc}")

    job.finished_at = utcnow()
    job.status = "completed"
    job.items_processed = updated
    job.items_failed = len(errors)
    job.error_message = "; ".join(errors[:10]) if errors else None
    db.commit()

    logger.info(
        "Applied scoring config: org=%s rescored=%d failed=%d",
        organization_id,
        updated,
        len(errors),
    )
    return ApplyScoringResult(config=config, updated=updated, failed=len(errors))
