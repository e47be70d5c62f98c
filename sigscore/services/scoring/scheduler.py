"""Scheduled scoring job.

Scores every account with a signal in the scoring window. One account
failure does not stop the run; each account gets bounded retries with
backoff and failures are recorded on the JobRun.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from sigscore.config import get_settings
from sigscore.errors import SignalEngineError
from sigscore.models.account import Account
from sigscore.models.job_run import JobRun
from sigscore.models.signal import Signal
from sigscore.pipeline.retry import RetriesExhaustedError, run_with_retry
from sigscore.services.scoring.engine import compute_account_score
from sigscore.timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


def accounts_with_recent_signals(
    db: Session, organization_id: str | None, as_of: datetime, window_days: int
) -> list[tuple[str, int]]:
    """(organization_id, account_id) pairs with signals in the window, ordered by account id."""
    since = as_of - timedelta(days=window_days)
    query = (
        select(Account.organization_id, Account.id)
        .join(Signal, Signal.account_id == Account.id)
        .where(Signal.timestamp > since, Signal.timestamp <= as_of)
        .distinct()
        .order_by(Account.id)
    )
    if organization_id is not None:
        query = query.where(Account.organization_id == organization_id)
    return [(org, account_id) for org, account_id in db.execute(query).all()]


def run_scoring_job(
    db: Session,
    organization_id: str | None = None,
    as_of: datetime | None = None,
) -> dict:
    """Score all eligible accounts. Creates a JobRun record for audit.

    Returns:
        dict with status, job_run_id, accounts_scored, accounts_failed, error
    """
    settings = get_settings()
    as_of = to_naive_utc(as_of) if as_of else utcnow()

    job = JobRun(job_type="score", organization_id=organization_id, status="running")
    db.add(job)
    db.commit()
    db.refresh(job)

    try:
        targets = accounts_with_recent_signals(
            db, organization_id, as_of, settings.score_window_days
        )
        logger.info("Starting score job: org=%s accounts=%d", organization_id, len(targets))

        scored = 0
        errors: list[str] = []
        for org_id, account_id in targets:
            try:
                run_with_retry(
                    lambda org_id=org_id, account_id=account_id: compute_account_score(
                        db, org_id, account_id, as_of=as_of
                    ),
                    label=f"score account {account_id}",
                    on_retry=lambda _exc: db.rollback(),
                )
                scored += 1
            except RetriesExhaustedError as exc:
                logger.error("Score failed for account %s: %s", account_id, exc)
                errors.append(f"Account {account_id}: {exc.last_error}")
            except SignalEngineError as exc:
                logger.warning("Score skipped for account %s: %s", account_id, exc)
                errors.append(f"Account {account_id}: {exc}")
            except Exception as exc:
                logger.exception("Score failed for account %s", account_id)
                db.rollback()
                errors.append(f"Account {account_id}: {exc}")

        job.finished_at = utcnow()
        job.status = "completed"
        job.items_processed = scored
        job.items_failed = len(errors)
        job.error_message = "; ".join(errors[:10]) if errors else None
        db.commit()

        logger.info("Score job completed: scored=%d failed=%d", scored, len(errors))
        return {
            "status": "completed",
            "job_run_id": job.id,
            "accounts_scored": scored,
            "accounts_failed": len(errors),
            "error": "; ".join(errors) if errors else None,
        }

    except Exception as exc:
        logger.exception("Score job failed")
        db.rollback()
        job.finished_at = utcnow()
        job.status = "failed"
        job.error_message = str(exc)
        db.commit()
        return {
            "status": "failed",
            "job_run_id": job.id,
            "accounts_scored": 0,
            "accounts_failed": 0,
            "error": str(exc),
        }
