"""Job executor for scheduled work: idempotency keys and job dispatch."""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from sigscore.errors import ValidationError
from sigscore.models.job_run import JobRun
from sigscore.services.alerts.evaluator import run_inactivity_check
from sigscore.services.scoring.scheduler import run_scoring_job

logger = logging.getLogger(__name__)

JOB_REGISTRY: dict[str, Callable[..., dict]] = {
    "score": run_scoring_job,
    "alert_check": run_inactivity_check,
}


def run_job(
    db: Session,
    job_type: str,
    organization_id: str | None = None,
    idempotency_key: str | None = None,
) -> dict:
    """Run a scheduled job, or return the earlier result for a repeated key.

    A completed JobRun with the same idempotency key, job type and
    organization short-circuits the run. Keys are organization-scoped.
    """
    job = JOB_REGISTRY.get(job_type)
    if job is None:
        raise ValidationError(f"Unknown job_type: {job_type}")

    if idempotency_key:
        existing = db.scalar(
            select(JobRun)
            .where(
                JobRun.idempotency_key == idempotency_key,
                JobRun.job_type == job_type,
                JobRun.organization_id.is_(None)
                if organization_id is None
                else JobRun.organization_id == organization_id,
            )
            .order_by(JobRun.started_at.desc(), JobRun.id.desc())
            .limit(1)
        )
        if existing is not None and existing.status == "completed":
            logger.info(
                "Idempotent skip: job_type=%s idempotency_key=%s job_run_id=%s",
                job_type,
                idempotency_key,
                existing.id,
            )
            return _cached_result(existing)

    result = job(db, organization_id=organization_id)
    if idempotency_key:
        run = db.get(JobRun, result["job_run_id"])
        run.idempotency_key = idempotency_key
        db.commit()
    return result


def _cached_result(job: JobRun) -> dict:
    """Response for a repeated run. Counts come from the stored JobRun."""
    return {
        "status": job.status,
        "job_run_id": job.id,
        "items_processed": job.items_processed or 0,
        "items_failed": job.items_failed or 0,
        "error": job.error_message,
        "cached": True,
    }
