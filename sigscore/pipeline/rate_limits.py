"""Per-organization rate limits counted from JobRun rows."""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from sigscore.models.job_run import JobRun
from sigscore.timeutil import utcnow

logger = logging.getLogger(__name__)


def check_organization_rate_limit(
    db: Session,
    organization_id: str,
    job_type: str,
    limit_per_hour: int,
) -> bool:
    """Return True if the organization is within rate limit, False if exceeded.

    Disabled when ``limit_per_hour`` is 0 or negative.
    """
    if limit_per_hour <= 0:
        return True

    cutoff = utcnow() - timedelta(hours=1)
    count = (
        db.scalar(
            select(func.count(JobRun.id)).where(
                JobRun.organization_id == organization_id,
                JobRun.job_type == job_type,
                JobRun.started_at >= cutoff,
            )
        )
        or 0
    )

    if count >= limit_per_hour:
        logger.warning(
            "Rate limit exceeded: organization_id=%s job_type=%s count=%d limit=%d",
            organization_id,
            job_type,
            count,
            limit_per_hour,
        )
        return False
    return True
