"""Internal job endpoints for cron/scripts.

These endpoints are secured with a static token (X-Internal-Token header)
and are meant for automated triggers only.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from sigscore.config import get_settings
from sigscore.db.session import get_db
from sigscore.pipeline.executor import run_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", include_in_schema=False)


def _require_internal_token(x_internal_token: str = Header(...)) -> None:
    """Constant-time check of X-Internal-Token. 403 when empty or wrong."""
    expected = get_settings().internal_job_token
    if not expected or not secrets.compare_digest(x_internal_token, expected):
        logger.warning("Internal endpoint auth failed: invalid or missing token")
        raise HTTPException(status_code=403, detail="Invalid internal token")


@router.post("/run_scoring")
def run_scoring(
    db: Session = Depends(get_db),
    _token: None = Depends(_require_internal_token),
    x_idempotency_key: str | None = Header(None, alias="X-Idempotency-Key"),
    organization_id: str | None = Query(None, max_length=64),
):
    """Score every account with signals in the scoring window.

    Pass X-Idempotency-Key to skip a run that already completed.
    """
    return run_job(db, "score", organization_id=organization_id, idempotency_key=x_idempotency_key)


@router.post("/run_alert_check")
def run_alert_check(
    db: Session = Depends(get_db),
    _token: None = Depends(_require_internal_token),
    x_idempotency_key: str | None = Header(None, alias="X-Idempotency-Key"),
    organization_id: str | None = Query(None, max_length=64),
):
    """Evaluate time-based alert rules (engagement drop, inactivity)."""
    return run_job(
        db, "alert_check", organization_id=organization_id, idempotency_key=x_idempotency_key
    )
