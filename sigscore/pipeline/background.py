"""Work that runs after the ingest response is sent.

Each task opens its own session from the factory it is handed, so it never
shares the request's session. Scoring failures are retried with backoff;
when retries run out a failed JobRun records the error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from sigscore.errors import SignalEngineError
from sigscore.models.job_run import JobRun
from sigscore.models.signal import Signal
from sigscore.pipeline.retry import RetriesExhaustedError, run_with_retry
from sigscore.services.alerts.evaluator import evaluate_signal
from sigscore.services.identity.auto_merge import auto_merge_for_signal
from sigscore.services.identity.enrichment import enrich_contact
from sigscore.services.scoring.engine import compute_account_score
from sigscore.timeutil import utcnow

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _record_failure(
    db: Session, job_type: str, organization_id: str, message: str, retry_count: int = 0
) -> None:
    now = utcnow()
    db.add(
        JobRun(
            job_type=job_type,
            organization_id=organization_id,
            status="failed",
            started_at=now,
            finished_at=now,
            items_processed=0,
            items_failed=1,
            error_message=message,
            retry_count=retry_count,
        )
    )
    db.commit()


def score_account_task(db: Session, organization_id: str, account_id: int) -> bool:
    """Recompute one account with bounded retries. Returns False when it gave up."""
    try:
        run_with_retry(
            lambda: compute_account_score(db, organization_id, account_id),
            label=f"score account {account_id}",
            on_retry=lambda _exc: db.rollback(),
        )
        return True
    except RetriesExhaustedError as exc:
        logger.error("Background scoring gave up: account=%s: %s", account_id, exc)
        _record_failure(
            db,
            "score_account",
            organization_id,
            f"Account {account_id}: {exc.last_error}",
            retry_count=exc.attempts - 1,
        )
    except SignalEngineError as exc:
        logger.warning("Background scoring skipped: account=%s: %s", account_id, exc)
        _record_failure(db, "score_account", organization_id, f"Account {account_id}: {exc}")
    return False


def process_new_signals(
    session_factory: SessionFactory, organization_id: str, signal_ids: list[int]
) -> None:
    """Auto-merge each new signal's contact, run signal alerts, then rescore each account once."""
    if not signal_ids:
        return
    with session_factory() as db:
        signals = db.scalars(
            select(Signal).where(
                Signal.organization_id == organization_id, Signal.id.in_(signal_ids)
            )
        ).all()

        account_ids: list[int] = []
        for signal in signals:
            try:
                auto_merge_for_signal(db, signal)
            except Exception:
                logger.exception("Auto-merge failed: signal=%s", signal.id)
                db.rollback()
            try:
                evaluate_signal(db, signal)
            except Exception:
                logger.exception("Signal alert evaluation failed: signal=%s", signal.id)
                db.rollback()
            if signal.account_id is not None and signal.account_id not in account_ids:
                account_ids.append(signal.account_id)

        for account_id in account_ids:
            try:
                score_account_task(db, organization_id, account_id)
            except Exception:
                logger.exception("Background scoring failed: account=%s", account_id)
                db.rollback()


def enrich_contact_task(session_factory: SessionFactory, organization_id: str, contact_id: int) -> None:
    """Background enrichment; failures are already recorded on the enrichment JobRun."""
    with session_factory() as db:
        try:
            enrich_contact(db, organization_id, contact_id)
        except SignalEngineError as exc:
            logger.warning("Background enrichment skipped: contact=%s: %s", contact_id, exc)
        except Exception:
            logger.exception("Background enrichment failed: contact=%s", contact_id)
