"""Signal ingestion: validate -> fingerprint -> dedup -> resolve identity -> store.

Duplicates (same idempotency key, or same dedup key within the window)
return the already-stored signal and never raise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from sigscore import events
from sigscore.config import get_settings
from sigscore.errors import SignalEngineError, ValidationError, format_validation_errors
from sigscore.ingestion.dedup import generate_dedup_key
from sigscore.locks import advisory_xact_lock, dedup_locks
from sigscore.models.signal import Signal
from sigscore.schemas.metadata import parse_signal_metadata
from sigscore.schemas.signal import (
    BatchIngestResult,
    BatchItemResult,
    BatchSummary,
    DedupStatsResponse,
    DedupWindowStats,
    SignalIngest,
)
from sigscore.services.identity.resolver import resolve_signal_actor
from sigscore.timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    signal: Signal
    deduplicated: bool


def _validate(data: SignalIngest | dict[str, Any]) -> SignalIngest:
    if isinstance(data, SignalIngest):
        return data
    try:
        return SignalIngest.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(format_validation_errors(exc)) from exc


def _find_by_idempotency_key(db: Session, organization_id: str, key: str) -> Signal | None:
    return db.scalar(
        select(Signal).where(
            Signal.organization_id == organization_id,
            Signal.idempotency_key == key,
        )
    )


def _find_duplicate(
    db: Session,
    organization_id: str,
    dedup_key: str,
    timestamp: datetime,
    window: timedelta,
) -> Signal | None:
    """Earliest stored signal with the same key whose timestamp is within ``window``."""
    return db.scalar(
        select(Signal)
        .where(
            Signal.organization_id == organization_id,
            Signal.dedup_key == dedup_key,
            Signal.timestamp >= timestamp - window,
            Signal.timestamp <= timestamp + window,
        )
        .order_by(Signal.timestamp.asc(), Signal.id.asc())
        .limit(1)
    )


def ingest_signal(
    db: Session,
    organization_id: str,
    data: SignalIngest | dict[str, Any],
) -> IngestResult:
    """Ingest one signal and commit.

    Raises:
        ValidationError: malformed input.
        NotFoundError: explicit account_id not in the organization.
    """
    payload = _validate(data)
    settings = get_settings()
    idempotency_key = (payload.idempotency_key or "").strip() or None

    if idempotency_key:
        existing = _find_by_idempotency_key(db, organization_id, idempotency_key)
        if existing is not None:
            logger.debug(
                "Signal deduplicated by idempotency key: org=%s key=%s existing_id=%s",
                organization_id,
                idempotency_key,
                existing.id,
            )
            return IngestResult(signal=existing, deduplicated=True)

    timestamp = to_naive_utc(payload.timestamp) if payload.timestamp else utcnow()
    source_type = payload.source_type.value
    dedup_key = generate_dedup_key(source_type, payload.actor_id, payload.type, payload.metadata)
    window = timedelta(hours=settings.dedup_window_hours)
    metadata = parse_signal_metadata(payload.type, source_type, payload.metadata)

    # Held through commit so a concurrent identical signal sees this one
    lock_key = f"{organization_id}:{dedup_key}"
    with dedup_locks.hold(lock_key):
        advisory_xact_lock(db, lock_key)
        existing = _find_duplicate(db, organization_id, dedup_key, timestamp, window)
        if existing is not None:
            db.commit()  # releases the advisory lock
            logger.debug("Signal deduplicated: key=%s existing_id=%s", dedup_key, existing.id)
            return IngestResult(signal=existing, deduplicated=True)

        try:
            resolved = resolve_signal_actor(
                db,
                organization_id,
                actor_id=payload.actor_id,
                account_id=payload.account_id,
                anonymous_id=payload.anonymous_id,
                metadata=metadata,
                source_type=source_type,
            )
            signal = Signal(
                organization_id=organization_id,
                source_type=source_type,
                type=payload.type,
                actor_key=payload.actor_id,
                actor_id=resolved.contact_id,
                anonymous_id=payload.anonymous_id,
                account_id=resolved.account_id,
                signal_metadata=payload.metadata,
                timestamp=timestamp,
                dedup_key=dedup_key,
                idempotency_key=idempotency_key,
            )
            db.add(signal)
            db.commit()
        except IntegrityError:
            db.rollback()
            # Lost a race on the idempotency key in another worker
            if idempotency_key:
                existing = _find_by_idempotency_key(db, organization_id, idempotency_key)
                if existing is not None:
                    return IngestResult(signal=existing, deduplicated=True)
            raise
        except Exception:
            db.rollback()
            raise

    db.refresh(signal)
    events.emit(
        events.SIGNAL_CREATED,
        organization_id,
        {
            "signal_id": signal.id,
            "type": signal.type,
            "source_type": signal.source_type,
            "account_id": signal.account_id,
            "actor_id": signal.actor_id,
        },
    )
    return IngestResult(signal=signal, deduplicated=False)


def ingest_signal_batch(
    db: Session,
    organization_id: str,
    items: list[dict[str, Any]],
) -> BatchIngestResult:
    """Ingest entries independently; one bad entry never blocks the others.

    Raises:
        ValidationError: empty batch or more than BATCH_MAX_SIZE entries.
    """
    max_size = get_settings().batch_max_size
    if not items:
        raise ValidationError("batch must contain at least 1 signal")
    if len(items) > max_size:
        raise ValidationError(f"batch exceeds maximum of {max_size} signals (got {len(items)})")

    results: list[BatchItemResult] = []
    for index, raw in enumerate(items):
        try:
            outcome = ingest_signal(db, organization_id, raw)
            results.append(
                BatchItemResult(
                    index=index,
                    success=True,
                    signal_id=outcome.signal.id,
                    deduplicated=outcome.deduplicated,
                )
            )
        except SignalEngineError as exc:
            results.append(BatchItemResult(index=index, success=False, error=exc.message))
        except SQLAlchemyError as exc:
            logger.exception("Batch ingest failed: org=%s index=%d", organization_id, index)
            results.append(BatchItemResult(index=index, success=False, error=str(exc)))

    succeeded = sum(1 for r in results if r.success)
    deduplicated = sum(1 for r in results if r.deduplicated)
    summary = BatchSummary(
        total=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        deduplicated=deduplicated,
    )
    logger.info(
        "Batch ingest: org=%s total=%d succeeded=%d failed=%d deduplicated=%d",
        organization_id,
        summary.total,
        summary.succeeded,
        summary.failed,
        summary.deduplicated,
    )
    return BatchIngestResult(results=results, summary=summary)


def list_signals(
    db: Session,
    organization_id: str,
    signal_type: str | None = None,
    source_type: str | None = None,
    account_id: int | None = None,
    actor_id: int | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[Signal], int]:
    """Return (signals newest first, total count) for the filters."""
    conditions = [Signal.organization_id == organization_id]
    if signal_type:
        conditions.append(Signal.type == signal_type)
    if source_type:
        conditions.append(Signal.source_type == source_type)
    if account_id is not None:
        conditions.append(Signal.account_id == account_id)
    if actor_id is not None:
        conditions.append(Signal.actor_id == actor_id)
    if since is not None:
        conditions.append(Signal.timestamp >= to_naive_utc(since))
    if until is not None:
        conditions.append(Signal.timestamp <= to_naive_utc(until))

    total = db.scalar(select(func.count(Signal.id)).where(*conditions)) or 0
    rows = db.scalars(
        select(Signal)
        .where(*conditions)
        .order_by(Signal.timestamp.desc(), Signal.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return list(rows), total


def get_dedup_stats(
    db: Session, organization_id: str, as_of: datetime | None = None
) -> DedupStatsResponse:
    """Stored signals and distinct fingerprints over the last 24 hours and 7 days.

    ``repeated`` counts stored signals whose fingerprint another signal in the
    same window already carries; within the dedup window these only appear
    when the original arrived more than DEDUP_WINDOW_HOURS earlier.
    """
    as_of = to_naive_utc(as_of) if as_of else utcnow()
    windows = []
    for label, span in (("24h", timedelta(hours=24)), ("7d", timedelta(days=7))):
        signals, unique = db.execute(
            select(func.count(Signal.id), func.count(func.distinct(Signal.dedup_key))).where(
                Signal.organization_id == organization_id,
                Signal.timestamp > as_of - span,
                Signal.timestamp <= as_of,
            )
        ).one()
        windows.append(
            DedupWindowStats(
                window=label,
                signals=signals or 0,
                unique_fingerprints=unique or 0,
                repeated=(signals or 0) - (unique or 0),
            )
        )
    return DedupStatsResponse(
        dedup_window_hours=get_settings().dedup_window_hours, windows=windows
    )
