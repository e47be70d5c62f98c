"""Signal ingestion API routes."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Response
from sqlalchemy.orm import Session, sessionmaker

from sigscore.api.deps import get_db, get_organization_id, get_session_factory
from sigscore.ingestion.ingest import (
    get_dedup_stats,
    ingest_signal,
    ingest_signal_batch,
    list_signals,
)
from sigscore.pipeline.background import process_new_signals
from sigscore.schemas.signal import (
    BatchIngestRequest,
    BatchIngestResult,
    DedupStatsResponse,
    IngestResponse,
    SignalIngest,
    SignalListResponse,
    SignalResponse,
)

router = APIRouter()


@router.post("", response_model=IngestResponse, status_code=201)
def api_ingest_signal(
    data: SignalIngest,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    organization_id: str = Depends(get_organization_id),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
) -> IngestResponse:
    """Ingest one signal. 201 when stored, 200 when it was a duplicate."""
    payload: SignalIngest | dict = data
    header_key = idempotency_key.strip() if idempotency_key else None
    if header_key and not data.idempotency_key:
        # Revalidated so the header obeys the body field's constraints
        payload = {**data.model_dump(), "idempotency_key": header_key}
    result = ingest_signal(db, organization_id, payload)
    if result.deduplicated:
        response.status_code = 200
    else:
        background_tasks.add_task(
            process_new_signals, session_factory, organization_id, [result.signal.id]
        )
    return IngestResponse(
        signal=SignalResponse.model_validate(result.signal),
        deduplicated=result.deduplicated,
    )


@router.post("/batch", response_model=BatchIngestResult)
def api_ingest_batch(
    data: BatchIngestRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    organization_id: str = Depends(get_organization_id),
) -> BatchIngestResult:
    """Ingest up to BATCH_MAX_SIZE signals; each entry succeeds or fails alone."""
    result = ingest_signal_batch(db, organization_id, data.signals)
    new_ids = [r.signal_id for r in result.results if r.success and not r.deduplicated]
    if new_ids:
        background_tasks.add_task(process_new_signals, session_factory, organization_id, new_ids)
    return result


@router.get("", response_model=SignalListResponse)
def api_list_signals(
    signal_type: str | None = Query(None, alias="type", max_length=100),
    source_type: str | None = Query(None),
    account_id: int | None = Query(None, gt=0),
    actor_id: int | None = Query(None, gt=0),
    since: datetime | None = Query(None),
    until: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> SignalListResponse:
    """List signals newest first."""
    rows, total = list_signals(
        db,
        organization_id,
        signal_type=signal_type,
        source_type=source_type,
        account_id=account_id,
        actor_id=actor_id,
        since=since,
        until=until,
        page=page,
        page_size=page_size,
    )
    return SignalListResponse(
        items=[SignalResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/dedup-stats", response_model=DedupStatsResponse)
def api_dedup_stats(
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> DedupStatsResponse:
    """Stored signals vs. distinct fingerprints over the last 24 hours and 7 days."""
    return get_dedup_stats(db, organization_id)
