"""Identity graph, duplicate detection, merge and enrichment routes."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from sigscore.api.deps import get_db, get_organization_id, get_session_factory
from sigscore.pipeline.background import enrich_contact_task
from sigscore.schemas.identity import (
    DuplicateListResponse,
    IdentityGraphResponse,
    MergeRequest,
    MergeResult,
)
from sigscore.services.identity.duplicates import find_duplicates
from sigscore.services.identity.enrichment import enrich_contact
from sigscore.services.identity.merge import merge_contacts
from sigscore.services.identity.resolver import get_contact_or_404, get_identity_graph

router = APIRouter()


@router.get("/contacts/{contact_id}/graph", response_model=IdentityGraphResponse)
def api_identity_graph(
    contact_id: int,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> IdentityGraphResponse:
    return get_identity_graph(db, organization_id, contact_id)


@router.get("/duplicates", response_model=DuplicateListResponse)
def api_find_duplicates(
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> DuplicateListResponse:
    """Groups of contacts that share identities, with merge confidence."""
    return DuplicateListResponse(groups=find_duplicates(db, organization_id))


@router.post("/merge", response_model=MergeResult)
def api_merge_contacts(
    data: MergeRequest,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> MergeResult:
    return merge_contacts(db, organization_id, data.primary_id, data.duplicate_ids)


@router.post("/contacts/{contact_id}/enrich")
def api_enrich_contact(
    contact_id: int,
    background_tasks: BackgroundTasks,
    background: bool = Query(False),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    organization_id: str = Depends(get_organization_id),
):
    """Enrich now, or with ``?background=true`` schedule it and return 202."""
    if background:
        get_contact_or_404(db, organization_id, contact_id)
        background_tasks.add_task(enrich_contact_task, session_factory, organization_id, contact_id)
        return JSONResponse(
            status_code=202, content={"status": "scheduled", "contact_id": contact_id}
        )
    return enrich_contact(db, organization_id, contact_id)
