"""Account score routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from sigscore.api.deps import get_db, get_organization_id
from sigscore.models.enums import ScoreTier
from sigscore.schemas.score import (
    AccountScoreResponse,
    ApplyScoringResult,
    ScoreHistoryResponse,
    ScorePreviewResponse,
    ScoringConfigResponse,
    ScoringConfigUpdate,
    TopAccountsResponse,
)
from sigscore.services.scoring.engine import (
    compute_account_score,
    get_account_score,
    get_score_history,
    list_top_accounts,
)
from sigscore.services.scoring.org_config import (
    get_scoring_config,
    reset_scoring_config,
    update_scoring_config,
)
from sigscore.services.scoring.preview import apply_scoring_config, preview_scores

router = APIRouter()


@router.get("/accounts/{account_id}", response_model=AccountScoreResponse)
def api_get_account_score(
    account_id: int,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> AccountScoreResponse:
    """Current score snapshot; 404 when the account was never scored."""
    return AccountScoreResponse.model_validate(get_account_score(db, organization_id, account_id))


@router.post("/accounts/{account_id}/compute", response_model=AccountScoreResponse)
def api_compute_account_score(
    account_id: int,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> AccountScoreResponse:
    """Recompute now and append a new snapshot."""
    snapshot = compute_account_score(db, organization_id, account_id)
    return AccountScoreResponse.model_validate(snapshot)


@router.get("/accounts/{account_id}/history", response_model=ScoreHistoryResponse)
def api_score_history(
    account_id: int,
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> ScoreHistoryResponse:
    rows = get_score_history(db, organization_id, account_id, days=days)
    return ScoreHistoryResponse(
        account_id=account_id,
        days=days,
        items=[AccountScoreResponse.model_validate(r) for r in rows],
    )


@router.get("/top", response_model=TopAccountsResponse)
def api_top_accounts(
    limit: int = Query(10, ge=1, le=100),
    tier: ScoreTier | None = Query(None),
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> TopAccountsResponse:
    items = list_top_accounts(db, organization_id, limit=limit, tier=tier.value if tier else None)
    return TopAccountsResponse(items=items)


@router.get("/config", response_model=ScoringConfigResponse)
def api_get_scoring_config(
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> ScoringConfigResponse:
    """Factor weights, tier thresholds and trend threshold in effect for the organization."""
    return get_scoring_config(db, organization_id)


@router.put("/config", response_model=ScoringConfigResponse)
def api_update_scoring_config(
    data: ScoringConfigUpdate,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> ScoringConfigResponse:
    """Save overrides; existing scores change on their next computation."""
    return update_scoring_config(db, organization_id, data)


@router.delete("/config", response_model=ScoringConfigResponse)
def api_reset_scoring_config(
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> ScoringConfigResponse:
    return reset_scoring_config(db, organization_id)


@router.post("/config/preview", response_model=ScorePreviewResponse)
def api_preview_scoring_config(
    data: ScoringConfigUpdate,
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> ScorePreviewResponse:
    """Projected scores of the top accounts under the proposed overrides. Saves nothing."""
    return preview_scores(db, organization_id, data, limit=limit)


@router.post("/config/apply", response_model=ApplyScoringResult)
def api_apply_scoring_config(
    data: ScoringConfigUpdate,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> ApplyScoringResult:
    """Save overrides and rescore every scored account now."""
    return apply_scoring_config(db, organization_id, data)
