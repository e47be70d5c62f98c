"""Alert rule CRUD, test fire and history routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from sigscore.api.deps import get_db, get_organization_id
from sigscore.schemas.alert import (
    AlertEventResponse,
    AlertHistoryResponse,
    AlertRuleCreate,
    AlertRuleListResponse,
    AlertRuleResponse,
    AlertRuleUpdate,
    AlertTestRequest,
)
from sigscore.services.alerts.evaluator import send_test_alert
from sigscore.services.alerts.rules import (
    create_rule,
    delete_rule,
    get_rule,
    list_alert_history,
    list_rules,
    update_rule,
)

router = APIRouter()


@router.get("/rules", response_model=AlertRuleListResponse)
def api_list_rules(
    enabled: bool | None = Query(None),
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> AlertRuleListResponse:
    rules = list_rules(db, organization_id, enabled=enabled)
    return AlertRuleListResponse(items=[AlertRuleResponse.model_validate(r) for r in rules])


@router.post("/rules", response_model=AlertRuleResponse, status_code=201)
def api_create_rule(
    data: AlertRuleCreate,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> AlertRuleResponse:
    return AlertRuleResponse.model_validate(create_rule(db, organization_id, data))


@router.get("/rules/{rule_id}", response_model=AlertRuleResponse)
def api_get_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> AlertRuleResponse:
    return AlertRuleResponse.model_validate(get_rule(db, organization_id, rule_id))


@router.put("/rules/{rule_id}", response_model=AlertRuleResponse)
def api_update_rule(
    rule_id: int,
    data: AlertRuleUpdate,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> AlertRuleResponse:
    """Partial update; omitted fields keep their current values."""
    return AlertRuleResponse.model_validate(update_rule(db, organization_id, rule_id, data))


@router.delete("/rules/{rule_id}", status_code=204)
def api_delete_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> None:
    delete_rule(db, organization_id, rule_id)


@router.post("/rules/{rule_id}/test", response_model=AlertEventResponse)
def api_test_rule(
    rule_id: int,
    data: AlertTestRequest | None = None,
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> AlertEventResponse:
    """Fire the rule once, even when disabled. Recorded with is_test=true."""
    account_id = data.account_id if data is not None else None
    event = send_test_alert(db, organization_id, rule_id, account_id=account_id)
    return AlertEventResponse.model_validate(event)


@router.get("/history", response_model=AlertHistoryResponse)
def api_alert_history(
    rule_id: int | None = Query(None, gt=0),
    account_id: int | None = Query(None, gt=0),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    organization_id: str = Depends(get_organization_id),
) -> AlertHistoryResponse:
    events, total = list_alert_history(
        db, organization_id, rule_id=rule_id, account_id=account_id, page=page, page_size=page_size
    )
    return AlertHistoryResponse(
        items=[AlertEventResponse.model_validate(e) for e in events],
        total=total,
        page=page,
        page_size=page_size,
    )
