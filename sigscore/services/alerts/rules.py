"""Alert rule CRUD and alert history."""

from __future__ import annotations

import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from sigscore.errors import NotFoundError, ValidationError, format_validation_errors
from sigscore.models.alert_event import AlertEvent
from sigscore.models.alert_rule import AlertRule, AlertRuleState
from sigscore.schemas.alert import AlertRuleCreate, AlertRuleUpdate

logger = logging.getLogger(__name__)


def _to_columns(data: AlertRuleCreate) -> dict:
    return {
        "name": data.name,
        "description": data.description,
        "trigger_type": data.trigger_type.value,
        "conditions": data.conditions.model_dump(exclude_none=True),
        "channels": data.channels.model_dump(),
        "enabled": data.enabled,
    }


def create_rule(db: Session, organization_id: str, data: AlertRuleCreate) -> AlertRule:
    rule = AlertRule(organization_id=organization_id, **_to_columns(data))
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info(
        "Created alert rule: org=%s id=%s trigger=%s", organization_id, rule.id, rule.trigger_type
    )
    return rule


def get_rule(db: Session, organization_id: str, rule_id: int) -> AlertRule:
    rule = db.get(AlertRule, rule_id)
    if rule is None or rule.organization_id != organization_id:
        raise NotFoundError(f"Alert rule {rule_id} not found")
    return rule


def list_rules(
    db: Session, organization_id: str, enabled: bool | None = None
) -> list[AlertRule]:
    query = select(AlertRule).where(AlertRule.organization_id == organization_id)
    if enabled is not None:
        query = query.where(AlertRule.enabled == enabled)
    return list(db.scalars(query.order_by(AlertRule.id)).all())


def update_rule(
    db: Session, organization_id: str, rule_id: int, data: AlertRuleUpdate
) -> AlertRule:
    """Apply a partial update; the merged rule is validated as a whole.

    Changing the trigger or its conditions clears the rule's edge state.
    """
    rule = get_rule(db, organization_id, rule_id)
    merged = {
        "name": rule.name,
        "description": rule.description,
        "trigger_type": rule.trigger_type,
        "conditions": rule.conditions or {},
        "channels": rule.channels or {},
        "enabled": rule.enabled,
    }
    merged.update(data.model_dump(exclude_unset=True))
    try:
        validated = AlertRuleCreate.model_validate(merged)
    except PydanticValidationError as exc:
        raise ValidationError(format_validation_errors(exc)) from exc

    columns = _to_columns(validated)
    reset_state = (
        columns["trigger_type"] != rule.trigger_type or columns["conditions"] != rule.conditions
    )
    for key, value in columns.items():
        setattr(rule, key, value)
    if reset_state:
        db.execute(delete(AlertRuleState).where(AlertRuleState.rule_id == rule.id))
    db.commit()
    db.refresh(rule)
    return rule


def delete_rule(db: Session, organization_id: str, rule_id: int) -> None:
    rule = get_rule(db, organization_id, rule_id)
    db.execute(delete(AlertRuleState).where(AlertRuleState.rule_id == rule.id))
    db.execute(delete(AlertEvent).where(AlertEvent.rule_id == rule.id))
    db.delete(rule)
    db.commit()
    logger.info("Deleted alert rule: org=%s id=%s", organization_id, rule_id)


def list_alert_history(
    db: Session,
    organization_id: str,
    rule_id: int | None = None,
    account_id: int | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[AlertEvent], int]:
    """Fired alerts newest first, paginated. Returns (events, total)."""
    conditions = [AlertEvent.organization_id == organization_id]
    if rule_id is not None:
        conditions.append(AlertEvent.rule_id == rule_id)
    if account_id is not None:
        conditions.append(AlertEvent.account_id == account_id)
    total = db.scalar(select(func.count(AlertEvent.id)).where(*conditions)) or 0
    rows = db.scalars(
        select(AlertEvent)
        .where(*conditions)
        .order_by(AlertEvent.fired_at.desc(), AlertEvent.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return list(rows), total
