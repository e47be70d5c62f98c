"""Alert rule and event schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sigscore.models.enums import AlertTriggerType


class AlertChannels(BaseModel):
    in_app: bool = True
    email: bool = False
    slack: bool = False
    slack_channel: str | None = Field(None, max_length=255)

    def enabled(self) -> list[str]:
        """Names of enabled channels, in dispatch order."""
        return [name for name in ("in_app", "email", "slack") if getattr(self, name)]


class AlertConditions(BaseModel):
    """Trigger parameters. Omitted percentages and day counts use operator defaults."""

    model_config = ConfigDict(extra="forbid")

    drop_percent: float | None = Field(None, gt=0, le=100)
    rise_percent: float | None = Field(None, gt=0)
    within_days: int | None = Field(None, ge=1, le=365)
    threshold: int | None = Field(None, ge=0, le=100)
    direction: Literal["above", "below"] | None = None
    inactive_days: int | None = Field(None, ge=1, le=365)
    source_types: list[str] | None = None


class AlertRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    trigger_type: AlertTriggerType
    conditions: AlertConditions = Field(default_factory=AlertConditions)
    channels: AlertChannels = Field(default_factory=AlertChannels)
    enabled: bool = True

    @model_validator(mode="after")
    def _check_trigger_conditions(self) -> "AlertRuleCreate":
        conditions = self.conditions
        if self.trigger_type == AlertTriggerType.SCORE_THRESHOLD:
            if conditions.threshold is None or conditions.direction is None:
                raise ValueError("score_threshold rules require 'threshold' and 'direction'")
        if self.trigger_type == AlertTriggerType.NEW_HOT_SIGNAL and not conditions.source_types:
            raise ValueError("new_hot_signal rules require a non-empty 'source_types'")
        return self


class AlertRuleUpdate(BaseModel):
    """Partial update; the merged rule is re-validated as a whole."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    trigger_type: AlertTriggerType | None = None
    conditions: AlertConditions | None = None
    channels: AlertChannels | None = None
    enabled: bool | None = None


class AlertRuleResponse(BaseModel):
    id: int
    organization_id: str
    name: str
    description: str | None
    trigger_type: str
    conditions: dict[str, Any]
    channels: dict[str, Any]
    enabled: bool
    created_at: datetime
    updated_at: datetime
    last_triggered_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class AlertRuleListResponse(BaseModel):
    items: list[AlertRuleResponse]


class AlertTestRequest(BaseModel):
    account_id: int | None = Field(None, gt=0)


class AlertEventResponse(BaseModel):
    id: int
    rule_id: int
    account_id: int | None
    signal_id: int | None
    fired_at: datetime
    reason: str
    snapshot_before: dict[str, Any] | None
    snapshot_after: dict[str, Any] | None
    channels: list[str]
    is_test: bool

    model_config = ConfigDict(from_attributes=True)


class AlertHistoryResponse(BaseModel):
    items: list[AlertEventResponse]
    total: int
    page: int
    page_size: int
