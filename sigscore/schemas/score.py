"""Account score schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ScoreFactor(BaseModel):
    """One weighted component of an account score. ``value`` is in [0, 1]."""

    name: str
    weight: float
    value: float
    description: str


class AccountScoreResponse(BaseModel):
    id: int
    account_id: int
    version: int
    score: int
    tier: str
    trend: str
    factors: list[ScoreFactor]
    signal_count: int
    user_count: int
    last_signal_at: datetime | None
    computed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScoreHistoryResponse(BaseModel):
    account_id: int
    days: int
    items: list[AccountScoreResponse]


class TopAccountItem(BaseModel):
    account_id: int
    account_name: str
    domain: str | None
    score: int
    tier: str
    trend: str
    computed_at: datetime


class TopAccountsResponse(BaseModel):
    items: list[TopAccountItem]


class ScoringConfigUpdate(BaseModel):
    """Organization overrides. Omitted fields keep the current value."""

    weights: dict[str, float] | None = None
    tiers: dict[str, float] | None = None
    trend_threshold_pct: float | None = Field(None, ge=0)


class ScoringConfigResponse(BaseModel):
    weights: dict[str, float]
    tiers: dict[str, float]
    trend_threshold_pct: float
    customized: bool


class ScorePreviewItem(BaseModel):
    account_id: int
    account_name: str
    domain: str | None
    current_score: int
    current_tier: str
    projected_score: int
    projected_tier: str
    delta: int


class ScorePreviewResponse(BaseModel):
    items: list[ScorePreviewItem]


class ApplyScoringResult(BaseModel):
    config: ScoringConfigResponse
    updated: int
    failed: int
