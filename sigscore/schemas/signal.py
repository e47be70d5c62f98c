"""Signal ingestion schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from sigscore.models.enums import SignalSourceType

# Lowercase identifier: letters, digits and _ . : - separators
SIGNAL_TYPE_PATTERN = r"^[a-z][a-z0-9_.:\-]*$"


class SignalIngest(BaseModel):
    """One raw connector event."""

    source_type: SignalSourceType
    type: str = Field(..., min_length=1, max_length=100, pattern=SIGNAL_TYPE_PATTERN)
    actor_id: str | None = Field(None, max_length=512)
    anonymous_id: str | None = Field(None, max_length=512)
    account_id: int | None = Field(None, gt=0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime | None = None
    idempotency_key: str | None = Field(None, min_length=1, max_length=255)

    @field_validator("actor_id", "anonymous_id", "idempotency_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value


class SignalResponse(BaseModel):
    id: int
    organization_id: str
    source_type: str
    type: str
    actor_key: str | None
    actor_id: int | None
    anonymous_id: str | None
    account_id: int | None
    metadata: dict[str, Any] = Field(validation_alias=AliasChoices("signal_metadata", "metadata"))
    timestamp: datetime
    dedup_key: str
    idempotency_key: str | None
    ingested_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IngestResponse(BaseModel):
    signal: SignalResponse
    deduplicated: bool


class BatchIngestRequest(BaseModel):
    # Size is checked against BATCH_MAX_SIZE by the service; entries are
    # validated one by one so a bad entry fails alone.
    signals: list[dict[str, Any]]


class BatchItemResult(BaseModel):
    index: int
    success: bool
    signal_id: int | None = None
    deduplicated: bool = False
    error: str | None = None


class BatchSummary(BaseModel):
    total: int
    succeeded: int
    failed: int
    deduplicated: int


class BatchIngestResult(BaseModel):
    results: list[BatchItemResult]
    summary: BatchSummary


class SignalListResponse(BaseModel):
    items: list[SignalResponse]
    total: int
    page: int
    page_size: int


class DedupWindowStats(BaseModel):
    window: str
    signals: int
    unique_fingerprints: int
    repeated: int


class DedupStatsResponse(BaseModel):
    dedup_window_hours: int
    windows: list[DedupWindowStats]
