"""Identity resolution schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from sigscore.models.enums import IdentityType


class IdentityHint(BaseModel):
    """One raw identifier observed for an actor."""

    type: IdentityType
    value: str
    verified: bool = False


class ActorHints(BaseModel):
    """Everything known about an actor at resolution time."""

    identities: list[IdentityHint] = Field(default_factory=list)
    first_name: str | None = None
    last_name: str | None = None
    avatar_url: str | None = None
    company_domain: str | None = None


class ResolvedActor(BaseModel):
    contact_id: int | None = None
    account_id: int | None = None
    confidence: float = 0.0
    source: str = "unresolved"  # matched | created | explicit | unresolved
    created_contact: bool = False


class IdentityResponse(BaseModel):
    id: int
    type: str
    value: str
    verified: bool
    confidence: float
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IdentityGraphResponse(BaseModel):
    """Contact with its identities and account link."""

    contact_id: int
    account_id: int | None
    account_name: str | None
    first_name: str | None
    last_name: str | None
    email: str | None
    identities: list[IdentityResponse]
    signal_count: int


class SharedIdentity(BaseModel):
    type: str
    value: str
    confidence: float


class DuplicateCandidate(BaseModel):
    contact_id: int
    shared_identities: list[SharedIdentity]
    overall_confidence: float


class DuplicateGroup(BaseModel):
    """Connected component of contacts sharing identities."""

    primary_contact_id: int
    duplicates: list[DuplicateCandidate]


class DuplicateListResponse(BaseModel):
    groups: list[DuplicateGroup]


class MergeRequest(BaseModel):
    primary_id: int = Field(..., gt=0)
    duplicate_ids: list[int] = Field(..., min_length=1)


class MergeResult(BaseModel):
    primary_contact_id: int
    merged_contact_ids: list[int]
    identities_moved: int
    signals_moved: int
    activities_moved: int
    deals_moved: int


class EnrichmentResult(BaseModel):
    contact_id: int
    identities_added: list[IdentityHint]
    company_resolved: bool
    account_id: int | None
    enrichments: list[str]
