"""Contact enrichment from profile fields and already-ingested signals."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from sigscore.config import get_settings
from sigscore.errors import RateLimitError
from sigscore.models.enums import IdentityType
from sigscore.models.job_run import JobRun
from sigscore.models.signal import Signal
from sigscore.pipeline.rate_limits import check_organization_rate_limit
from sigscore.schemas.identity import ActorHints, EnrichmentResult, IdentityHint
from sigscore.schemas.metadata import parse_signal_metadata
from sigscore.services.identity.accounts import resolve_or_create_account
from sigscore.services.identity.resolver import (
    attach_identities,
    company_domain_for,
    fill_profile,
    get_contact_or_404,
    normalize_hints,
    parse_actor_identifier,
)
from sigscore.timeutil import utcnow

logger = logging.getLogger(__name__)

JOB_TYPE = "enrich_contact"
SIGNAL_SCAN_LIMIT = 500

_PROFILE_IDENTITIES = (
    ("email", IdentityType.EMAIL),
    ("github", IdentityType.GITHUB),
    ("twitter", IdentityType.TWITTER),
    ("linkedin", IdentityType.LINKEDIN),
)


def _profile_hints(contact) -> list[IdentityHint]:
    hints = []
    for field, type_ in _PROFILE_IDENTITIES:
        value = getattr(contact, field)
        if value:
            hints.append(IdentityHint(type=type_, value=value))
    return hints


def _signal_hints(db: Session, contact_id: int) -> list[IdentityHint]:
    signals = db.scalars(
        select(Signal)
        .where(Signal.actor_id == contact_id)
        .order_by(Signal.timestamp.desc())
        .limit(SIGNAL_SCAN_LIMIT)
    ).all()
    hints: list[IdentityHint] = []
    for signal in signals:
        for raw in (signal.actor_key, signal.anonymous_id):
            hint = parse_actor_identifier(raw)
            if hint is not None:
                hints.append(hint)
        metadata = parse_signal_metadata(signal.type, signal.source_type, signal.signal_metadata)
        hints.extend(metadata.identity_hints(signal.source_type))
    return hints


def enrich_contact(db: Session, organization_id: str, contact_id: int) -> EnrichmentResult:
    """Derive identities and company for a contact and commit.

    Raises:
        NotFoundError: unknown contact.
        RateLimitError: ENRICHMENT_RATE_LIMIT_PER_HOUR exceeded for the organization.
    """
    contact = get_contact_or_404(db, organization_id, contact_id)
    limit = get_settings().enrichment_rate_limit_per_hour
    if not check_organization_rate_limit(db, organization_id, JOB_TYPE, limit):
        raise RateLimitError("Enrichment rate limit exceeded")

    job = JobRun(job_type=JOB_TYPE, organization_id=organization_id, status="running")
    db.add(job)
    db.commit()

    try:
        hints = normalize_hints(_profile_hints(contact) + _signal_hints(db, contact.id))
        before = {f: getattr(contact, f) for f, _ in _PROFILE_IDENTITIES}
        added = attach_identities(db, contact, hints)
        fill_profile(contact, ActorHints(), hints)

        enrichments = [f"identity:{h.type.value}:{h.value}" for h in added]
        enrichments += [
            f"profile:{field}"
            for field, _ in _PROFILE_IDENTITIES
            if not before[field] and getattr(contact, field)
        ]

        company_resolved = False
        if contact.account_id is None:
            domain = company_domain_for(ActorHints(), hints)
            account, _ = resolve_or_create_account(db, organization_id, domain)
            if account is not None:
                contact.account_id = account.id
                company_resolved = True
                enrichments.append(f"account:{account.domain}")

        job.status = "completed"
        job.items_processed = len(added)
        job.finished_at = utcnow()
        db.commit()
    except Exception as exc:
        db.rollback()
        job.status = "failed"
        job.error_message = str(exc)
        job.finished_at = utcnow()
        db.commit()
        raise

    logger.info(
        "Enriched contact: org=%s contact=%s identities_added=%d company_resolved=%s",
        organization_id,
        contact_id,
        len(added),
        company_resolved,
    )
    return EnrichmentResult(
        contact_id=contact.id,
        identities_added=added,
        company_resolved=company_resolved,
        account_id=contact.account_id,
        enrichments=enrichments,
    )
