"""Identity resolver: map raw actor identifiers to canonical contacts and accounts.

Resolution order:
1. Explicit contact id (actor_id naming a contact in the organization)
2. Exact (type, value) identity match, best confidence wins; ties go to the
   earliest-created contact. IP matches count only when unambiguous, and
   never when the hints carry an email or handle no contact holds.
3. New contact when the hints carry an email or a handle
Accounts resolve from the contact, then from a company domain (explicit,
DOMAIN hint, or non-free email domain).
"""

from __future__ import annotations

import logging

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from sigscore.errors import NotFoundError
from sigscore.models.account import Account
from sigscore.models.contact import Contact
from sigscore.models.contact_identity import ContactIdentity
from sigscore.models.enums import PERSON_IDENTITY_TYPES, IdentityType
from sigscore.models.signal import Signal
from sigscore.schemas.identity import (
    ActorHints,
    IdentityGraphResponse,
    IdentityHint,
    IdentityResponse,
    ResolvedActor,
)
from sigscore.schemas.metadata import SignalMetadata
from sigscore.services.identity.accounts import resolve_or_create_account
from sigscore.services.identity.normalize import (
    company_domain_from_email,
    confidence_for,
    normalize_identity,
)

logger = logging.getLogger(__name__)

# Prefixes connectors use in actor_id / anonymous_id, e.g. "github:octocat"
ACTOR_PREFIXES = {
    "email": IdentityType.EMAIL,
    "github": IdentityType.GITHUB,
    "npm": IdentityType.NPM,
    "twitter": IdentityType.TWITTER,
    "linkedin": IdentityType.LINKEDIN,
    "ip": IdentityType.IP,
    "domain": IdentityType.DOMAIN,
}

# Profile column filled from the first identity of each type
_PROFILE_COLUMNS = {
    IdentityType.EMAIL: "email",
    IdentityType.GITHUB: "github",
    IdentityType.TWITTER: "twitter",
    IdentityType.LINKEDIN: "linkedin",
}


def parse_actor_identifier(raw: str | None) -> IdentityHint | None:
    """Parse ``github:x``, ``npm:x`` and similar prefixes, or a bare email.

    Connector-asserted identifiers count as verified.
    """
    if not raw or not raw.strip():
        return None
    raw = raw.strip()
    prefix, sep, rest = raw.partition(":")
    if sep and prefix.lower() in ACTOR_PREFIXES and rest.strip():
        return IdentityHint(type=ACTOR_PREFIXES[prefix.lower()], value=rest.strip(), verified=True)
    if "@" in raw:
        return IdentityHint(type=IdentityType.EMAIL, value=raw, verified=True)
    return None


def normalize_hints(hints: list[IdentityHint]) -> list[IdentityHint]:
    """Normalize values, drop unusable ones, collapse repeats (verified if any repeat is)."""
    merged: dict[tuple[str, str], IdentityHint] = {}
    for hint in hints:
        value = normalize_identity(hint.type, hint.value)
        if value is None:
            continue
        key = (hint.type.value, value)
        if key in merged:
            merged[key].verified = merged[key].verified or hint.verified
        else:
            merged[key] = IdentityHint(type=hint.type, value=value, verified=hint.verified)
    return list(merged.values())


def get_contact_or_404(db: Session, organization_id: str, contact_id: int) -> Contact:
    contact = db.get(Contact, contact_id)
    if contact is None or contact.organization_id != organization_id:
        raise NotFoundError(f"Contact {contact_id} not found")
    return contact


def get_account_or_404(db: Session, organization_id: str, account_id: int) -> Account:
    account = db.get(Account, account_id)
    if account is None or account.organization_id != organization_id:
        raise NotFoundError(f"Account {account_id} not found")
    return account


def _identity_filter(identities: list[IdentityHint]):
    return or_(
        *(
            and_(ContactIdentity.type == h.type.value, ContactIdentity.value == h.value)
            for h in identities
        )
    )


def _best_match(
    db: Session, organization_id: str, identities: list[IdentityHint]
) -> tuple[Contact, float, str] | None:
    """Best (contact, confidence, matched identity type) for the hints."""
    searchable = [h for h in identities if h.type != IdentityType.DOMAIN]
    if not searchable:
        return None

    rows = db.execute(
        select(ContactIdentity, Contact)
        .join(Contact, ContactIdentity.contact_id == Contact.id)
        .where(Contact.organization_id == organization_id, _identity_filter(searchable))
    ).all()
    if not rows:
        return None

    by_key = {(h.type.value, h.value): h for h in searchable}
    holders: dict[tuple[str, str], set[int]] = {}
    for identity, contact in rows:
        holders.setdefault((identity.type, identity.value), set()).add(contact.id)

    candidates: list[tuple[float, Contact, str]] = []
    for identity, contact in rows:
        key = (identity.type, identity.value)
        if identity.type == IdentityType.IP.value and len(holders[key]) > 1:
            continue  # shared IP: ambiguous
        hint = by_key[key]
        confidence = confidence_for(identity.type, identity.verified or hint.verified)
        candidates.append((confidence, contact, identity.type))
    if not candidates:
        return None

    candidates.sort(key=lambda c: (-c[0], c[1].created_at, c[1].id))
    confidence, contact, matched_type = candidates[0]
    return contact, confidence, matched_type


def attach_identities(
    db: Session, contact: Contact, identities: list[IdentityHint]
) -> list[IdentityHint]:
    """Add identities the contact lacks; returns those added. Flushes only.

    A verified identity already held by another contact is not attached:
    only unverified identities may collide pending merge review.
    """
    existing = {(i.type, i.value) for i in contact.identities}
    added: list[IdentityHint] = []
    for hint in identities:
        if hint.type == IdentityType.DOMAIN:
            continue
        key = (hint.type.value, hint.value)
        if key in existing:
            continue
        if hint.verified:
            held_elsewhere = db.scalar(
                select(ContactIdentity.id)
                .join(Contact, ContactIdentity.contact_id == Contact.id)
                .where(
                    Contact.organization_id == contact.organization_id,
                    ContactIdentity.type == hint.type.value,
                    ContactIdentity.value == hint.value,
                    ContactIdentity.contact_id != contact.id,
                )
                .limit(1)
            )
            if held_elsewhere is not None:
                logger.debug(
                    "Skipping %s:%s for contact %s: held by another contact",
                    hint.type.value,
                    hint.value,
                    contact.id,
                )
                continue
        contact.identities.append(
            ContactIdentity(
                type=hint.type.value,
                value=hint.value,
                verified=hint.verified,
                confidence=confidence_for(hint.type, hint.verified),
            )
        )
        existing.add(key)
        added.append(hint)
    return added


def fill_profile(contact: Contact, hints: ActorHints, identities: list[IdentityHint]) -> None:
    """Populate empty profile fields from hints; never overwrites."""
    for hint in identities:
        column = _PROFILE_COLUMNS.get(hint.type)
        if column and not getattr(contact, column):
            setattr(contact, column, hint.value)
    for column in ("first_name", "last_name", "avatar_url"):
        value = getattr(hints, column)
        if value and not getattr(contact, column):
            setattr(contact, column, value)


def company_domain_for(hints: ActorHints, identities: list[IdentityHint]) -> str | None:
    if hints.company_domain:
        return hints.company_domain
    for hint in identities:
        if hint.type == IdentityType.DOMAIN:
            return hint.value
    for hint in identities:
        if hint.type == IdentityType.EMAIL:
            domain = company_domain_from_email(hint.value)
            if domain:
                return domain
    return None


def resolve(db: Session, organization_id: str, hints: ActorHints) -> ResolvedActor:
    """Resolve actor hints to a contact and account. Flushes; the caller commits."""
    identities = normalize_hints(hints.identities)
    contact: Contact | None = None
    confidence = 0.0
    source = "unresolved"
    created = False

    has_person = any(h.type in PERSON_IDENTITY_TYPES for h in identities)
    match = _best_match(db, organization_id, identities)
    if match is not None and match[2] == IdentityType.IP.value and has_person:
        # An IP co-occurrence never absorbs an unmatched email or handle
        logger.debug(
            "Ignoring IP match for contact %s: hints carry an unmatched person identity",
            match[0].id,
        )
        match = None
    if match is not None:
        contact, confidence, _ = match
        source = "matched"
    elif has_person:
        contact = Contact(organization_id=organization_id)
        db.add(contact)
        created = True
        source = "created"
        confidence = max(
            confidence_for(h.type, h.verified) for h in identities if h.type in PERSON_IDENTITY_TYPES
        )

    if contact is not None:
        attach_identities(db, contact, identities)
        fill_profile(contact, hints, identities)
        db.flush()

    account_id = contact.account_id if contact is not None else None
    if account_id is None:
        account, _ = resolve_or_create_account(
            db, organization_id, company_domain_for(hints, identities)
        )
        if account is not None:
            account_id = account.id
            if contact is not None:
                contact.account_id = account.id
            elif source == "unresolved":
                source = "domain"
                confidence = confidence_for(IdentityType.DOMAIN, False)

    db.flush()
    if created:
        logger.info("Created contact: org=%s id=%s", organization_id, contact.id)
    return ResolvedActor(
        contact_id=contact.id if contact is not None else None,
        account_id=account_id,
        confidence=confidence,
        source=source,
        created_contact=created,
    )


def signal_actor_hints(
    actor_id: str | None,
    anonymous_id: str | None,
    metadata: SignalMetadata,
    source_type: str,
) -> ActorHints:
    """Identity hints a signal carries in its actor ids and typed metadata."""
    hints = ActorHints(avatar_url=getattr(metadata, "sender_avatar", None))
    for raw in (actor_id, anonymous_id):
        hint = parse_actor_identifier(raw)
        if hint is not None:
            hints.identities.append(hint)
    hints.identities.extend(metadata.identity_hints(source_type))
    return hints


def resolve_signal_actor(
    db: Session,
    organization_id: str,
    actor_id: str | None,
    account_id: int | None,
    anonymous_id: str | None,
    metadata: SignalMetadata,
    source_type: str,
) -> ResolvedActor:
    """Resolve the actor of an incoming signal.

    ``actor_id`` may name a contact by id; otherwise it and ``anonymous_id``
    are parsed as identifiers and combined with typed metadata hints.
    An explicit ``account_id`` always wins.

    Raises:
        NotFoundError: explicit account_id not in the organization.
    """
    explicit_account = (
        get_account_or_404(db, organization_id, account_id) if account_id is not None else None
    )

    if actor_id and actor_id.isdigit():
        contact = db.get(Contact, int(actor_id))
        if contact is not None and contact.organization_id == organization_id:
            if explicit_account is not None and contact.account_id is None:
                contact.account_id = explicit_account.id
            return ResolvedActor(
                contact_id=contact.id,
                account_id=explicit_account.id if explicit_account else contact.account_id,
                confidence=1.0,
                source="explicit",
            )

    hints = signal_actor_hints(actor_id, anonymous_id, metadata, source_type)

    if not hints.identities:
        return ResolvedActor(
            account_id=explicit_account.id if explicit_account else None,
            source="explicit" if explicit_account else "unresolved",
        )

    resolved = resolve(db, organization_id, hints)
    if explicit_account is not None:
        resolved.account_id = explicit_account.id
        if resolved.contact_id is not None:
            contact = db.get(Contact, resolved.contact_id)
            if contact.account_id is None:
                contact.account_id = explicit_account.id
    return resolved


def get_identity_graph(db: Session, organization_id: str, contact_id: int) -> IdentityGraphResponse:
    """Contact with its identities, account and signal count."""
    contact = get_contact_or_404(db, organization_id, contact_id)
    signal_count = (
        db.scalar(select(func.count(Signal.id)).where(Signal.actor_id == contact.id)) or 0
    )
    return IdentityGraphResponse(
        contact_id=contact.id,
        account_id=contact.account_id,
        account_name=contact.account.name if contact.account is not None else None,
        first_name=contact.first_name,
        last_name=contact.last_name,
        email=contact.email,
        identities=[IdentityResponse.model_validate(i) for i in contact.identities],
        signal_count=signal_count,
    )
