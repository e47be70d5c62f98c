"""Automatic contact merge after signal resolution.

When a signal's identities overlap exactly one other contact, and the
strongest shared identity reaches AUTO_MERGE_THRESHOLD confidence, the two
contacts are merged with ``merge_contacts``. Overlap with two or more other
contacts is left for manual review through ``find_duplicates``. Each pair is
attempted at most once per AUTO_MERGE_COOLDOWN_MINUTES, whatever the outcome.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sigscore.config import get_settings
from sigscore.errors import SignalEngineError
from sigscore.models.contact import Contact
from sigscore.models.contact_identity import ContactIdentity
from sigscore.models.enums import PERSON_IDENTITY_TYPES
from sigscore.models.signal import Signal
from sigscore.schemas.identity import IdentityHint
from sigscore.schemas.metadata import parse_signal_metadata
from sigscore.services.identity.merge import merge_contacts
from sigscore.services.identity.resolver import normalize_hints, signal_actor_hints
from sigscore.timeutil import utcnow

logger = logging.getLogger(__name__)

_PERSON_TYPES = frozenset(t.value for t in PERSON_IDENTITY_TYPES)


class PairCooldown:
    """Expiry times for contact pairs already attempted, per worker."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._until: dict[tuple[str, int, int], datetime] = {}

    @staticmethod
    def _key(organization_id: str, a: int, b: int) -> tuple[str, int, int]:
        return organization_id, min(a, b), max(a, b)

    def active(self, organization_id: str, a: int, b: int, now: datetime) -> bool:
        key = self._key(organization_id, a, b)
        with self._guard:
            until = self._until.get(key)
            if until is None:
                return False
            if now >= until:
                del self._until[key]
                return False
            return True

    def start(self, organization_id: str, a: int, b: int, now: datetime, minutes: int) -> None:
        if minutes <= 0:
            return
        with self._guard:
            for key in [k for k, until in self._until.items() if until <= now]:
                del self._until[key]
            self._until[self._key(organization_id, a, b)] = now + timedelta(minutes=minutes)

    def clear(self) -> None:
        with self._guard:
            self._until.clear()


merge_cooldowns = PairCooldown()


def _overlapping(
    db: Session, organization_id: str, contact_id: int, keys: set[tuple[str, str]]
) -> dict[int, list[ContactIdentity]]:
    rows = db.scalars(
        select(ContactIdentity)
        .join(Contact, ContactIdentity.contact_id == Contact.id)
        .where(
            Contact.organization_id == organization_id,
            ContactIdentity.contact_id != contact_id,
            or_(
                *(
                    and_(ContactIdentity.type == type_, ContactIdentity.value == value)
                    for type_, value in sorted(keys)
                )
            ),
        )
    ).all()
    overlap: dict[int, list[ContactIdentity]] = {}
    for row in rows:
        overlap.setdefault(row.contact_id, []).append(row)
    return overlap


def _choose_primary(db: Session, resolved_id: int, other_id: int) -> tuple[int, int]:
    """The contact with more signals is kept; ties keep the resolved contact."""
    counts = dict(
        db.execute(
            select(Signal.actor_id, func.count(Signal.id))
            .where(Signal.actor_id.in_([resolved_id, other_id]))
            .group_by(Signal.actor_id)
        ).all()
    )
    if counts.get(other_id, 0) > counts.get(resolved_id, 0):
        return other_id, resolved_id
    return resolved_id, other_id


def auto_merge_if_high_confidence(
    db: Session,
    organization_id: str,
    contact_id: int,
    hints: list[IdentityHint] | None = None,
) -> int:
    """Merge the contact with the one other contact its identities point to.

    ``hints`` are the identities of the signal just resolved to ``contact_id``;
    those the contact could not take because another contact holds them are
    what usually reveal the overlap. Returns the surviving contact's id.
    Commits when it merges.
    """
    settings = get_settings()
    if not settings.auto_merge_enabled:
        return contact_id
    contact = db.get(Contact, contact_id)
    if contact is None or contact.organization_id != organization_id:
        return contact_id

    keys = {(i.type, i.value) for i in contact.identities if i.type in _PERSON_TYPES}
    for hint in normalize_hints(list(hints or [])):
        if hint.type in PERSON_IDENTITY_TYPES:
            keys.add((hint.type.value, hint.value))
    if not keys:
        return contact_id

    overlap = _overlapping(db, organization_id, contact_id, keys)
    if not overlap:
        return contact_id
    if len(overlap) > 1:
        logger.info(
            "Auto-merge skipped, left for review: org=%s contact=%s overlapping=%s",
            organization_id,
            contact_id,
            sorted(overlap),
        )
        return contact_id

    other_id, shared = next(iter(overlap.items()))
    confidence = max(i.confidence for i in shared)
    shared_labels = [f"{i.type}:{i.value}" for i in shared]
    if confidence < settings.auto_merge_threshold:
        logger.debug(
            "Auto-merge below threshold: contact=%s other=%s confidence=%.2f",
            contact_id,
            other_id,
            confidence,
        )
        return contact_id

    now = utcnow()
    if merge_cooldowns.active(organization_id, contact_id, other_id, now):
        logger.debug("Auto-merge pair on cooldown: contact=%s other=%s", contact_id, other_id)
        return contact_id
    merge_cooldowns.start(
        organization_id, contact_id, other_id, now, settings.auto_merge_cooldown_minutes
    )

    primary_id, duplicate_id = _choose_primary(db, contact_id, other_id)
    try:
        merge_contacts(db, organization_id, primary_id, [duplicate_id])
    except (SignalEngineError, SQLAlchemyError) as exc:
        logger.warning(
            "Auto-merge failed: org=%s primary=%s duplicate=%s: %s",
            organization_id,
            primary_id,
            duplicate_id,
            exc,
        )
        return contact_id

    logger.info(
        "Auto-merged contacts: org=%s primary=%s merged=%s confidence=%.2f shared=%s",
        organization_id,
        primary_id,
        duplicate_id,
        confidence,
        shared_labels,
    )
    return primary_id


def auto_merge_for_signal(db: Session, signal: Signal) -> int | None:
    """Run the auto-merge step for a stored signal's resolved contact."""
    if signal.actor_id is None:
        return None
    metadata = parse_signal_metadata(signal.type, signal.source_type, signal.signal_metadata)
    hints = signal_actor_hints(signal.actor_key, signal.anonymous_id, metadata, signal.source_type)
    return auto_merge_if_high_confidence(
        db, signal.organization_id, signal.actor_id, hints.identities
    )
