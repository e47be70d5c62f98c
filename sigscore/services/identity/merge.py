"""Contact merge: fold duplicates into a primary contact in one transaction."""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from sigscore.errors import ConflictError, NotFoundError
from sigscore.locks import contact_locks
from sigscore.models.activity import Activity, Deal
from sigscore.models.contact import PROFILE_FIELDS, Contact
from sigscore.models.contact_identity import ContactIdentity
from sigscore.models.contact_merge_log import ContactMergeLog
from sigscore.models.signal import Signal
from sigscore.schemas.identity import MergeResult

logger = logging.getLogger(__name__)


def _validate_request(
    db: Session, organization_id: str, primary_id: int, duplicate_ids: list[int]
) -> None:
    if not duplicate_ids:
        raise ConflictError("duplicate_ids must not be empty")
    if primary_id in duplicate_ids:
        raise ConflictError(f"Primary contact {primary_id} cannot also be a duplicate")
    if len(set(duplicate_ids)) != len(duplicate_ids):
        raise ConflictError("duplicate_ids contains repeated contacts")
    already = db.scalars(
        select(ContactMergeLog.merged_contact_id).where(
            ContactMergeLog.organization_id == organization_id,
            ContactMergeLog.merged_contact_id.in_([primary_id, *duplicate_ids]),
        )
    ).all()
    if already:
        raise ConflictError(
            f"Contacts already merged: {', '.join(str(c) for c in sorted(set(already)))}"
        )


def _move_identities(db: Session, primary: Contact, duplicate: Contact) -> int:
    """Move identities the primary lacks; fold the rest into the primary's copy."""
    held = {(i.type, i.value): i for i in primary.identities}
    move_ids: list[int] = []
    for identity in duplicate.identities:
        existing = held.get((identity.type, identity.value))
        if existing is None:
            move_ids.append(identity.id)
            continue
        if identity.confidence > existing.confidence:
            existing.confidence = identity.confidence
        existing.verified = existing.verified or identity.verified
    if move_ids:
        db.execute(
            update(ContactIdentity)
            .where(ContactIdentity.id.in_(move_ids))
            .values(contact_id=primary.id)
        )
    # Collections are stale after the bulk update
    db.expire(primary, ["identities"])
    db.expire(duplicate, ["identities"])
    return len(move_ids)


def _reassign(db: Session, model, duplicate_id: int, primary_id: int) -> int:
    column = Signal.actor_id if model is Signal else model.contact_id
    result = db.execute(
        update(model)
        .where(column == duplicate_id)
        .values({column.key: primary_id})
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def _fill_profile(primary: Contact, duplicate: Contact) -> None:
    for field in PROFILE_FIELDS:
        if not getattr(primary, field) and getattr(duplicate, field):
            setattr(primary, field, getattr(duplicate, field))
    if primary.account_id is None and duplicate.account_id is not None:
        primary.account_id = duplicate.account_id


def merge_contacts(
    db: Session,
    organization_id: str,
    primary_id: int,
    duplicate_ids: list[int],
) -> MergeResult:
    """Merge ``duplicate_ids`` into ``primary_id``. All or nothing.

    Signals, activities and deals move to the primary; identities become the
    exact union; empty primary profile fields are filled; duplicates are
    deleted and logged.

    Raises:
        ConflictError: primary among duplicates, repeated ids, or already merged.
        NotFoundError: a contact is missing from the organization.
    """
    _validate_request(db, organization_id, primary_id, duplicate_ids)
    ids = [primary_id, *duplicate_ids]

    with contact_locks.hold_many(f"{organization_id}:{cid}" for cid in ids):
        try:
            contacts = db.scalars(
                select(Contact)
                .where(Contact.organization_id == organization_id, Contact.id.in_(ids))
                .order_by(Contact.id)
                .with_for_update()
            ).all()
            found = {c.id: c for c in contacts}
            missing = [cid for cid in ids if cid not in found]
            if missing:
                raise NotFoundError(f"Contacts not found: {', '.join(str(m) for m in missing)}")

            primary = found[primary_id]
            totals = {"identities": 0, "signals": 0, "activities": 0, "deals": 0}
            for dup_id in duplicate_ids:
                duplicate = found[dup_id]
                moved = {
                    "identities": _move_identities(db, primary, duplicate),
                    "signals": _reassign(db, Signal, dup_id, primary_id),
                    "activities": _reassign(db, Activity, dup_id, primary_id),
                    "deals": _reassign(db, Deal, dup_id, primary_id),
                }
                _fill_profile(primary, duplicate)
                db.add(
                    ContactMergeLog(
                        organization_id=organization_id,
                        primary_contact_id=primary_id,
                        merged_contact_id=dup_id,
                        identities_moved=moved["identities"],
                        signals_moved=moved["signals"],
                        activities_moved=moved["activities"],
                        deals_moved=moved["deals"],
                    )
                )
                db.delete(duplicate)
                for key, count in moved.items():
                    totals[key] += count
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(
        "Merged contacts: org=%s primary=%s merged=%s identities=%d signals=%d",
        organization_id,
        primary_id,
        duplicate_ids,
        totals["identities"],
        totals["signals"],
    )
    return MergeResult(
        primary_contact_id=primary_id,
        merged_contact_ids=list(duplicate_ids),
        identities_moved=totals["identities"],
        signals_moved=totals["signals"],
        activities_moved=totals["activities"],
        deals_moved=totals["deals"],
    )
