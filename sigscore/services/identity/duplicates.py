"""Duplicate contact detection.

Contacts sharing any person identity (email or platform handle) are linked;
connected components form duplicate groups. IP addresses are ignored here,
colleagues behind one office IP are not duplicates.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.orm import Session

from sigscore.models.contact import Contact
from sigscore.models.contact_identity import ContactIdentity
from sigscore.models.enums import PERSON_IDENTITY_TYPES
from sigscore.schemas.identity import DuplicateCandidate, DuplicateGroup, SharedIdentity

logger = logging.getLogger(__name__)

MAX_WEIGHT = 0.7
MEAN_WEIGHT = 0.3


class UnionFind:
    """Disjoint sets over contact ids with path compression and union by size."""

    def __init__(self) -> None:
        self._parent: dict[int, int] = {}
        self._size: dict[int, int] = {}

    def find(self, item: int) -> int:
        self._parent.setdefault(item, item)
        self._size.setdefault(item, 1)
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if self._size[root_a] < self._size[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        self._size[root_a] += self._size[root_b]

    def groups(self) -> list[set[int]]:
        members: dict[int, set[int]] = defaultdict(set)
        for item in self._parent:
            members[self.find(item)].add(item)
        return list(members.values())


def overall_confidence(confidences: list[float]) -> float:
    """0.7 * max + 0.3 * mean of shared identity confidences, clamped to [0, 1]."""
    if not confidences:
        return 0.0
    value = MAX_WEIGHT * max(confidences) + MEAN_WEIGHT * (sum(confidences) / len(confidences))
    return round(min(1.0, max(0.0, value)), 4)


def pick_primary(contacts: list[Contact]) -> Contact:
    """Earliest created; then the more complete profile; then the lower id."""
    return min(contacts, key=lambda c: (c.created_at, -c.completeness(), c.id))


def find_duplicates(db: Session, organization_id: str) -> list[DuplicateGroup]:
    """Groups of contacts that share identities, ordered by primary contact id."""
    rows = db.execute(
        select(
            ContactIdentity.contact_id,
            ContactIdentity.type,
            ContactIdentity.value,
            ContactIdentity.confidence,
        )
        .join(Contact, ContactIdentity.contact_id == Contact.id)
        .where(
            Contact.organization_id == organization_id,
            ContactIdentity.type.in_([t.value for t in PERSON_IDENTITY_TYPES]),
        )
    ).all()

    holders: dict[tuple[str, str], dict[int, float]] = defaultdict(dict)
    for contact_id, type_, value, confidence in rows:
        holders[(type_, value)][contact_id] = confidence

    uf = UnionFind()
    for by_contact in holders.values():
        ids = sorted(by_contact)
        for other in ids[1:]:
            uf.union(ids[0], other)

    components = [g for g in uf.groups() if len(g) > 1]
    if not components:
        return []

    involved = {cid for group in components for cid in group}
    contacts = {
        c.id: c for c in db.scalars(select(Contact).where(Contact.id.in_(involved))).all()
    }

    result: list[DuplicateGroup] = []
    for group in components:
        primary = pick_primary([contacts[cid] for cid in group])
        candidates: list[DuplicateCandidate] = []
        for dup_id in sorted(group - {primary.id}):
            shared: list[SharedIdentity] = []
            for (type_, value), by_contact in sorted(holders.items()):
                if dup_id not in by_contact:
                    continue
                others = [conf for cid, conf in by_contact.items() if cid != dup_id and cid in group]
                if not others:
                    continue
                # A shared identity is only as strong as its weaker side
                confidence = min(by_contact[dup_id], max(others))
                shared.append(SharedIdentity(type=type_, value=value, confidence=confidence))
            candidates.append(
                DuplicateCandidate(
                    contact_id=dup_id,
                    shared_identities=shared,
                    overall_confidence=overall_confidence([s.confidence for s in shared]),
                )
            )
        result.append(DuplicateGroup(primary_contact_id=primary.id, duplicates=candidates))

    result.sort(key=lambda g: g.primary_contact_id)
    logger.info("Duplicate scan: org=%s groups=%d", organization_id, len(result))
    return result
