"""Keyed locks.

``KeyedLock`` serializes work on the same key (dedup key, account, contact)
across request threads and background tasks within one worker. Across
workers, dedup check-and-insert takes a PostgreSQL advisory lock on the same
key, score snapshots rely on the unique (account_id, version) constraint,
and merges take row locks.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.orm import Session


class KeyedLock:
    """A lock per key, created on demand and dropped when no longer held."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._waiters: dict[str, int] = {}

    def _acquire(self, key: str) -> None:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()

    def _release(self, key: str) -> None:
        with self._guard:
            lock = self._locks[key]
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]
        lock.release()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        self._acquire(key)
        try:
            yield
        finally:
            self._release(key)

    @contextmanager
    def hold_many(self, keys: Iterable[str]) -> Iterator[None]:
        """Acquire several keys in sorted order so concurrent callers cannot deadlock."""
        ordered = sorted(set(keys))
        acquired: list[str] = []
        try:
            for key in ordered:
                self._acquire(key)
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._release(key)

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._locks


dedup_locks = KeyedLock()
account_locks = KeyedLock()
contact_locks = KeyedLock()


def advisory_xact_lock(db: Session, key: str) -> bool:
    """Take a PostgreSQL transaction-scoped advisory lock on ``key``.

    Held until the session's transaction commits or rolls back. Other
    dialects have no cross-process lock; returns False there.
    """
    if db.get_bind().dialect.name != "postgresql":
        return False
    db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
    return True
