"""Bounded retry with exponential backoff for background jobs."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError

from sigscore.config import get_settings
from sigscore.errors import ComputationError, ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transient failures worth another attempt. Validation and not-found errors are not.
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    ComputationError,
    ConflictError,
    OperationalError,
)


class RetriesExhaustedError(Exception):
    """Raised when every attempt failed; ``attempts`` and ``last_error`` describe why."""

    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def run_with_retry(
    func: Callable[[], T],
    label: str,
    max_attempts: int | None = None,
    backoff_seconds: float | None = None,
    on_retry: Callable[[BaseException], None] | None = None,
) -> T:
    """Call ``func`` until it succeeds or attempts run out.

    Sleeps ``backoff_seconds * 2**n`` between attempts. ``on_retry`` runs
    after each failed attempt (e.g. to roll back the session).
    """
    settings = get_settings()
    attempts = max(1, max_attempts if max_attempts is not None else settings.job_max_retries)
    backoff = backoff_seconds if backoff_seconds is not None else settings.job_retry_backoff_seconds

    last_error: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            last_error = exc
            if on_retry is not None:
                on_retry(exc)
            if attempt == attempts:
                break
            delay = backoff * (2 ** (attempt - 1))
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                label,
                attempt,
                attempts,
                delay,
                exc,
            )
            if delay > 0:
                time.sleep(delay)
    raise RetriesExhaustedError(label, attempts, last_error)
