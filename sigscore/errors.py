"""Error taxonomy shared by services and the HTTP layer.

Services raise these; ``sigscore.main`` installs a single handler that maps
them to ``{"detail": ...}`` JSON responses using ``status_code``.
"""

from __future__ import annotations


class SignalEngineError(Exception):
    """Base class for expected engine failures."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SignalEngineError):
    """Malformed input: bad signal type, oversized batch, bad rule conditions."""

    status_code = 422


class NotFoundError(SignalEngineError):
    """Referenced contact, account, rule or score does not exist in the organization."""

    status_code = 404


class ConflictError(SignalEngineError):
    """State conflict: invalid merge request or an exhausted compare-and-swap retry."""

    status_code = 409


class ComputationError(SignalEngineError):
    """Score computation could not complete. The prior snapshot stays current."""

    status_code = 503


class RateLimitError(SignalEngineError):
    """Per-organization rate limit exceeded."""

    status_code = 429


def format_validation_errors(exc) -> str:
    """Flatten a pydantic ValidationError into one readable line."""
    parts = []
    for err in exc.errors(include_url=False):
        loc = ".".join(str(p) for p in err.get("loc", ())) or "body"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)
