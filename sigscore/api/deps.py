"""Shared FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Header, HTTPException

from sigscore.db.session import get_db, get_session_factory  # re-export

__all__ = ["get_db", "get_session_factory", "get_organization_id"]

MAX_ORGANIZATION_ID_LENGTH = 64


def get_organization_id(x_organization_id: str = Header(...)) -> str:
    """Organization every request is scoped to, from the X-Organization-Id header.

    Authentication happens upstream; this only checks the header is usable.
    """
    value = x_organization_id.strip()
    if not value or len(value) > MAX_ORGANIZATION_ID_LENGTH:
        raise HTTPException(status_code=422, detail="Invalid X-Organization-Id header")
    return value
