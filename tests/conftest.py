"""
Pytest configuration and fixtures.
"""

from __future__ import annotations

import os
from contextlib import nullcontext

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from tests.test_constants import TEST_INTERNAL_JOB_TOKEN, TEST_ORG

# Each test gets its own in-memory SQLite database; never inherit DATABASE_URL from .env
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("INTERNAL_JOB_TOKEN", TEST_INTERNAL_JOB_TOKEN)
os.environ["JOB_RETRY_BACKOFF_SECONDS"] = "0"  # no sleeping between retries
os.environ["ENRICHMENT_RATE_LIMIT_PER_HOUR"] = "0"  # Disable for tests
os.environ["ALERT_COOLDOWN_MINUTES"] = "0"


@pytest.fixture
def engine():
    """Fresh in-memory database with the full schema."""
    import sigscore.models  # noqa: F401
    from sigscore.db.session import Base, build_engine

    eng = build_engine("sqlite://")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine) -> Session:
    """Database session configured like the application's SessionLocal."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db: Session) -> TestClient:
    """TestClient scoped to TEST_ORG, with request and background sessions bound to ``db``."""
    from sigscore.db.session import get_db, get_session_factory
    from sigscore.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: (lambda: nullcontext(db))
    c = TestClient(app, headers={"X-Organization-Id": TEST_ORG})
    yield c
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_session_factory, None)


@pytest.fixture(autouse=True)
def _clear_config_caches() -> None:
    """Clear lru_cache on the scoring config loaders before and after each test.

    Tests that point SCORING_CONFIG_PATH elsewhere or patch the loader must
    not leak cached config into later tests.
    """
    from sigscore.taxonomy.loader import clear_caches

    clear_caches()
    yield
    clear_caches()


@pytest.fixture(autouse=True)
def _clear_merge_cooldowns() -> None:
    """Auto-merge pair cooldowns live in process memory; reset them per test."""
    from sigscore.services.identity.auto_merge import merge_cooldowns

    merge_cooldowns.clear()
    yield
    merge_cooldowns.clear()
