"""
Configuration, startup and health endpoint tests.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from sigscore.config import Settings, get_settings


def test_get_settings_returns_settings() -> None:
    """get_settings returns a Settings instance."""
    assert isinstance(get_settings(), Settings)
    assert get_settings().app_name == "Sigscore"


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Operator defaults load from env."""
    monkeypatch.setenv("DEDUP_WINDOW_HOURS", "6")
    monkeypatch.setenv("SCORE_WINDOW_DAYS", "30")
    monkeypatch.setenv("ALERT_COOLDOWN_MINUTES", "15")
    monkeypatch.setenv("BATCH_MAX_SIZE", "50")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.dedup_window_hours == 6
        assert settings.score_window_days == 30
        assert settings.alert_cooldown_minutes == 15
        assert settings.batch_max_size == 50
    finally:
        get_settings.cache_clear()


def test_app_fails_to_start_when_db_unreachable() -> None:
    """App fails fast when database is unreachable at startup."""
    with patch("sigscore.main.check_db_connection") as mock_check:
        mock_check.side_effect = Exception("Database unreachable")

        from sigscore.main import create_app

        app = create_app()

        with pytest.raises(Exception, match="Database unreachable"):
            with TestClient(app) as test_client:
                test_client.get("/health")


def test_app_fails_to_start_with_invalid_scoring_config(tmp_path) -> None:
    """A broken scoring.yaml stops startup."""
    path = tmp_path / "scoring.yaml"
    path.write_text("scoring: {}\n")
    with (
        patch("sigscore.main.check_db_connection"),
        patch.object(get_settings(), "scoring_config_path", str(path)),
    ):
        from sigscore.main import create_app

        app = create_app()

        with pytest.raises(ValueError):
            with TestClient(app):
                pass


def test_health_returns_ok_when_db_connected(client: TestClient) -> None:
    """Health endpoint returns 200 with database connected."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["database"] == "connected"
    assert "version" in data


def test_health_returns_503_when_db_unreachable(client: TestClient) -> None:
    """Health endpoint returns 503 when database is unreachable."""
    from sigscore.db.session import engine

    with patch.object(engine, "connect", side_effect=Exception("Connection refused")):
        response = client.get("/health")
    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["database"] == "disconnected"
