"""Tests for health and readiness probes."""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from main import app

client = TestClient(app)


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_liveness():
    assert client.get("/health/live").json() == {"alive": True}


def test_ready_with_memory_storage():
    with patch("main.get_settings", return_value=MagicMock(database_url="")):
        response = client.get("/health/ready")

    assert response.status_code == 200
    assert response.json()["checks"] == {"memory": "healthy"}


def test_not_ready_when_postgres_down():
    settings = MagicMock(database_url="postgresql+asyncpg://db/cogniclear")
    with patch("main.get_settings", return_value=settings), patch(
        "main.check_connection", new=AsyncMock(return_value=False)
    ):
        response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["checks"] == {"postgres": "unhealthy"}


def test_unknown_route_uses_error_schema():
    response = client.get("/api/nowhere")

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"
    assert response.json()["path"] == "/api/nowhere"
