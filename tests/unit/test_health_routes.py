"""Tests for the health and readiness endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.main import app


@pytest.fixture
def client():
    return TestClient(app)


def patch_checks(db_ok: bool, redis_ok: bool):
    return (
        patch("app.api.routes.health.check_db_health", AsyncMock(return_value=db_ok)),
        patch("app.api.routes.health.check_redis_health", AsyncMock(return_value=redis_ok)),
    )


class TestReadiness:
    """Test /health/ready for each dependency state."""

    def test_all_dependencies_up(self, client):
        db, redis = patch_checks(True, True)
        with db, redis:
            response = client.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["features"] == {
            "availability_cache": True,
            "notifications": True,
            "reminder_outbox": True,
        }

    def test_redis_down_is_degraded(self, client):
        db, redis = patch_checks(True, False)
        with db, redis:
            response = client.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["checks"] == {"database": "ok", "redis": "failed"}
        assert not any(body["features"].values())

    def test_database_down_is_not_ready(self, client):
        db, redis = patch_checks(False, True)
        with db, redis:
            response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestHealth:
    def test_reports_service_info(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["version"] == app.version
        assert body["default_timezone"]

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"
