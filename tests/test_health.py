"""Tests for the health check endpoint and application wiring."""
import pytest

from aquasentra.core.config import settings
from aquasentra.main import validate_config


def test_health_check(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "healthy"
    assert body["data"]["timestamp"]


def test_health_check_method_not_allowed(client):
    response = client.post("/api/health")
    assert response.status_code == 405
    assert response.json()["success"] is False


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_api_routes_registered(client):
    paths = client.get("/openapi.json").json()["paths"]
    for path in (
        "/api/auth/register",
        "/api/reports",
        "/api/reports/{report_id}/verify",
        "/api/map/clusters",
        "/api/users/{user_id}/role",
        "/api/analytics/exports/csv",
    ):
        assert path in paths


def test_validate_config_rejects_short_secret(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "too-short")
    with pytest.raises(RuntimeError):
        validate_config()
