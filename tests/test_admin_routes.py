"""Tests for the rate-limit admin endpoints."""

from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from admission_gate.adapters.log_store.base import RequestLogEntry
from admission_gate.adapters.log_store.in_memory import InMemoryLogStore
from admission_gate.adapters.rosters.in_memory import InMemoryRosterLookup
from admission_gate.core.app_factory import create_app
from admission_gate.core.errors import StoreAppError
from admission_gate.domain.models import IdentifierType
from tests.conftest import T0, utc

NOW = utc(T0)
ADMIN = {"X-API-Key": "test-api-key-123"}
AUTH = {"Authorization": "Bearer token-42"}


def _old_entry(days: int) -> RequestLogEntry:
    return RequestLogEntry(
        identifier="203.0.113.9",
        identifier_type=IdentifierType.IP,
        service_name="dashboard",
        endpoint="/api/dashboard",
        method="GET",
        status_code=200,
        response_time_ms=3,
        created_at=NOW - timedelta(days=days),
    )


@pytest.fixture
def store() -> InMemoryLogStore:
    return InMemoryLogStore()


@pytest.fixture
def client(store: InMemoryLogStore) -> TestClient:
    app = create_app(store=store, rosters=InMemoryRosterLookup(), clock=Mock(return_value=T0))
    return TestClient(app)


def test_stats_requires_api_key(client: TestClient) -> None:
    resp = client.get("/api/admin/rate-limit/stats")

    assert resp.status_code == 403
    assert "Missing API key" in resp.json()["detail"]


def test_stats_rejects_invalid_api_key(client: TestClient) -> None:
    resp = client.get("/api/admin/rate-limit/stats", headers={"X-API-Key": "wrong"})

    assert resp.status_code == 403


def test_stats_summarizes_gate_activity(client: TestClient) -> None:
    for _ in range(11):
        client.get("/api/bookings", headers=AUTH)

    resp = client.get("/api/admin/rate-limit/stats", params={"period": "hour"}, headers=ADMIN)

    assert resp.status_code == 200
    data = resp.json()
    assert data["period"] == "hour"
    # Eleven bookings calls; the stats call itself is counted under dashboard.
    assert data["by_service"]["bookings"] == 11
    assert data["blocked_requests"] == 1
    assert data["total_violations"] == 1
    assert data["violations"][0]["service_name"] == "bookings"
    assert data["violations"][0]["request_count"] == 10
    assert len(data["logs"]) == data["total_requests"]


def test_stats_filters_by_service(client: TestClient) -> None:
    client.get("/api/bookings", headers=AUTH)
    client.get("/api/upload", headers=AUTH)

    resp = client.get(
        "/api/admin/rate-limit/stats",
        params={"period": "day", "service": "upload"},
        headers=ADMIN,
    )

    data = resp.json()
    assert data["service_name"] == "upload"
    assert data["by_service"] == {"upload": 1}
    assert data["total_requests"] == 1


def test_stats_rejects_unknown_period(client: TestClient) -> None:
    resp = client.get("/api/admin/rate-limit/stats", params={"period": "year"}, headers=ADMIN)

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "invalid_period"
    assert "request_id" in error


def test_stats_store_failure_is_500(client: TestClient, store: InMemoryLogStore) -> None:
    failure = StoreAppError(code="store_unavailable", message="Log store operation 'summarize' failed")
    with patch.object(store, "summarize", side_effect=failure):
        resp = client.get("/api/admin/rate-limit/stats", headers=ADMIN)

    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "store_unavailable"


def test_cleanup_purges_entries_past_days_to_keep(client: TestClient, store: InMemoryLogStore) -> None:
    store.append_request(_old_entry(10))
    store.append_request(_old_entry(3))

    resp = client.post("/api/admin/rate-limit/cleanup", json={"days_to_keep": 7}, headers=ADMIN)

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["logs_deleted"] == 1
    assert data["violations_deleted"] == 0
    assert datetime.fromisoformat(data["cutoff"]) == NOW - timedelta(days=7)


def test_cleanup_defaults_to_seven_days(client: TestClient, store: InMemoryLogStore) -> None:
    store.append_request(_old_entry(8))

    resp = client.post("/api/admin/rate-limit/cleanup", headers=ADMIN)

    assert resp.status_code == 200
    assert resp.json()["logs_deleted"] == 1


def test_cleanup_validates_days_to_keep(client: TestClient) -> None:
    resp = client.post("/api/admin/rate-limit/cleanup", json={"days_to_keep": 0}, headers=ADMIN)

    assert resp.status_code == 422


def test_cleanup_requires_api_key(client: TestClient, store: InMemoryLogStore) -> None:
    store.append_request(_old_entry(10))

    resp = client.post("/api/admin/rate-limit/cleanup", json={"days_to_keep": 7})

    assert resp.status_code == 403
    assert any(e.created_at == NOW - timedelta(days=10) for e in store.requests)
