"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before anything imports the settings module,
so no test ever touches a real database or starts the retention loop.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("APP_AUTH_TOKENS", "token-42:user-42,token-7:user-7")
os.environ.setdefault("STORE_URL", "sqlite://")
os.environ.setdefault("RETENTION_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timezone  # noqa: E402
from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402

from admission_gate.adapters.log_store.in_memory import InMemoryLogStore  # noqa: E402
from admission_gate.adapters.rosters.in_memory import InMemoryRosterLookup  # noqa: E402
from admission_gate.core.auth import StaticTokenSubjectResolver  # noqa: E402
from admission_gate.core.config import settings  # noqa: E402
from admission_gate.services.gate import Gate  # noqa: E402
from admission_gate.services.identifier_resolver import IdentifierResolver  # noqa: E402
from admission_gate.services.quota_registry import QuotaRegistry  # noqa: E402
from admission_gate.services.route_classifier import RouteClassifier  # noqa: E402
from admission_gate.services.trust_classifier import TrustClassifier  # noqa: E402

# 2026-01-01T00:00:00Z
T0 = 1767225600.0


def utc(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=T0)


@pytest.fixture
def store() -> InMemoryLogStore:
    return InMemoryLogStore()


@pytest.fixture
def rosters() -> InMemoryRosterLookup:
    return InMemoryRosterLookup()


@pytest.fixture
def registry() -> QuotaRegistry:
    return QuotaRegistry.from_settings(
        settings.quota, messaging_services=settings.app.messaging_services
    )


@pytest.fixture
def routes() -> RouteClassifier:
    return RouteClassifier.from_settings(settings.quota)


@pytest.fixture
def gate(store, rosters, registry, routes, clock) -> Gate:
    resolver = IdentifierResolver(
        trust_classifier=TrustClassifier(rosters, clock=clock),
        subject_resolver=StaticTokenSubjectResolver({"token-42": "user-42"}),
        messaging_services=settings.app.messaging_services,
    )
    return Gate(
        store=store,
        routes=routes,
        quotas=registry,
        resolver=resolver,
        clock=clock,
        country_header="CF-IPCountry",
    )
