"""Unit tests for the admission gate orchestration."""

import threading
from unittest.mock import patch

import pytest

from admission_gate.core.errors import StoreAppError
from admission_gate.domain.models import (
    IdentifierType,
    Outcome,
    QuotaRule,
    RequestContext,
    TrustTier,
    ViolationType,
)
from admission_gate.services.gate import FAIL_OPEN_IDENTIFIER, Gate
from tests.conftest import T0, utc


def _bookings_request() -> RequestContext:
    return RequestContext(
        path="/api/bookings",
        method="post",
        headers={"Authorization": "Bearer token-42", "User-Agent": "pytest"},
    )


def _webhook(phone: str) -> RequestContext:
    return RequestContext(
        path="/api/whatsapp/webhook",
        method="POST",
        headers={"X-Forwarded-For": "203.0.113.9"},
        payload={"From": f"whatsapp:{phone}"},
    )


def test_bookings_window_scenario(gate: Gate, store, clock) -> None:
    for _ in range(10):
        decision = gate.evaluate(_bookings_request())
        assert decision.outcome is Outcome.ADMIT

    clock.return_value = T0 + 1.0
    denied = gate.evaluate(_bookings_request())

    assert denied.outcome is Outcome.DENY
    assert denied.allowed is False
    assert denied.retry_after_seconds == 3600
    assert denied.remaining == 0

    assert len(store.requests) == 11
    assert [e.status_code for e in store.requests] == [200] * 10 + [429]
    assert all(e.identifier == "user-42" for e in store.requests)
    assert all(e.identifier_type is IdentifierType.USER_ID for e in store.requests)

    (violation,) = store.violations
    assert violation.request_count == 10
    assert violation.violation_type is ViolationType.RATE_LIMIT_EXCEEDED
    assert violation.service_name == "bookings"
    assert violation.window_start == utc(T0 + 1.0 - 3600)
    assert violation.window_end == denied.reset_at == utc(T0 + 1.0 + 3600)

    # The ten admitted entries have left the window; only the denied one remains.
    clock.return_value = T0 + 3600.001
    later = gate.evaluate(_bookings_request())

    assert later.outcome is Outcome.ADMIT
    assert later.request_count == 1


def test_admitted_decision_reports_remaining_and_reset(gate: Gate, clock) -> None:
    decision = gate.evaluate(_bookings_request())

    assert decision.rule == QuotaRule(10, 3_600_000)
    assert decision.remaining == 9
    headers = decision.headers()
    assert headers["X-RateLimit-Limit"] == "10"
    assert headers["X-RateLimit-Remaining"] == "9"
    assert headers["X-RateLimit-Reset"].startswith("2026-01-01T01:00:00")
    assert "Retry-After" not in headers


def test_identities_are_counted_separately(gate: Gate) -> None:
    for _ in range(10):
        gate.evaluate(_bookings_request())

    other = RequestContext(path="/api/bookings", headers={"X-Forwarded-For": "198.51.100.7"})

    assert gate.evaluate(other).outcome is Outcome.ADMIT


def test_services_are_counted_separately(gate: Gate) -> None:
    for _ in range(10):
        gate.evaluate(_bookings_request())

    dashboard = RequestContext(path="/api/dashboard", headers={"Authorization": "Bearer token-42"})

    assert gate.evaluate(dashboard).outcome is Outcome.ADMIT


def test_unknown_sender_gets_most_restrictive_messaging_rule(gate: Gate, store) -> None:
    phone = "+15550009999"
    decisions = [gate.evaluate(_webhook(phone)) for _ in range(6)]

    assert decisions[0].rule == QuotaRule(5, 1_800_000)
    assert decisions[0].identity.trust_tier is TrustTier.UNKNOWN
    assert [d.outcome for d in decisions] == [Outcome.ADMIT] * 5 + [Outcome.DENY]
    assert store.requests[0].identifier == phone
    assert store.requests[0].identifier_type is IdentifierType.PHONE_NUMBER


def test_trusted_sender_gets_generous_rule(gate: Gate, rosters) -> None:
    rosters._allow_list.add("+393331112222")

    decision = gate.evaluate(_webhook("+393331112222"))

    assert decision.identity.trust_tier is TrustTier.TRUSTED
    assert decision.rule == QuotaRule(50, 1_800_000)


def test_needs_payload_only_for_messaging(gate: Gate) -> None:
    assert gate.needs_payload(gate.classify("/api/whatsapp/webhook")) is True
    assert gate.needs_payload(gate.classify("/api/bookings")) is False
    assert gate.needs_payload(gate.classify("/health")) is False


@pytest.mark.parametrize("path", ["/health", "/api/health", "/api/auth/refresh"])
def test_skipped_paths_are_never_logged(gate: Gate, store, path: str) -> None:
    for _ in range(500):
        decision = gate.evaluate(RequestContext(path=path))
        assert decision.outcome is Outcome.SKIP
        assert decision.headers() == {}

    assert store.requests == []
    assert store.violations == []


def test_permissive_route_uses_looser_rule(gate: Gate) -> None:
    regular = gate.evaluate(RequestContext(path="/api/auth/me"))
    relaxed = gate.evaluate(RequestContext(path="/api/auth/login"))

    assert regular.rule == QuotaRule(100, 3_600_000)
    assert relaxed.rule == QuotaRule(300, 3_600_000)
    assert relaxed.rule.is_looser_than(regular.rule)


def test_count_failure_fails_open(gate: Gate, store) -> None:
    failure = StoreAppError(code="store_unavailable", message="down")
    with patch.object(store, "count_requests", side_effect=failure):
        decision = gate.evaluate(_bookings_request())

    assert decision.outcome is Outcome.ADMIT
    assert decision.fail_open is True
    assert decision.rule == QuotaRule(1000, 3_600_000)
    assert decision.remaining == 999

    (entry,) = store.requests
    assert entry.identifier == FAIL_OPEN_IDENTIFIER
    assert entry.identifier_type is IdentifierType.IP
    assert entry.status_code == 500
    assert entry.service_name == "bookings"
    assert store.violations == []


def test_fail_open_survives_log_failure(gate: Gate, store) -> None:
    with patch.object(store, "count_requests", side_effect=RuntimeError("boom")), patch.object(
        store, "append_request", side_effect=RuntimeError("boom")
    ):
        decision = gate.evaluate(_bookings_request())

    assert decision.allowed is True
    assert decision.fail_open is True


def test_resolver_failure_fails_open(gate: Gate, store) -> None:
    with patch.object(gate._resolver, "resolve", side_effect=RuntimeError("boom")):
        decision = gate.evaluate(_bookings_request())

    assert decision.fail_open is True
    assert store.requests[0].identifier == FAIL_OPEN_IDENTIFIER


def test_log_write_failure_does_not_change_decision(gate: Gate, store) -> None:
    with patch.object(store, "append_request", side_effect=StoreAppError(code="x", message="y")):
        decision = gate.evaluate(_bookings_request())

    assert decision.outcome is Outcome.ADMIT
    assert decision.fail_open is False
    assert decision.rule == QuotaRule(10, 3_600_000)


def test_violation_write_failure_still_denies(gate: Gate, store) -> None:
    for _ in range(10):
        gate.evaluate(_bookings_request())

    with patch.object(store, "append_violation", side_effect=RuntimeError("boom")):
        decision = gate.evaluate(_bookings_request())

    assert decision.outcome is Outcome.DENY
    assert store.violations == []


def test_fail_open_without_record_writes_nothing(gate: Gate, store) -> None:
    context = _bookings_request()

    decision = gate.fail_open(context, gate.classify(context.path), record=False)

    assert decision.fail_open is True
    assert store.requests == []


def test_abandoned_evaluation_never_records_a_denial(gate: Gate, store) -> None:
    for _ in range(10):
        gate.evaluate(_bookings_request())
    abandoned = threading.Event()
    abandoned.set()

    decision = gate.evaluate(_bookings_request(), abandoned=abandoned)

    assert decision.allowed is True
    assert decision.fail_open is True
    assert [e.status_code for e in store.requests] == [200] * 10 + [500]
    assert store.requests[-1].identifier == FAIL_OPEN_IDENTIFIER
    assert store.violations == []


def test_unset_abandon_flag_keeps_normal_decision(gate: Gate, store) -> None:
    decision = gate.evaluate(_bookings_request(), abandoned=threading.Event())

    assert decision.outcome is Outcome.ADMIT
    assert decision.fail_open is False
    assert store.requests[0].identifier == "user-42"


def test_request_entry_captures_request_metadata(gate: Gate, store) -> None:
    context = RequestContext(
        path="/api/upload/photo",
        method="put",
        headers={
            "X-Forwarded-For": "203.0.113.9, 10.0.0.2",
            "User-Agent": "curl/8",
            "CF-IPCountry": "it",
        },
    )

    gate.evaluate(context)

    (entry,) = store.requests
    assert entry.service_name == "upload"
    assert entry.method == "PUT"
    assert entry.endpoint == "/api/upload/photo"
    assert entry.ip_address == "203.0.113.9"
    assert entry.user_agent == "curl/8"
    assert entry.country_code == "IT"
    assert entry.response_time_ms >= 0
