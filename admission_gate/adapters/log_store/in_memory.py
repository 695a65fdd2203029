"""In-memory log store.

Notes:
- Per-process only: nothing survives a restart and workers do not share logs.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import threading
from datetime import datetime

from admission_gate.adapters.log_store.base import (
    RECENT_REQUESTS_LIMIT,
    RECENT_VIOLATIONS_LIMIT,
    AbstractLogStore,
    LogSummary,
    PurgeResult,
    RequestLogEntry,
    ViolationEntry,
)
from admission_gate.domain.models import IdentifierType


class InMemoryLogStore(AbstractLogStore):
    """Log store keeping entries in process memory.

    Intended for tests and single-process local runs. It honours the same
    contract as the SQL store, so the gate cannot tell them apart.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._requests: list[RequestLogEntry] = []
        self._violations: list[ViolationEntry] = []

    @property
    def requests(self) -> list[RequestLogEntry]:
        """Snapshot of all request entries, oldest first."""
        with self._lock:
            return list(self._requests)

    @property
    def violations(self) -> list[ViolationEntry]:
        """Snapshot of all violation entries, oldest first."""
        with self._lock:
            return list(self._violations)

    def count_requests(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        service_name: str,
        window_start: datetime,
    ) -> int:
        with self._lock:
            return sum(
                1
                for entry in self._requests
                if entry.identifier == identifier
                and entry.identifier_type == identifier_type
                and entry.service_name == service_name
                and entry.created_at >= window_start
            )

    def append_request(self, entry: RequestLogEntry) -> None:
        with self._lock:
            self._requests.append(entry)

    def append_violation(self, entry: ViolationEntry) -> None:
        with self._lock:
            self._violations.append(entry)

    def purge_before(self, cutoff: datetime) -> PurgeResult:
        with self._lock:
            kept_requests = [e for e in self._requests if e.created_at >= cutoff]
            kept_violations = [e for e in self._violations if e.created_at >= cutoff]
            result = PurgeResult(
                cutoff=cutoff,
                requests_deleted=len(self._requests) - len(kept_requests),
                violations_deleted=len(self._violations) - len(kept_violations),
            )
            self._requests = kept_requests
            self._violations = kept_violations
        return result

    def summarize(
        self,
        since: datetime,
        until: datetime,
        *,
        service_name: str | None = None,
    ) -> LogSummary:
        with self._lock:
            requests = [
                e
                for e in self._requests
                if since <= e.created_at <= until
                and (service_name is None or e.service_name == service_name)
            ]
            violations = [
                e
                for e in self._violations
                if since <= e.created_at <= until
                and (service_name is None or e.service_name == service_name)
            ]

        by_service: dict[str, int] = {}
        for entry in requests:
            by_service[entry.service_name] = by_service.get(entry.service_name, 0) + 1

        avg_ms = (
            sum(e.response_time_ms for e in requests) / len(requests) if requests else 0.0
        )
        newest_first = sorted(requests, key=lambda e: e.created_at, reverse=True)
        newest_violations = sorted(violations, key=lambda e: e.created_at, reverse=True)

        return LogSummary(
            since=since,
            until=until,
            total_requests=len(requests),
            blocked_requests=sum(1 for e in requests if e.status_code == 429),
            total_violations=len(violations),
            unique_identifiers=len({(e.identifier, e.identifier_type) for e in requests}),
            avg_response_time_ms=avg_ms,
            requests_by_service=by_service,
            recent_requests=newest_first[:RECENT_REQUESTS_LIMIT],
            recent_violations=newest_violations[:RECENT_VIOLATIONS_LIMIT],
        )
