"""Log store interfaces.

The gate depends on this abstraction (not the concrete implementation) so the
storage backend can be swapped (SQLite, PostgreSQL, in-memory) without changes
to the admission logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from admission_gate.domain.models import IdentifierType, ViolationType


@dataclass(frozen=True)
class RequestLogEntry:
    """One processed request, admitted or denied.

    Attributes:
        identifier: Subject the request was accounted against.
        identifier_type: Kind of identifier (ip, user_id, phone_number, session).
        service_name: Logical service whose quota applied.
        endpoint: Request path.
        method: HTTP method.
        status_code: 200 when admitted, 429 when denied, 500 when the gate failed open.
        response_time_ms: Time spent reaching the decision.
        created_at: UTC timestamp used for window counting.
    """

    identifier: str
    identifier_type: IdentifierType
    service_name: str
    endpoint: str
    method: str
    status_code: int
    response_time_ms: int
    created_at: datetime
    user_agent: str | None = None
    ip_address: str | None = None
    country_code: str | None = None


@dataclass(frozen=True)
class ViolationEntry:
    """One denied request, with the window that was exceeded."""

    identifier: str
    identifier_type: IdentifierType
    service_name: str
    endpoint: str
    violation_type: ViolationType
    request_count: int
    window_start: datetime
    window_end: datetime
    created_at: datetime
    user_agent: str | None = None
    ip_address: str | None = None
    country_code: str | None = None


@dataclass(frozen=True)
class PurgeResult:
    """Outcome of a retention purge."""

    cutoff: datetime
    requests_deleted: int = 0
    violations_deleted: int = 0

    @property
    def total_deleted(self) -> int:
        return self.requests_deleted + self.violations_deleted


@dataclass(frozen=True)
class LogSummary:
    """Aggregated view of the logs since a point in time."""

    since: datetime
    until: datetime
    total_requests: int = 0
    blocked_requests: int = 0
    total_violations: int = 0
    unique_identifiers: int = 0
    avg_response_time_ms: float = 0.0
    requests_by_service: dict[str, int] = field(default_factory=dict)
    recent_requests: list[RequestLogEntry] = field(default_factory=list)
    recent_violations: list[ViolationEntry] = field(default_factory=list)

    @property
    def violation_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.total_violations / self.total_requests


RECENT_REQUESTS_LIMIT = 100
RECENT_VIOLATIONS_LIMIT = 50


class AbstractLogStore(ABC):
    """Interface for request/violation log stores."""

    @abstractmethod
    def count_requests(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        service_name: str,
        window_start: datetime,
    ) -> int:
        """Count request log entries created at or after ``window_start``.

        Args:
            identifier: Subject being accounted.
            identifier_type: Kind of identifier.
            service_name: Logical service.
            window_start: Inclusive lower bound of the trailing window.

        Returns:
            Number of matching entries.

        Raises:
            StoreAppError: If the backend cannot be queried.
        """
        raise NotImplementedError

    @abstractmethod
    def append_request(self, entry: RequestLogEntry) -> None:
        """Persist a request log entry."""
        raise NotImplementedError

    @abstractmethod
    def append_violation(self, entry: ViolationEntry) -> None:
        """Persist a violation entry."""
        raise NotImplementedError

    @abstractmethod
    def purge_before(self, cutoff: datetime) -> PurgeResult:
        """Delete every request and violation entry created before ``cutoff``."""
        raise NotImplementedError

    @abstractmethod
    def summarize(
        self,
        since: datetime,
        until: datetime,
        *,
        service_name: str | None = None,
    ) -> LogSummary:
        """Aggregate entries created in ``[since, until]``, optionally per service."""
        raise NotImplementedError

    def create_schema(self) -> None:
        """Create backing tables if the store needs them."""

    def close(self) -> None:
        """Release backend resources."""
