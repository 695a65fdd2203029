"""Core value types shared by the gate, its stores and its HTTP binding."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class IdentifierType(str, Enum):
    IP = "ip"
    USER_ID = "user_id"
    PHONE_NUMBER = "phone_number"
    SESSION = "session"


class TrustTier(str, Enum):
    """Trust classification of a messaging-channel sender."""

    TRUSTED = "trusted"
    EXISTING = "existing"
    NEW = "new"
    UNKNOWN = "unknown"


class ViolationType(str, Enum):
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SPAM_DETECTED = "spam_detected"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


class RouteKind(str, Enum):
    SKIP = "skip"
    PERMISSIVE = "permissive"
    SERVICE = "service"


class Outcome(str, Enum):
    ADMIT = "admit"
    DENY = "deny"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class QuotaRule:
    """Maximum number of requests allowed within a trailing window."""

    limit: int
    window_ms: int

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")

    @property
    def window(self) -> timedelta:
        return timedelta(milliseconds=self.window_ms)

    @property
    def window_seconds(self) -> int:
        """Window length rounded up to whole seconds (Retry-After hint)."""
        return int(math.ceil(self.window_ms / 1000))

    def is_looser_than(self, other: "QuotaRule") -> bool:
        """Whether this rule admits strictly more traffic per unit of time."""
        return self.limit * other.window_ms > other.limit * self.window_ms


@dataclass(frozen=True, slots=True)
class RouteDecision:
    kind: RouteKind
    service_name: str | None = None

    @property
    def skipped(self) -> bool:
        return self.kind is RouteKind.SKIP

    @property
    def permissive(self) -> bool:
        return self.kind is RouteKind.PERMISSIVE


@dataclass(frozen=True, slots=True)
class Identity:
    """Subject against which quota is accounted."""

    identifier: str
    identifier_type: IdentifierType
    trust_tier: TrustTier | None = None


@dataclass(frozen=True)
class RequestContext:
    """Transport-independent view of an inbound request.

    Header names are lower-cased on construction so lookups are
    case-insensitive. ``payload`` is only populated for messaging-channel
    routes, whose identifier lives in the request body.
    """

    path: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    payload: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        normalized = {k.lower(): v for k, v in self.headers.items()}
        object.__setattr__(self, "headers", MappingProxyType(normalized))

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def forwarded_for(self) -> str | None:
        """First address of ``X-Forwarded-For``, if any."""
        raw = self.header("x-forwarded-for")
        if not raw:
            return None
        first = raw.split(",")[0].strip()
        return first or None

    @property
    def user_agent(self) -> str | None:
        return self.header("user-agent") or None


@dataclass(frozen=True, slots=True)
class GateDecision:
    """Verdict for a single request plus the data needed to render it."""

    outcome: Outcome
    rule: QuotaRule | None = None
    service_name: str | None = None
    identity: Identity | None = None
    request_count: int = 0
    remaining: int = 0
    reset_at: datetime | None = None
    fail_open: bool = False

    @property
    def allowed(self) -> bool:
        return self.outcome is not Outcome.DENY

    @property
    def retry_after_seconds(self) -> int | None:
        if self.outcome is not Outcome.DENY or self.rule is None:
            return None
        return self.rule.window_seconds

    def headers(self) -> dict[str, str]:
        """``X-RateLimit-*`` headers describing this decision (empty for skips)."""
        if self.rule is None or self.reset_at is None:
            return {}
        headers = {
            "X-RateLimit-Limit": str(self.rule.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }
        if self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers
