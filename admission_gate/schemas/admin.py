"""Pydantic schemas for the rate-limit admin endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from admission_gate.adapters.log_store.base import (
    LogSummary,
    PurgeResult,
    RequestLogEntry,
    ViolationEntry,
)


class RequestLogItem(BaseModel):
    """A request log entry as exposed to administrators."""

    identifier: str
    identifier_type: str
    service_name: str
    endpoint: str
    method: str
    status_code: int
    response_time_ms: int
    user_agent: str | None = None
    ip_address: str | None = None
    country_code: str | None = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: RequestLogEntry) -> "RequestLogItem":
        return cls(
            identifier=entry.identifier,
            identifier_type=entry.identifier_type.value,
            service_name=entry.service_name,
            endpoint=entry.endpoint,
            method=entry.method,
            status_code=entry.status_code,
            response_time_ms=entry.response_time_ms,
            user_agent=entry.user_agent,
            ip_address=entry.ip_address,
            country_code=entry.country_code,
            created_at=entry.created_at,
        )


class ViolationItem(BaseModel):
    """A violation entry as exposed to administrators."""

    identifier: str
    identifier_type: str
    service_name: str
    endpoint: str
    violation_type: str
    request_count: int
    window_start: datetime
    window_end: datetime
    user_agent: str | None = None
    ip_address: str | None = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: ViolationEntry) -> "ViolationItem":
        return cls(
            identifier=entry.identifier,
            identifier_type=entry.identifier_type.value,
            service_name=entry.service_name,
            endpoint=entry.endpoint,
            violation_type=entry.violation_type.value,
            request_count=entry.request_count,
            window_start=entry.window_start,
            window_end=entry.window_end,
            user_agent=entry.user_agent,
            ip_address=entry.ip_address,
            created_at=entry.created_at,
        )


class RateLimitStatsResponse(BaseModel):
    """Gate activity over a trailing period."""

    period: Literal["hour", "day", "week", "month"] = Field(
        ..., description="Trailing period the statistics cover."
    )
    service_name: str | None = Field(
        default=None, description="Service filter, if one was requested."
    )
    start_date: datetime
    end_date: datetime
    total_requests: int = Field(..., ge=0)
    blocked_requests: int = Field(..., ge=0, description="Requests answered with 429.")
    total_violations: int = Field(..., ge=0)
    violation_rate: float = Field(
        ..., ge=0, description="Violations divided by requests (0 when there were no requests)."
    )
    avg_response_time_ms: float = Field(..., ge=0)
    unique_identifiers: int = Field(..., ge=0)
    by_service: dict[str, int] = Field(default_factory=dict)
    logs: list[RequestLogItem] = Field(
        default_factory=list, description="Most recent request log entries (up to 100)."
    )
    violations: list[ViolationItem] = Field(
        default_factory=list, description="Most recent violations (up to 50)."
    )

    @classmethod
    def from_summary(
        cls,
        summary: LogSummary,
        *,
        period: Literal["hour", "day", "week", "month"],
        service_name: str | None,
    ) -> "RateLimitStatsResponse":
        return cls(
            period=period,
            service_name=service_name,
            start_date=summary.since,
            end_date=summary.until,
            total_requests=summary.total_requests,
            blocked_requests=summary.blocked_requests,
            total_violations=summary.total_violations,
            violation_rate=summary.violation_rate,
            avg_response_time_ms=summary.avg_response_time_ms,
            unique_identifiers=summary.unique_identifiers,
            by_service=summary.requests_by_service,
            logs=[RequestLogItem.from_entry(e) for e in summary.recent_requests],
            violations=[ViolationItem.from_entry(e) for e in summary.recent_violations],
        )


class CleanupRequest(BaseModel):
    """Body of a manual retention purge."""

    days_to_keep: int = Field(
        7,
        ge=1,
        le=3650,
        description="Entries older than this many days are deleted.",
    )


class CleanupResponse(BaseModel):
    """Outcome of a manual retention purge."""

    success: bool = True
    message: str = "Cleanup completed"
    cutoff: datetime
    logs_deleted: int = Field(..., ge=0)
    violations_deleted: int = Field(..., ge=0)

    @classmethod
    def from_result(cls, result: PurgeResult) -> "CleanupResponse":
        return cls(
            cutoff=result.cutoff,
            logs_deleted=result.requests_deleted,
            violations_deleted=result.violations_deleted,
        )
