"""Rate-limit administration endpoints.

Both endpoints require the admin ``X-API-Key``. They are synchronous route
functions: the store calls block, so FastAPI runs them in its threadpool.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from admission_gate.core.auth import verify_api_key
from admission_gate.core.errors import ConfigurationAppError, ValidationAppError
from admission_gate.schemas.admin import (
    CleanupRequest,
    CleanupResponse,
    RateLimitStatsResponse,
)
from admission_gate.services.retention import RetentionSweeper
from admission_gate.services.stats_service import PERIODS, StatsService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/rate-limit",
    tags=["Admin"],
    dependencies=[Depends(verify_api_key)],
)


@router.get("/stats", response_model=RateLimitStatsResponse)
def rate_limit_stats(
    request: Request,
    period: Annotated[str, Query(description="hour, day, week or month")] = "day",
    service: Annotated[str | None, Query(description="Restrict to one service")] = None,
) -> RateLimitStatsResponse:
    """Summarize gate activity over a trailing period.

    Raises:
        ValidationAppError: If ``period`` is not one of hour, day, week, month.
        StoreAppError: If the log store is unavailable.
    """
    if period not in PERIODS:
        raise ValidationAppError(
            code="invalid_period",
            message=f"Unknown period '{period}'",
            details={"hint": "Use one of: " + ", ".join(PERIODS)},
        )

    stats: StatsService = request.app.state.stats
    summary = stats.summarize(period, service_name=service)  # type: ignore[arg-type]
    return RateLimitStatsResponse.from_summary(
        summary,
        period=period,  # type: ignore[arg-type]
        service_name=service,
    )


@router.post("/cleanup", response_model=CleanupResponse)
def rate_limit_cleanup(request: Request, body: CleanupRequest | None = None) -> CleanupResponse:
    """Purge log entries older than ``days_to_keep`` days.

    Raises:
        ValidationAppError: If the horizon does not exceed the longest quota window.
        StoreAppError: If the log store is unavailable.
    """
    days_to_keep = (body or CleanupRequest()).days_to_keep
    sweeper: RetentionSweeper = request.app.state.sweeper
    try:
        result = sweeper.purge(timedelta(days=days_to_keep))
    except ConfigurationAppError as exc:
        raise ValidationAppError(
            code="invalid_days_to_keep",
            message=exc.message,
            details=exc.details,
        ) from exc

    logger.info(
        "admin.cleanup",
        extra={"days_to_keep": days_to_keep, "total_deleted": result.total_deleted},
    )
    return CleanupResponse.from_result(result)
