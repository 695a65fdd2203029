"""Read-side statistics over the request and violation logs."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Literal

from admission_gate.adapters.log_store.base import AbstractLogStore, LogSummary

logger = logging.getLogger(__name__)

Period = Literal["hour", "day", "week", "month"]

PERIODS: dict[str, timedelta] = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


class StatsService:
    """Summarize gate activity over a trailing period."""

    def __init__(
        self,
        store: AbstractLogStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    def summarize(self, period: Period = "day", service_name: str | None = None) -> LogSummary:
        """Aggregate the logs of the trailing ``period``.

        Args:
            period: One of hour, day, week, month.
            service_name: Restrict to one logical service.

        Returns:
            LogSummary for ``[now - period, now]``.

        Raises:
            ValueError: If ``period`` is unknown.
            StoreAppError: If the store fails.
        """
        if period not in PERIODS:
            raise ValueError(f"Unknown period: {period!r}")

        until = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        since = until - PERIODS[period]
        summary = self._store.summarize(since, until, service_name=service_name)

        logger.info(
            "stats.summarized",
            extra={
                "period": period,
                "service_name": service_name,
                "total_requests": summary.total_requests,
                "total_violations": summary.total_violations,
            },
        )
        return summary
