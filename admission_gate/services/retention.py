"""Retention sweeper for the request and violation logs.

Runs off the request path: an asyncio task purges rows older than the
retention horizon every ``interval_seconds``. The horizon must exceed the
longest quota window, so purged rows can never influence a live count and
purging concurrently with traffic is safe.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from admission_gate.adapters.log_store.base import AbstractLogStore, PurgeResult
from admission_gate.core.config import RetentionSettings
from admission_gate.core.errors import ConfigurationAppError

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Deletes log entries older than a horizon, on demand or on a timer."""

    def __init__(
        self,
        store: AbstractLogStore,
        *,
        horizon: timedelta,
        interval_seconds: float,
        max_window: timedelta | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the sweeper.

        Args:
            store: Log store to purge.
            horizon: Default retention horizon.
            interval_seconds: Delay between background purges.
            max_window: Longest configured quota window; the horizon must exceed it.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ConfigurationAppError: If the horizon does not exceed ``max_window``
                or the interval is not positive.
        """
        if interval_seconds <= 0:
            raise ConfigurationAppError(
                code="retention_invalid_interval",
                message="Retention interval must be > 0 seconds",
            )
        if max_window is not None:
            self._check_horizon(horizon, max_window)

        self._store = store
        self._horizon = horizon
        self._interval_seconds = interval_seconds
        self._max_window = max_window
        self._clock = clock
        self._run_lock = threading.Lock()
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        store: AbstractLogStore,
        retention: RetentionSettings,
        *,
        max_window: timedelta | None = None,
        clock: Callable[[], float] = time.time,
    ) -> "RetentionSweeper":
        return cls(
            store,
            horizon=timedelta(days=retention.horizon_days),
            interval_seconds=retention.interval_seconds,
            max_window=max_window,
            clock=clock,
        )

    @staticmethod
    def _check_horizon(horizon: timedelta, max_window: timedelta) -> None:
        if horizon <= max_window:
            raise ConfigurationAppError(
                code="retention_horizon_too_short",
                message=(
                    f"Retention horizon ({horizon}) must exceed the longest quota "
                    f"window ({max_window})"
                ),
                details={"hint": "Increase RETENTION_HORIZON_DAYS"},
            )

    @property
    def horizon(self) -> timedelta:
        return self._horizon

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def purge(self, retention_horizon: timedelta | None = None) -> PurgeResult:
        """Delete every entry created before ``now - retention_horizon``.

        Idempotent: a second call right after the first deletes nothing. When
        another purge is already in progress this call does not wait for it
        and reports zero deletions.

        Args:
            retention_horizon: Override of the configured horizon.

        Returns:
            PurgeResult with the cutoff and deleted row counts.

        Raises:
            ConfigurationAppError: If the override does not exceed the longest window.
            StoreAppError: If the store fails.
        """
        horizon = retention_horizon if retention_horizon is not None else self._horizon
        if self._max_window is not None:
            self._check_horizon(horizon, self._max_window)

        cutoff = datetime.fromtimestamp(self._clock(), tz=timezone.utc) - horizon

        if not self._run_lock.acquire(blocking=False):
            logger.info("retention.skipped", extra={"reason": "purge_in_progress"})
            return PurgeResult(cutoff=cutoff)
        try:
            result = self._store.purge_before(cutoff)
        finally:
            self._run_lock.release()

        logger.info(
            "retention.purged",
            extra={
                "cutoff": cutoff.isoformat(),
                "requests_deleted": result.requests_deleted,
                "violations_deleted": result.violations_deleted,
            },
        )
        return result

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await loop.run_in_executor(None, self.purge)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "retention.failed",
                    extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
                )

    async def start(self) -> None:
        """Start the background purge loop (no-op when already running)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="retention-sweeper")
        logger.info(
            "retention.started",
            extra={
                "horizon_s": self._horizon.total_seconds(),
                "interval_s": self._interval_seconds,
            },
        )

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("retention.stopped")
