"""Unit tests for the retention sweeper."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from admission_gate.adapters.log_store.base import PurgeResult, RequestLogEntry
from admission_gate.adapters.log_store.in_memory import InMemoryLogStore
from admission_gate.core.config import RetentionSettings
from admission_gate.core.errors import ConfigurationAppError
from admission_gate.domain.models import IdentifierType
from admission_gate.services.retention import RetentionSweeper
from tests.conftest import T0, utc

NOW = utc(T0)


def _entry(created_at: datetime) -> RequestLogEntry:
    return RequestLogEntry(
        identifier="203.0.113.9",
        identifier_type=IdentifierType.IP,
        service_name="dashboard",
        endpoint="/api/dashboard",
        method="GET",
        status_code=200,
        response_time_ms=1,
        created_at=created_at,
    )


def _sweeper(store, **kwargs) -> RetentionSweeper:
    params = dict(
        horizon=timedelta(days=7),
        interval_seconds=3600,
        max_window=timedelta(hours=1),
        clock=Mock(return_value=T0),
    )
    params.update(kwargs)
    return RetentionSweeper(store, **params)


def test_purge_deletes_entries_past_horizon() -> None:
    store = InMemoryLogStore()
    store.append_request(_entry(NOW - timedelta(days=8)))
    store.append_request(_entry(NOW - timedelta(days=6)))

    result = _sweeper(store).purge()

    assert result.cutoff == NOW - timedelta(days=7)
    assert result.requests_deleted == 1
    assert len(store.requests) == 1


def test_second_purge_is_a_no_op() -> None:
    store = InMemoryLogStore()
    store.append_request(_entry(NOW - timedelta(days=8)))
    sweeper = _sweeper(store)

    sweeper.purge()

    assert sweeper.purge().total_deleted == 0


def test_purge_accepts_horizon_override() -> None:
    store = InMemoryLogStore()
    store.append_request(_entry(NOW - timedelta(days=3)))

    result = _sweeper(store).purge(timedelta(days=2))

    assert result.requests_deleted == 1


def test_horizon_must_exceed_longest_window() -> None:
    with pytest.raises(ConfigurationAppError) as exc_info:
        _sweeper(InMemoryLogStore(), horizon=timedelta(hours=1))

    assert exc_info.value.code == "retention_horizon_too_short"


def test_horizon_override_is_validated() -> None:
    sweeper = _sweeper(InMemoryLogStore(), max_window=timedelta(days=1))

    with pytest.raises(ConfigurationAppError):
        sweeper.purge(timedelta(hours=12))


def test_zero_horizon_override_is_not_replaced_by_default() -> None:
    store = InMemoryLogStore()
    store.append_request(_entry(NOW - timedelta(days=8)))
    sweeper = _sweeper(store)

    with pytest.raises(ConfigurationAppError):
        sweeper.purge(timedelta(0))

    assert len(store.requests) == 1


def test_interval_must_be_positive() -> None:
    with pytest.raises(ConfigurationAppError):
        _sweeper(InMemoryLogStore(), interval_seconds=0)


def test_from_settings_reads_horizon_and_interval() -> None:
    sweeper = RetentionSweeper.from_settings(
        InMemoryLogStore(),
        RetentionSettings(horizon_days=14, interval_seconds=60),
        max_window=timedelta(hours=1),
    )

    assert sweeper.horizon == timedelta(days=14)


def test_overlapping_purge_is_skipped() -> None:
    store = Mock()
    sweeper = _sweeper(store)

    def reentrant_purge(cutoff):
        nested = sweeper.purge()
        assert nested.total_deleted == 0
        return PurgeResult(cutoff=cutoff, requests_deleted=3)

    store.purge_before.side_effect = reentrant_purge

    assert sweeper.purge().requests_deleted == 3
    store.purge_before.assert_called_once()


@pytest.mark.asyncio
async def test_background_loop_purges_and_stops() -> None:
    store = InMemoryLogStore()
    store.append_request(_entry(NOW - timedelta(days=8)))
    sweeper = _sweeper(store, interval_seconds=0.01)

    await sweeper.start()
    assert sweeper.running is True
    for _ in range(100):
        if not store.requests:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert store.requests == []
    assert sweeper.running is False


@pytest.mark.asyncio
async def test_background_loop_survives_store_errors() -> None:
    store = Mock()
    store.purge_before.side_effect = RuntimeError("db down")
    sweeper = _sweeper(store, interval_seconds=0.01)

    await sweeper.start()
    for _ in range(100):
        if store.purge_before.call_count >= 2:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert store.purge_before.call_count >= 2
