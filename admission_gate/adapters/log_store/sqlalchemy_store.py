"""SQLAlchemy-backed log store.

Every admission check issues one ``COUNT`` against ``rate_limit_logs``; the
request and violation inserts that follow run in their own transactions. The
count and the inserts are deliberately not wrapped in one transaction, so
concurrent requests at the quota boundary may all observe a sub-limit count.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from admission_gate.adapters.log_store.base import (
    RECENT_REQUESTS_LIMIT,
    RECENT_VIOLATIONS_LIMIT,
    AbstractLogStore,
    LogSummary,
    PurgeResult,
    RequestLogEntry,
    ViolationEntry,
)
from admission_gate.adapters.log_store.models import Base, RequestLogModel, ViolationModel
from admission_gate.core.errors import StoreAppError
from admission_gate.domain.models import IdentifierType, ViolationType

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _to_request_entry(row: RequestLogModel) -> RequestLogEntry:
    return RequestLogEntry(
        identifier=row.identifier,
        identifier_type=IdentifierType(row.identifier_type),
        service_name=row.service_name,
        endpoint=row.endpoint,
        method=row.method,
        status_code=row.status_code,
        response_time_ms=row.response_time_ms,
        created_at=row.created_at,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        country_code=row.country_code,
    )


def _to_violation_entry(row: ViolationModel) -> ViolationEntry:
    return ViolationEntry(
        identifier=row.identifier,
        identifier_type=IdentifierType(row.identifier_type),
        service_name=row.service_name,
        endpoint=row.endpoint,
        violation_type=ViolationType(row.violation_type),
        request_count=row.request_count,
        window_start=row.window_start,
        window_end=row.window_end,
        created_at=row.created_at,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        country_code=row.country_code,
    )


class SQLAlchemyLogStore(AbstractLogStore):
    """Durable log store on any SQLAlchemy-supported database."""

    def __init__(self, engine: Engine) -> None:
        """Initialize the store.

        Args:
            engine: Engine created with ``create_db_engine``.
        """
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        """Open a transactional session, translating driver errors.

        Raises:
            StoreAppError: If the database raises during ``operation``.
        """
        try:
            with self._session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.warning(
                "store.operation_failed",
                extra={"operation": operation, "error_type": type(exc).__name__},
            )
            raise StoreAppError(
                code="store_unavailable",
                message=f"Log store operation '{operation}' failed",
                details={"operation": operation},
            ) from exc

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        with self._session(operation) as session:
            return fn(session)

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StoreAppError(
                code="store_schema_failed",
                message="Could not create log tables",
                details={"operation": "create_schema"},
            ) from exc

    def close(self) -> None:
        self._engine.dispose()

    def count_requests(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        service_name: str,
        window_start: datetime,
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(RequestLogModel)
            .where(
                RequestLogModel.identifier == identifier,
                RequestLogModel.identifier_type == identifier_type.value,
                RequestLogModel.service_name == service_name,
                RequestLogModel.created_at >= window_start,
            )
        )
        return self._run("count_requests", lambda s: int(s.scalar(stmt)))

    def append_request(self, entry: RequestLogEntry) -> None:
        row = RequestLogModel(
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
        self._run("append_request", lambda s: s.add(row))

    def append_violation(self, entry: ViolationEntry) -> None:
        row = ViolationModel(
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
            country_code=entry.country_code,
            created_at=entry.created_at,
        )
        self._run("append_violation", lambda s: s.add(row))

    def purge_before(self, cutoff: datetime) -> PurgeResult:
        def _purge(session: Session) -> PurgeResult:
            requests = session.execute(
                delete(RequestLogModel).where(RequestLogModel.created_at < cutoff)
            )
            violations = session.execute(
                delete(ViolationModel).where(ViolationModel.created_at < cutoff)
            )
            return PurgeResult(
                cutoff=cutoff,
                requests_deleted=requests.rowcount or 0,
                violations_deleted=violations.rowcount or 0,
            )

        return self._run("purge_before", _purge)

    def summarize(
        self,
        since: datetime,
        until: datetime,
        *,
        service_name: str | None = None,
    ) -> LogSummary:
        request_filters = [
            RequestLogModel.created_at >= since,
            RequestLogModel.created_at <= until,
        ]
        violation_filters = [
            ViolationModel.created_at >= since,
            ViolationModel.created_at <= until,
        ]
        if service_name is not None:
            request_filters.append(RequestLogModel.service_name == service_name)
            violation_filters.append(ViolationModel.service_name == service_name)

        def _summarize(session: Session) -> LogSummary:
            total, avg_ms = session.execute(
                select(func.count(), func.avg(RequestLogModel.response_time_ms)).where(
                    *request_filters
                )
            ).one()
            blocked = session.scalar(
                select(func.count())
                .select_from(RequestLogModel)
                .where(*request_filters, RequestLogModel.status_code == 429)
            )
            violations = session.scalar(
                select(func.count()).select_from(ViolationModel).where(*violation_filters)
            )
            distinct_subjects = (
                select(RequestLogModel.identifier, RequestLogModel.identifier_type)
                .where(*request_filters)
                .distinct()
                .subquery()
            )
            unique = session.scalar(select(func.count()).select_from(distinct_subjects))
            by_service = {
                name: count
                for name, count in session.execute(
                    select(RequestLogModel.service_name, func.count())
                    .where(*request_filters)
                    .group_by(RequestLogModel.service_name)
                )
            }
            recent_requests = session.scalars(
                select(RequestLogModel)
                .where(*request_filters)
                .order_by(RequestLogModel.created_at.desc(), RequestLogModel.id.desc())
                .limit(RECENT_REQUESTS_LIMIT)
            ).all()
            recent_violations = session.scalars(
                select(ViolationModel)
                .where(*violation_filters)
                .order_by(ViolationModel.created_at.desc(), ViolationModel.id.desc())
                .limit(RECENT_VIOLATIONS_LIMIT)
            ).all()

            return LogSummary(
                since=since,
                until=until,
                total_requests=int(total or 0),
                blocked_requests=int(blocked or 0),
                total_violations=int(violations or 0),
                unique_identifiers=int(unique or 0),
                avg_response_time_ms=float(avg_ms or 0.0),
                requests_by_service=by_service,
                recent_requests=[_to_request_entry(r) for r in recent_requests],
                recent_violations=[_to_violation_entry(r) for r in recent_violations],
            )

        return self._run("summarize", _summarize)
