"""Application factory for the admission gate service.

Centralizes app construction (stores, gate wiring, middleware, handlers,
routers and the retention lifespan) so tests can build isolated instances
with in-memory adapters and a fake clock.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from admission_gate.adapters.db import create_db_engine
from admission_gate.adapters.log_store.base import AbstractLogStore
from admission_gate.adapters.log_store.sqlalchemy_store import SQLAlchemyLogStore
from admission_gate.adapters.rosters.base import AbstractRosterLookup
from admission_gate.adapters.rosters.sqlalchemy_rosters import (
    SQLAlchemyRosterLookup,
    roster_metadata,
)
from admission_gate.api.routes import admin_router, health_router
from admission_gate.core.auth import StaticTokenSubjectResolver, SubjectResolver
from admission_gate.core.config import settings
from admission_gate.core.exception_handlers import setup_exception_handlers
from admission_gate.core.gate_middleware import admission_gate_middleware
from admission_gate.core.logging import configure_logging
from admission_gate.core.middleware import request_id_middleware
from admission_gate.core.openapi import apply_openapi_customizations
from admission_gate.services.gate import Gate
from admission_gate.services.identifier_resolver import IdentifierResolver
from admission_gate.services.quota_registry import QuotaRegistry
from admission_gate.services.retention import RetentionSweeper
from admission_gate.services.route_classifier import RouteClassifier
from admission_gate.services.stats_service import StatsService
from admission_gate.services.trust_classifier import TrustClassifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    sweeper: RetentionSweeper = app.state.sweeper
    if settings.retention.enabled:
        await sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()
        app.state.store.close()


def create_app(
    *,
    store: AbstractLogStore | None = None,
    rosters: AbstractRosterLookup | None = None,
    subject_resolver: SubjectResolver | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Adapters not supplied are built from ``settings.store``; both the log
    store and the roster lookups then share one engine.

    Args:
        store: Request/violation log store.
        rosters: Read-only roster lookups for trust classification.
        subject_resolver: Bearer token resolver; defaults to ``APP_AUTH_TOKENS``.
        clock: Time source shared by the gate, classifier, sweeper and stats.

    Returns:
        Configured app with ``gate``, ``sweeper`` and ``stats`` on ``app.state``.

    Raises:
        ConfigurationAppError: If the quota or retention configuration is
            inconsistent.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    if store is None or rosters is None:
        engine = create_db_engine(settings.store.url, echo=settings.store.echo)
        if store is None:
            store = SQLAlchemyLogStore(engine)
        if rosters is None:
            if settings.store.create_roster_tables:
                roster_metadata.create_all(engine)
            rosters = SQLAlchemyRosterLookup(engine)
    store.create_schema()

    quotas = QuotaRegistry.from_settings(
        settings.quota, messaging_services=settings.app.messaging_services
    )
    resolver = IdentifierResolver(
        trust_classifier=TrustClassifier(rosters, clock=clock),
        subject_resolver=subject_resolver or StaticTokenSubjectResolver.from_settings(),
        messaging_services=settings.app.messaging_services,
    )
    gate = Gate(
        store=store,
        routes=RouteClassifier.from_settings(settings.quota),
        quotas=quotas,
        resolver=resolver,
        clock=clock,
        country_header=settings.app.country_header,
    )
    sweeper = RetentionSweeper.from_settings(
        store,
        settings.retention,
        max_window=timedelta(milliseconds=quotas.max_window_ms()),
        clock=clock,
    )

    app = FastAPI(
        title="Admission Gate",
        description=(
            "Abuse-prevention gate in front of a scheduling application. Every "
            "inbound request is attributed to a subject (phone number, user, or "
            "network address), counted against a sliding-window quota and either "
            "admitted or rejected with 429. Admin endpoints expose statistics and "
            "manual retention purges and require X-API-Key."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=_lifespan,
    )
    app.state.store = store
    app.state.gate = gate
    app.state.sweeper = sweeper
    app.state.stats = StatsService(store, clock=clock)

    # Last registered runs first: request id wraps the gate
    app.middleware("http")(admission_gate_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(admin_router)

    apply_openapi_customizations(app)

    logger.info(
        "app.created",
        extra={
            "gate_enabled": settings.app.gate_enabled,
            "retention_enabled": settings.retention.enabled,
            "services": sorted(settings.quota.services),
        },
    )
    return app
