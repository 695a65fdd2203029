"""Admission gate orchestrator.

For each request:

1. classify the route; skipped routes are admitted without logging
2. resolve the identifier (and trust tier for messaging traffic)
3. look up the quota rule
4. count the identifier's log entries inside the trailing window
5. admit when ``count < limit``, deny otherwise
6. append one request log entry, plus one violation entry on denial

Availability wins over strictness: any error in steps 2-4 admits the request
under the generous fail-open rule, and failures while writing the logs never
change a decision that was already made. Both behaviours are implemented by
the two boundaries below (``_measure`` guarded in ``evaluate`` and
``_best_effort``) so they can be reviewed and tested directly.

Count and inserts are separate store calls, not one transaction: concurrent
requests at the quota boundary can all be admitted. Enforcement is therefore
approximate under bursts.

A caller that stops waiting for a decision (the HTTP middleware on timeout)
has already admitted the request. It sets the ``abandoned`` event, and an
evaluation that finishes afterwards records a fail-open entry instead of its
own decision, so no violation is written for an admitted request.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from admission_gate.adapters.log_store.base import (
    AbstractLogStore,
    RequestLogEntry,
    ViolationEntry,
)
from admission_gate.core.logging import hash_identifier
from admission_gate.domain.models import (
    GateDecision,
    IdentifierType,
    Identity,
    Outcome,
    QuotaRule,
    RequestContext,
    RouteDecision,
    ViolationType,
)
from admission_gate.services.identifier_resolver import IdentifierResolver
from admission_gate.services.quota_registry import QuotaRegistry
from admission_gate.services.route_classifier import RouteClassifier

logger = logging.getLogger(__name__)

STATUS_ADMITTED = 200
STATUS_DENIED = 429
STATUS_FAIL_OPEN = 500

FAIL_OPEN_IDENTIFIER = "error"


@dataclass(frozen=True)
class _Measurement:
    identity: Identity
    rule: QuotaRule
    now: datetime
    window_start: datetime
    count: int


class Gate:
    """Stateless admission decision over a persisted request log."""

    def __init__(
        self,
        *,
        store: AbstractLogStore,
        routes: RouteClassifier,
        quotas: QuotaRegistry,
        resolver: IdentifierResolver,
        clock: Callable[[], float] = time.time,
        country_header: str | None = None,
    ) -> None:
        self._store = store
        self._routes = routes
        self._quotas = quotas
        self._resolver = resolver
        self._clock = clock
        self._country_header = country_header

    @property
    def quotas(self) -> QuotaRegistry:
        return self._quotas

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def classify(self, path: str) -> RouteDecision:
        return self._routes.classify(path)

    def needs_payload(self, route: RouteDecision) -> bool:
        """Whether the request body is needed to identify the caller."""
        return not route.skipped and self._quotas.is_messaging(route.service_name)

    def _country_code(self, context: RequestContext) -> str | None:
        if not self._country_header:
            return None
        value = (context.header(self._country_header) or "").strip().upper()
        return value[:8] or None

    def _best_effort(self, operation: str, fn: Callable[[Any], None], entry: Any) -> bool:
        """Run a log write; failures are reported and swallowed."""
        try:
            fn(entry)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "gate.log_failed",
                extra={
                    "operation": operation,
                    "service_name": entry.service_name,
                    "error_type": type(exc).__name__,
                },
            )
            return False
        return True

    def _measure(self, context: RequestContext, route: RouteDecision) -> _Measurement:
        service_name = route.service_name or self._routes.fallback_service
        identity = self._resolver.resolve(context, service_name)
        rule = self._quotas.lookup(
            service_name, identity.trust_tier, permissive=route.permissive
        )
        now = self._now()
        window_start = now - rule.window
        count = self._store.count_requests(
            identity.identifier,
            identity.identifier_type,
            service_name,
            window_start,
        )
        return _Measurement(
            identity=identity,
            rule=rule,
            now=now,
            window_start=window_start,
            count=count,
        )

    def _request_entry(
        self,
        context: RequestContext,
        *,
        identity: Identity,
        service_name: str,
        status_code: int,
        started: float,
        created_at: datetime,
    ) -> RequestLogEntry:
        return RequestLogEntry(
            identifier=identity.identifier,
            identifier_type=identity.identifier_type,
            service_name=service_name,
            endpoint=context.path,
            method=context.method.upper(),
            status_code=status_code,
            response_time_ms=int((time.perf_counter() - started) * 1000),
            created_at=created_at,
            user_agent=context.user_agent,
            ip_address=context.forwarded_for,
            country_code=self._country_code(context),
        )

    def evaluate(
        self,
        context: RequestContext,
        route: RouteDecision | None = None,
        abandoned: threading.Event | None = None,
    ) -> GateDecision:
        """Decide whether a request may proceed.

        Args:
            context: Inbound request view.
            route: Pre-computed route decision (classified here when omitted).
            abandoned: Set by a caller that admitted the request without
                waiting for this evaluation. Checked before any log write.

        Returns:
            GateDecision with outcome ADMIT, DENY or SKIP. Never raises.
        """
        started = time.perf_counter()
        route = route or self._routes.classify(context.path)
        if route.skipped:
            return GateDecision(outcome=Outcome.SKIP)

        service_name = route.service_name or self._routes.fallback_service

        try:
            m = self._measure(context, route)
        except Exception as exc:  # noqa: BLE001
            return self.fail_open(context, route, started=started, error=exc)

        if abandoned is not None and abandoned.is_set():
            return self.fail_open(context, route, started=started)

        allowed = m.count < m.rule.limit
        reset_at = m.now + m.rule.window
        decision = GateDecision(
            outcome=Outcome.ADMIT if allowed else Outcome.DENY,
            rule=m.rule,
            service_name=service_name,
            identity=m.identity,
            request_count=m.count,
            remaining=max(0, m.rule.limit - m.count - 1) if allowed else 0,
            reset_at=reset_at,
        )

        self._best_effort(
            "append_request",
            self._store.append_request,
            self._request_entry(
                context,
                identity=m.identity,
                service_name=service_name,
                status_code=STATUS_ADMITTED if allowed else STATUS_DENIED,
                started=started,
                created_at=m.now,
            ),
        )

        log_extra = {
            "service_name": service_name,
            "identifier_type": m.identity.identifier_type.value,
            "identifier_hash": hash_identifier(m.identity.identifier),
            "trust_tier": m.identity.trust_tier.value if m.identity.trust_tier else None,
            "permissive": route.permissive,
            "limit": m.rule.limit,
            "count": m.count,
            "window_ms": m.rule.window_ms,
        }

        if allowed:
            logger.info("gate.admitted", extra={**log_extra, "remaining": decision.remaining})
            return decision

        self._best_effort(
            "append_violation",
            self._store.append_violation,
            ViolationEntry(
                identifier=m.identity.identifier,
                identifier_type=m.identity.identifier_type,
                service_name=service_name,
                endpoint=context.path,
                violation_type=ViolationType.RATE_LIMIT_EXCEEDED,
                request_count=m.count,
                window_start=m.window_start,
                window_end=reset_at,
                created_at=m.now,
                user_agent=context.user_agent,
                ip_address=context.forwarded_for,
                country_code=self._country_code(context),
            ),
        )
        logger.warning(
            "gate.denied",
            extra={**log_extra, "retry_after_s": decision.retry_after_seconds},
        )
        return decision

    def fail_open(
        self,
        context: RequestContext,
        route: RouteDecision,
        *,
        started: float | None = None,
        error: BaseException | None = None,
        record: bool = True,
    ) -> GateDecision:
        """Admit a request the gate could not decide on.

        Reports the generous fail-open rule and records the occurrence in the
        request log under the ``"error"`` identifier, best effort. No violation
        is ever written on this path.

        Args:
            context: Inbound request view.
            route: Route decision of the request.
            started: ``time.perf_counter()`` at the start of the evaluation.
            error: The failure that prevented a decision, if any.
            record: Append the request log entry. Disabled on timeouts, where
                the abandoned evaluation writes the fail-open entry once it
                completes.

        Returns:
            ADMIT decision flagged ``fail_open``.
        """
        rule = self._quotas.fail_open_rule
        service_name = route.service_name or self._routes.fallback_service
        now = self._now()

        logger.warning(
            "gate.fail_open",
            extra={
                "service_name": service_name,
                "path": context.path,
                "error_type": type(error).__name__ if error else None,
            },
        )

        if record:
            self._best_effort(
                "append_request",
                self._store.append_request,
                self._request_entry(
                    context,
                    identity=Identity(
                        identifier=FAIL_OPEN_IDENTIFIER,
                        identifier_type=IdentifierType.IP,
                    ),
                    service_name=service_name,
                    status_code=STATUS_FAIL_OPEN,
                    started=started if started is not None else time.perf_counter(),
                    created_at=now,
                ),
            )

        return GateDecision(
            outcome=Outcome.ADMIT,
            rule=rule,
            service_name=service_name,
            remaining=rule.limit - 1,
            reset_at=now + rule.window,
            fail_open=True,
        )
