"""Admission gate HTTP middleware.

This module wires the gate into the HTTP layer.

Design goals:
- Every inbound path is gated except the configured skip list.
- The gate itself is synchronous (store round-trips); it runs in the default
  thread pool with an upper bound on how long a decision may take.
- A decision that cannot be reached in time fails open, exactly like a store
  error inside the gate.

Usage:
    app.state.gate = gate
    app.middleware("http")(admission_gate_middleware)
"""

from __future__ import annotations

import asyncio
import contextvars
import functools
import json
import logging
import threading
from typing import Any, Mapping
from urllib.parse import parse_qsl

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from admission_gate.core.config import settings
from admission_gate.domain.models import GateDecision, RequestContext, RouteDecision
from admission_gate.schemas.gate import RateLimitErrorBody
from admission_gate.services.gate import Gate

logger = logging.getLogger(__name__)


async def read_payload(request: Request) -> Mapping[str, Any] | None:
    """Parse a JSON or form-encoded request body into a mapping.

    Messaging webhooks arrive either as JSON or as
    ``application/x-www-form-urlencoded`` (Twilio). Anything unreadable
    yields ``None`` so identification falls back to the next tier.
    """
    try:
        body = await request.body()
    except Exception as exc:  # noqa: BLE001
        logger.debug("gate.body_unreadable", extra={"error_type": type(exc).__name__})
        return None
    if not body:
        return None

    content_type = request.headers.get("content-type", "").lower()
    try:
        if "application/x-www-form-urlencoded" in content_type:
            return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=False))
        parsed = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        logger.debug("gate.payload_unparseable", extra={"content_type": content_type})
        return None
    return parsed if isinstance(parsed, Mapping) else None


async def evaluate_with_timeout(
    gate: Gate,
    context: RequestContext,
    route: RouteDecision,
    timeout_seconds: float,
) -> GateDecision:
    """Run ``gate.evaluate`` off the event loop, failing open on timeout.

    The worker thread cannot be cancelled; on timeout it is flagged as
    abandoned so it records a fail-open entry rather than its own decision.
    """
    loop = asyncio.get_running_loop()
    abandoned = threading.Event()
    # Carry the request id into the worker thread for log correlation.
    call = functools.partial(
        contextvars.copy_context().run,
        gate.evaluate,
        context,
        route,
        abandoned=abandoned,
    )
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(None, call),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        abandoned.set()
        logger.warning(
            "gate.timeout",
            extra={"path": context.path, "timeout_s": timeout_seconds},
        )
        return gate.fail_open(context, route, record=False)


def rate_limit_response(decision: GateDecision) -> JSONResponse:
    """Build the 429 rejection for a denied request."""
    body = RateLimitErrorBody(retry_after=decision.retry_after_seconds)
    return JSONResponse(
        status_code=429,
        content=body.model_dump(by_alias=True),
        headers=decision.headers(),
    )


async def admission_gate_middleware(request: Request, call_next) -> Response:
    """HTTP middleware enforcing the admission gate.

    Looks up the gate on ``request.app.state.gate``; when absent or disabled
    via ``APP_GATE_ENABLED=false`` requests pass through untouched.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: 429 JSON rejection on DENY, otherwise the downstream
            response with ``X-RateLimit-*`` headers attached.
    """
    gate: Gate | None = getattr(request.app.state, "gate", None)
    if gate is None or not settings.app.gate_enabled:
        return await call_next(request)

    route = gate.classify(request.url.path)
    if route.skipped:
        return await call_next(request)

    payload = await read_payload(request) if gate.needs_payload(route) else None
    context = RequestContext(
        path=request.url.path,
        method=request.method,
        headers=dict(request.headers),
        payload=payload,
    )

    decision = await evaluate_with_timeout(
        gate, context, route, settings.app.gate_timeout_seconds
    )
    if not decision.allowed:
        return rate_limit_response(decision)

    response: Response = await call_next(request)
    for name, value in decision.headers().items():
        response.headers[name] = value
    return response
