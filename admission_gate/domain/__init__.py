from __future__ import annotations

from .models import (
    GateDecision,
    IdentifierType,
    Identity,
    Outcome,
    QuotaRule,
    RequestContext,
    RouteDecision,
    RouteKind,
    TrustTier,
    ViolationType,
)

__all__ = [
    "GateDecision",
    "IdentifierType",
    "Identity",
    "Outcome",
    "QuotaRule",
    "RequestContext",
    "RouteDecision",
    "RouteKind",
    "TrustTier",
    "ViolationType",
]
