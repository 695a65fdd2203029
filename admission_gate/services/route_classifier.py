"""Route classification for the admission gate.

Maps a request path to one of three outcomes:
- skip: the gate is bypassed entirely (health checks, auth callbacks)
- permissive: gated against the relaxed quota variant of the service
- service: gated against the service's regular quota

All matching is by path prefix. The route table is evaluated longest prefix
first, so ``/api/notifications/send-reminders`` wins over
``/api/notifications/send`` regardless of declaration order.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from admission_gate.core.config import QuotaSettings
from admission_gate.domain.models import RouteDecision, RouteKind


class RouteClassifier:
    """Pure function of configuration and path."""

    def __init__(
        self,
        *,
        route_services: Mapping[str, str],
        fallback_service: str,
        skip_routes: Iterable[str] = (),
        permissive_routes: Iterable[str] = (),
    ) -> None:
        self._skip_routes = tuple(skip_routes)
        self._permissive_routes = tuple(permissive_routes)
        self._fallback_service = fallback_service
        self._routes: tuple[tuple[str, str], ...] = tuple(
            sorted(route_services.items(), key=lambda item: len(item[0]), reverse=True)
        )

    @classmethod
    def from_settings(cls, quota: QuotaSettings) -> "RouteClassifier":
        return cls(
            route_services=quota.route_services,
            fallback_service=quota.fallback_service,
            skip_routes=quota.skip_routes,
            permissive_routes=quota.permissive_routes,
        )

    @property
    def fallback_service(self) -> str:
        return self._fallback_service

    def service_for(self, path: str) -> str:
        """Resolve the logical service by longest-prefix match."""
        for prefix, service in self._routes:
            if path.startswith(prefix):
                return service
        return self._fallback_service

    def should_skip(self, path: str) -> bool:
        return any(path.startswith(route) for route in self._skip_routes)

    def is_permissive(self, path: str) -> bool:
        return any(path.startswith(route) for route in self._permissive_routes)

    def classify(self, path: str) -> RouteDecision:
        """Classify a request path.

        Args:
            path: URL path of the request (no query string).

        Returns:
            RouteDecision: ``skip`` without a service, otherwise the service
            name flagged as permissive or regular.
        """
        if self.should_skip(path):
            return RouteDecision(kind=RouteKind.SKIP)

        service = self.service_for(path)
        if self.is_permissive(path):
            return RouteDecision(kind=RouteKind.PERMISSIVE, service_name=service)
        return RouteDecision(kind=RouteKind.SERVICE, service_name=service)
