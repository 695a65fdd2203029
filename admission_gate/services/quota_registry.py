"""Static quota tables.

Built once from ``QuotaSettings`` at start-up; the tables are exposed through
read-only mappings and never change afterwards.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from admission_gate.core.config import QuotaRuleSettings, QuotaSettings
from admission_gate.core.errors import ConfigurationAppError
from admission_gate.domain.models import QuotaRule, TrustTier


def _to_rule(raw: QuotaRuleSettings) -> QuotaRule:
    return QuotaRule(limit=raw.limit, window_ms=raw.window_ms)


class QuotaRegistry:
    """Lookup of ``QuotaRule`` by service name or trust tier.

    Unknown keys never raise: an unknown service resolves to the default rule.
    Messaging traffic is looked up by trust tier; a messaging request that
    carried no phone number has no tier and gets the service's own rule.
    """

    def __init__(
        self,
        *,
        services: Mapping[str, QuotaRule],
        trust_tiers: Mapping[TrustTier, QuotaRule],
        default_rule: QuotaRule,
        fail_open_rule: QuotaRule,
        permissive_services: Mapping[str, QuotaRule] | None = None,
        permissive_multiplier: int = 3,
        messaging_services: Iterable[str] = ("whatsapp_ai",),
    ) -> None:
        missing = [tier.value for tier in TrustTier if tier not in trust_tiers]
        if missing:
            raise ConfigurationAppError(
                code="quota_missing_trust_tier",
                message=f"Quota table has no rule for trust tier(s): {', '.join(missing)}",
                details={"hint": "Set QUOTA_TRUST_TIERS with all four tiers"},
            )
        if permissive_multiplier < 2:
            raise ConfigurationAppError(
                code="quota_invalid_permissive_multiplier",
                message="permissive_multiplier must be >= 2",
            )

        self._services = MappingProxyType(dict(services))
        self._trust_tiers = MappingProxyType(dict(trust_tiers))
        self._permissive = MappingProxyType(dict(permissive_services or {}))
        self._permissive_multiplier = permissive_multiplier
        self._messaging_services = frozenset(messaging_services)
        self._default_rule = default_rule
        self._fail_open_rule = fail_open_rule

        for name, rule in self._permissive.items():
            base = self._services.get(name, default_rule)
            if not rule.is_looser_than(base):
                raise ConfigurationAppError(
                    code="quota_permissive_not_looser",
                    message=f"Permissive quota for '{name}' must be looser than its base quota",
                    details={"service_name": name},
                )

    @classmethod
    def from_settings(
        cls,
        quota: QuotaSettings,
        *,
        messaging_services: Iterable[str] = ("whatsapp_ai",),
    ) -> "QuotaRegistry":
        trust_tiers: dict[TrustTier, QuotaRule] = {}
        for key, raw in quota.trust_tiers.items():
            try:
                tier = TrustTier(key.lower())
            except ValueError as exc:
                raise ConfigurationAppError(
                    code="quota_unknown_trust_tier",
                    message=f"Unknown trust tier in quota table: '{key}'",
                ) from exc
            trust_tiers[tier] = _to_rule(raw)

        return cls(
            services={name: _to_rule(raw) for name, raw in quota.services.items()},
            trust_tiers=trust_tiers,
            default_rule=_to_rule(quota.default_rule),
            fail_open_rule=_to_rule(quota.fail_open_rule),
            permissive_services={
                name: _to_rule(raw) for name, raw in quota.permissive_services.items()
            },
            permissive_multiplier=quota.permissive_multiplier,
            messaging_services=messaging_services,
        )

    @property
    def default_rule(self) -> QuotaRule:
        return self._default_rule

    @property
    def fail_open_rule(self) -> QuotaRule:
        return self._fail_open_rule

    def is_messaging(self, service_name: str | None) -> bool:
        return service_name in self._messaging_services

    def max_window_ms(self) -> int:
        """Longest window across every table (retention must exceed it)."""
        rules = [
            *self._services.values(),
            *self._trust_tiers.values(),
            *self._permissive.values(),
            self._default_rule,
        ]
        return max(rule.window_ms for rule in rules)

    def lookup(
        self,
        service_name: str,
        trust_tier: TrustTier | None = None,
        *,
        permissive: bool = False,
    ) -> QuotaRule:
        """Return the rule governing a request.

        Args:
            service_name: Logical service from the route classifier.
            trust_tier: Sender tier for messaging-channel traffic.
            permissive: Whether the route uses the relaxed variant.

        Returns:
            QuotaRule for the request; never raises for unknown keys.
        """
        if self.is_messaging(service_name) and trust_tier is not None:
            base = self._trust_tiers[trust_tier]
        else:
            base = self._services.get(service_name, self._default_rule)

        if not permissive:
            return base

        explicit = self._permissive.get(service_name)
        if explicit is not None:
            return explicit
        return QuotaRule(limit=base.limit * self._permissive_multiplier, window_ms=base.window_ms)
