"""Unit tests for the static quota tables."""

import pytest

from admission_gate.core.errors import ConfigurationAppError
from admission_gate.domain.models import QuotaRule, TrustTier
from admission_gate.services.quota_registry import QuotaRegistry

TIERS = {
    TrustTier.TRUSTED: QuotaRule(50, 1_800_000),
    TrustTier.EXISTING: QuotaRule(30, 1_800_000),
    TrustTier.NEW: QuotaRule(15, 1_800_000),
    TrustTier.UNKNOWN: QuotaRule(5, 1_800_000),
}


def _registry(**overrides) -> QuotaRegistry:
    kwargs = dict(
        services={"bookings": QuotaRule(10, 3_600_000), "whatsapp_ai": QuotaRule(30, 1_800_000)},
        trust_tiers=TIERS,
        default_rule=QuotaRule(50, 3_600_000),
        fail_open_rule=QuotaRule(1000, 3_600_000),
    )
    kwargs.update(overrides)
    return QuotaRegistry(**kwargs)


def test_defaults_from_settings(registry: QuotaRegistry) -> None:
    assert registry.lookup("bookings") == QuotaRule(10, 3_600_000)
    assert registry.lookup("sms") == QuotaRule(5, 3_600_000)
    assert registry.lookup("dashboard") == QuotaRule(100, 3_600_000)
    assert registry.fail_open_rule == QuotaRule(1000, 3_600_000)


def test_unknown_service_gets_default_rule() -> None:
    registry = _registry()

    assert registry.lookup("nonexistent") == registry.default_rule


@pytest.mark.parametrize(
    "tier,limit",
    [(TrustTier.TRUSTED, 50), (TrustTier.EXISTING, 30), (TrustTier.NEW, 15), (TrustTier.UNKNOWN, 5)],
)
def test_messaging_lookup_uses_trust_tier(tier: TrustTier, limit: int) -> None:
    rule = _registry().lookup("whatsapp_ai", tier)

    assert rule == QuotaRule(limit, 1_800_000)


def test_messaging_without_tier_uses_service_rule() -> None:
    assert _registry().lookup("whatsapp_ai") == QuotaRule(30, 1_800_000)


def test_tier_is_ignored_for_non_messaging_services() -> None:
    assert _registry().lookup("bookings", TrustTier.UNKNOWN) == QuotaRule(10, 3_600_000)


def test_permissive_defaults_to_multiplied_limit() -> None:
    registry = _registry(permissive_multiplier=3)

    base = registry.lookup("bookings")
    relaxed = registry.lookup("bookings", permissive=True)

    assert relaxed == QuotaRule(30, 3_600_000)
    assert relaxed.is_looser_than(base)


def test_explicit_permissive_rule_wins() -> None:
    registry = _registry(permissive_services={"bookings": QuotaRule(100, 3_600_000)})

    assert registry.lookup("bookings", permissive=True) == QuotaRule(100, 3_600_000)


def test_permissive_rule_must_be_looser() -> None:
    with pytest.raises(ConfigurationAppError) as exc_info:
        _registry(permissive_services={"bookings": QuotaRule(10, 7_200_000)})

    assert exc_info.value.code == "quota_permissive_not_looser"


def test_missing_trust_tier_is_rejected() -> None:
    tiers = {k: v for k, v in TIERS.items() if k is not TrustTier.NEW}

    with pytest.raises(ConfigurationAppError) as exc_info:
        _registry(trust_tiers=tiers)

    assert "new" in exc_info.value.message


def test_multiplier_below_two_is_rejected() -> None:
    with pytest.raises(ConfigurationAppError):
        _registry(permissive_multiplier=1)


def test_max_window_covers_every_table() -> None:
    registry = _registry(permissive_services={"bookings": QuotaRule(300, 86_400_000)})

    assert registry.max_window_ms() == 86_400_000


def test_quota_rule_validates_bounds() -> None:
    with pytest.raises(ValueError):
        QuotaRule(0, 1000)
    with pytest.raises(ValueError):
        QuotaRule(1, 0)


def test_window_seconds_rounds_up() -> None:
    assert QuotaRule(1, 1500).window_seconds == 2
    assert QuotaRule(10, 3_600_000).window_seconds == 3600
