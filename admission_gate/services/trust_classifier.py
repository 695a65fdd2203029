"""Trust classification of messaging-channel senders.

Tiers are resolved in priority order, first match wins:

1. active allow-list entry        -> trusted
2. known client record            -> existing
3. booking in the last 30 days    -> existing
4. conversation in the last 7 days -> new
5. none of the above              -> unknown

Lookup failures classify the sender as ``unknown``, the most restrictive
tier, instead of failing the request.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from admission_gate.adapters.rosters.base import AbstractRosterLookup
from admission_gate.core.logging import hash_identifier
from admission_gate.domain.models import TrustTier

logger = logging.getLogger(__name__)

BOOKING_HORIZON = timedelta(days=30)
CONVERSATION_HORIZON = timedelta(days=7)


class TrustClassifier:
    """Read-only classifier over the application's rosters."""

    def __init__(
        self,
        rosters: AbstractRosterLookup,
        *,
        clock: Callable[[], float] = time.time,
        booking_horizon: timedelta = BOOKING_HORIZON,
        conversation_horizon: timedelta = CONVERSATION_HORIZON,
    ) -> None:
        self._rosters = rosters
        self._clock = clock
        self._booking_horizon = booking_horizon
        self._conversation_horizon = conversation_horizon

    def _resolve(self, phone_number: str) -> TrustTier:
        if self._rosters.is_allow_listed(phone_number):
            return TrustTier.TRUSTED
        if self._rosters.is_known_client(phone_number):
            return TrustTier.EXISTING

        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        if self._rosters.has_booking_since(phone_number, now - self._booking_horizon):
            return TrustTier.EXISTING
        if self._rosters.has_conversation_since(phone_number, now - self._conversation_horizon):
            return TrustTier.NEW
        return TrustTier.UNKNOWN

    def classify(self, phone_number: str) -> TrustTier:
        """Classify a phone number into a trust tier.

        Args:
            phone_number: Normalized sender number.

        Returns:
            TrustTier; ``UNKNOWN`` when any lookup fails.
        """
        try:
            tier = self._resolve(phone_number)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "trust.lookup_failed",
                extra={
                    "phone_hash": hash_identifier(phone_number),
                    "error_type": type(exc).__name__,
                },
            )
            return TrustTier.UNKNOWN

        logger.debug(
            "trust.classified",
            extra={"phone_hash": hash_identifier(phone_number), "tier": tier.value},
        )
        return tier
