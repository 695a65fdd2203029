"""Identifier resolution for quota accounting.

Fallback chain, first success wins:

1. messaging service + phone number in the payload -> phone_number (+ trust tier)
2. valid ``Authorization: Bearer`` credential       -> user_id
3. first ``X-Forwarded-For`` address                -> ip
4. nothing usable                                   -> ip ``"unknown"``

Resolution never raises; a failing step falls through to the next one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from admission_gate.core.auth import SubjectResolver, extract_bearer_token
from admission_gate.domain.models import IdentifierType, Identity, RequestContext
from admission_gate.services.trust_classifier import TrustClassifier

logger = logging.getLogger(__name__)

UNKNOWN_IDENTIFIER = "unknown"

# Payload fields carrying the sender number (Twilio-style and plain JSON).
PHONE_FIELDS = ("From", "phone_number")
CHANNEL_PREFIX = "whatsapp:"


def extract_phone_number(payload: Mapping[str, Any] | None) -> str | None:
    """Pull the sender phone number out of a messaging webhook payload.

    Examples:
        >>> extract_phone_number({"From": "whatsapp:+393331112222"})
        '+393331112222'
        >>> extract_phone_number({"Body": "hi"}) is None
        True
    """
    if not payload:
        return None
    for field_name in PHONE_FIELDS:
        value = payload.get(field_name)
        if isinstance(value, str) and value.strip():
            number = value.strip()
            if number.lower().startswith(CHANNEL_PREFIX):
                number = number[len(CHANNEL_PREFIX):].strip()
            if number:
                return number
    return None


class IdentifierResolver:
    """Derive the accounting subject of a request."""

    def __init__(
        self,
        *,
        trust_classifier: TrustClassifier,
        subject_resolver: SubjectResolver | None = None,
        messaging_services: Iterable[str] = ("whatsapp_ai",),
    ) -> None:
        self._trust_classifier = trust_classifier
        self._subject_resolver = subject_resolver
        self._messaging_services = frozenset(messaging_services)

    def _from_messaging(self, context: RequestContext) -> Identity | None:
        try:
            phone_number = extract_phone_number(context.payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "identifier.payload_unreadable",
                extra={"path": context.path, "error_type": type(exc).__name__},
            )
            return None
        if phone_number is None:
            return None
        return Identity(
            identifier=phone_number,
            identifier_type=IdentifierType.PHONE_NUMBER,
            trust_tier=self._trust_classifier.classify(phone_number),
        )

    def _from_credential(self, context: RequestContext) -> Identity | None:
        if self._subject_resolver is None:
            return None
        token = extract_bearer_token(context.header("authorization"))
        if token is None:
            return None
        try:
            user_id = self._subject_resolver.resolve(token)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "identifier.subject_lookup_failed",
                extra={"error_type": type(exc).__name__},
            )
            return None
        if not user_id:
            return None
        return Identity(identifier=user_id, identifier_type=IdentifierType.USER_ID)

    @staticmethod
    def _from_network(context: RequestContext) -> Identity:
        return Identity(
            identifier=context.forwarded_for or UNKNOWN_IDENTIFIER,
            identifier_type=IdentifierType.IP,
        )

    def resolve(self, context: RequestContext, service_name: str) -> Identity:
        """Resolve the identity of a request.

        Args:
            context: Inbound request view.
            service_name: Service assigned by the route classifier.

        Returns:
            Identity; always a value, never raises.
        """
        if service_name in self._messaging_services:
            identity = self._from_messaging(context)
            if identity is not None:
                return identity

        identity = self._from_credential(context)
        if identity is not None:
            return identity

        return self._from_network(context)
