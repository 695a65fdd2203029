"""Roster lookup interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime


class AbstractRosterLookup(ABC):
    """Point lookups used to classify messaging-channel senders.

    Every method answers presence/absence for a phone number and may raise on
    backend failure; callers decide how to degrade.
    """

    @abstractmethod
    def is_allow_listed(self, phone_number: str) -> bool:
        """Whether the number has an active allow-list entry."""
        raise NotImplementedError

    @abstractmethod
    def is_known_client(self, phone_number: str) -> bool:
        """Whether the number belongs to a client record."""
        raise NotImplementedError

    @abstractmethod
    def has_booking_since(self, phone_number: str, since: datetime) -> bool:
        """Whether a booking was made by this number at or after ``since``."""
        raise NotImplementedError

    @abstractmethod
    def has_conversation_since(self, phone_number: str, since: datetime) -> bool:
        """Whether a conversation with this number started at or after ``since``."""
        raise NotImplementedError
