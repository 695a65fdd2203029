"""In-memory roster lookup for tests and local runs."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime

from admission_gate.adapters.rosters.base import AbstractRosterLookup


class InMemoryRosterLookup(AbstractRosterLookup):
    """Roster lookup backed by sets and timestamp lists.

    Example:
        >>> rosters = InMemoryRosterLookup(allow_list={"+3900000001"})
        >>> rosters.is_allow_listed("+3900000001")
        True
    """

    def __init__(
        self,
        *,
        allow_list: Iterable[str] = (),
        clients: Iterable[str] = (),
    ) -> None:
        self._lock = threading.RLock()
        self._allow_list = set(allow_list)
        self._clients = set(clients)
        self._bookings: dict[str, list[datetime]] = {}
        self._conversations: dict[str, list[datetime]] = {}

    def add_booking(self, phone_number: str, created_at: datetime) -> None:
        with self._lock:
            self._bookings.setdefault(phone_number, []).append(created_at)

    def add_conversation(self, phone_number: str, created_at: datetime) -> None:
        with self._lock:
            self._conversations.setdefault(phone_number, []).append(created_at)

    def is_allow_listed(self, phone_number: str) -> bool:
        with self._lock:
            return phone_number in self._allow_list

    def is_known_client(self, phone_number: str) -> bool:
        with self._lock:
            return phone_number in self._clients

    def has_booking_since(self, phone_number: str, since: datetime) -> bool:
        with self._lock:
            return any(ts >= since for ts in self._bookings.get(phone_number, ()))

    def has_conversation_since(self, phone_number: str, since: datetime) -> bool:
        with self._lock:
            return any(ts >= since for ts in self._conversations.get(phone_number, ()))
