"""SQL roster lookups.

The roster tables belong to the scheduling application; they are declared
here only as far as the lookups need them and are never written by the gate.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, select
from sqlalchemy.engine import Engine

from admission_gate.adapters.db import UTCDateTime
from admission_gate.adapters.rosters.base import AbstractRosterLookup

roster_metadata = MetaData()

allow_list_table = Table(
    "whatsapp_whitelist",
    roster_metadata,
    Column("id", Integer, primary_key=True),
    Column("phone_number", String(64), nullable=False, index=True),
    Column("contact_type", String(32)),
    Column("is_active", Boolean, nullable=False, default=True),
)

clients_table = Table(
    "clients",
    roster_metadata,
    Column("id", Integer, primary_key=True),
    Column("phone_number", String(64), index=True),
)

bookings_table = Table(
    "bookings",
    roster_metadata,
    Column("id", Integer, primary_key=True),
    Column("client_phone", String(64), index=True),
    Column("created_at", UTCDateTime(), nullable=False),
)

conversations_table = Table(
    "whatsapp_conversations",
    roster_metadata,
    Column("id", Integer, primary_key=True),
    Column("phone_number", String(64), index=True),
    Column("created_at", UTCDateTime(), nullable=False),
)


class SQLAlchemyRosterLookup(AbstractRosterLookup):
    """Roster lookups issuing one ``SELECT ... LIMIT 1`` per question.

    Driver errors propagate; the trust classifier turns them into the most
    restrictive tier.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _exists(self, stmt) -> bool:
        with self._engine.connect() as conn:
            return conn.execute(stmt.limit(1)).first() is not None

    def is_allow_listed(self, phone_number: str) -> bool:
        return self._exists(
            select(allow_list_table.c.id).where(
                allow_list_table.c.phone_number == phone_number,
                allow_list_table.c.is_active.is_(True),
            )
        )

    def is_known_client(self, phone_number: str) -> bool:
        return self._exists(
            select(clients_table.c.id).where(clients_table.c.phone_number == phone_number)
        )

    def has_booking_since(self, phone_number: str, since: datetime) -> bool:
        return self._exists(
            select(bookings_table.c.id).where(
                bookings_table.c.client_phone == phone_number,
                bookings_table.c.created_at >= since,
            )
        )

    def has_conversation_since(self, phone_number: str, since: datetime) -> bool:
        return self._exists(
            select(conversations_table.c.id).where(
                conversations_table.c.phone_number == phone_number,
                conversations_table.c.created_at >= since,
            )
        )
