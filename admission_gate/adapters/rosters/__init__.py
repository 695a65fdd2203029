"""Read-only lookups against the rosters owned by the surrounding application.

The trust classifier only needs presence/absence answers (allow-list, known
clients, recent bookings, recent conversations); these adapters provide them
from a SQL database or from memory.
"""
