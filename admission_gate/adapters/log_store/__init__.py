"""Request and violation log stores.

Admission is derived purely from counting the persisted request log, so the
store is the only stateful collaborator of the gate. This package provides an
abstract interface, a SQLAlchemy implementation for durable storage and an
in-memory implementation for tests and local runs.
"""
