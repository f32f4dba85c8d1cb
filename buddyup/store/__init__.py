"""Persistence for the accountability engine (in-memory and SQL)."""

from buddyup.store.base import PreconditionFailed, Store, UniqueViolation
from buddyup.store.memory import MemoryStore

__all__ = ["Store", "MemoryStore", "UniqueViolation", "PreconditionFailed", "build_store"]


def build_store(database_url=None) -> Store:
    """SQL store when a database URL is configured, otherwise in-memory."""
    if database_url:
        from buddyup.core.database import build_engine, create_all_tables
        from buddyup.store.sql import SqlStore

        engine = build_engine(database_url)
        create_all_tables(engine)
        return SqlStore(engine)
    return MemoryStore()
