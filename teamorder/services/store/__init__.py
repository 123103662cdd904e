"""
Session Store Package

Usage:
    from teamorder.services.store import get_session_store

    store = get_session_store(db)
    session = await store.get_session(session_id)

The API and the Celery tasks always use ``SqlSessionStore``; the in-memory
store backs unit tests and local experiments.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from teamorder.services.store.base import BaseSessionStore, ParticipantRecord, SessionRecord
from teamorder.services.store.memory import MemorySessionStore
from teamorder.services.store.sql import SqlSessionStore


def get_session_store(db: AsyncSession) -> BaseSessionStore:
    """Build the store for one unit of work."""
    return SqlSessionStore(db)


__all__ = [
    "get_session_store",
    "BaseSessionStore",
    "SessionRecord",
    "ParticipantRecord",
    "SqlSessionStore",
    "MemorySessionStore",
]
