"""
Database module for persistence.

Provides the HiringStore port, its SQLAlchemy implementation and an
in-memory implementation.
"""

from hiring_engine.db.memory_store import InMemoryHiringStore
from hiring_engine.db.models import ApplicationModel, Base, InterviewModel, ScheduleLockModel
from hiring_engine.db.repository import HiringStore, SlotGuard, SqlAlchemyHiringStore

__all__ = [
    "Base",
    "ApplicationModel",
    "InterviewModel",
    "ScheduleLockModel",
    "HiringStore",
    "SlotGuard",
    "SqlAlchemyHiringStore",
    "InMemoryHiringStore",
]
