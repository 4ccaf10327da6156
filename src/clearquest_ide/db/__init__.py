"""
Database module for persistence.

Provides the async entity store interface, an in-memory implementation and a
SQLAlchemy-backed implementation with versioned JSON documents.
"""

from clearquest_ide.db.models import Base, EntityRecordModel
from clearquest_ide.db.repository import EntityRecordRepository, SqlEntityStore
from clearquest_ide.db.store import (
    DECISION_TRACE,
    FACT_MODEL,
    FOLLOW_UP_PACK,
    INTERVIEW_SESSION,
    SYSTEM_CONFIG,
    ConcurrencyConflictError,
    EntityNotFoundError,
    EntityStore,
    InMemoryEntityStore,
    Record,
    StoreError,
)

__all__ = [
    "Base",
    "EntityRecordModel",
    "EntityRecordRepository",
    "SqlEntityStore",
    "EntityStore",
    "InMemoryEntityStore",
    "Record",
    "StoreError",
    "EntityNotFoundError",
    "ConcurrencyConflictError",
    "FACT_MODEL",
    "INTERVIEW_SESSION",
    "FOLLOW_UP_PACK",
    "SYSTEM_CONFIG",
    "DECISION_TRACE",
]
