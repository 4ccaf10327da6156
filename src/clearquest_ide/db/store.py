"""
Entity store abstraction.

Every persisted object (fact models, interview sessions, follow-up packs,
system config, decision traces) is a JSON document addressed by entity type
and id. Each document carries a `version` counter that is bumped on every
update and can be used for compare-and-set writes.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any
from uuid import uuid4

logger = logging.getLogger(__name__)

# Entity type names
FACT_MODEL = "FactModel"
INTERVIEW_SESSION = "InterviewSession"
FOLLOW_UP_PACK = "FollowUpPack"
SYSTEM_CONFIG = "SystemConfig"
DECISION_TRACE = "DecisionTrace"

Record = dict[str, Any]


class StoreError(Exception):
    """Base exception for entity store failures."""


class EntityNotFoundError(StoreError):
    """Raised when an entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(f"{entity_type} '{entity_id}' not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ConcurrencyConflictError(StoreError):
    """Raised when a compare-and-set update sees a different version."""

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int,
        actual_version: int | None,
    ) -> None:
        super().__init__(
            f"{entity_type} '{entity_id}' version conflict: "
            f"expected {expected_version}, found {actual_version}"
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class EntityStore(ABC):
    """Abstract async entity store."""

    @abstractmethod
    async def list(self, entity_type: str) -> list[Record]:
        """
        List every entity of a type.

        Args:
            entity_type: Entity type name.

        Returns:
            All records of that type.
        """
        ...

    @abstractmethod
    async def filter(self, entity_type: str, **criteria: Any) -> list[Record]:
        """
        List entities whose top-level fields equal the given criteria.

        Args:
            entity_type: Entity type name.
            **criteria: Field/value pairs that must all match.

        Returns:
            Matching records.
        """
        ...

    @abstractmethod
    async def get(self, entity_type: str, entity_id: str) -> Record:
        """
        Fetch a single entity.

        Raises:
            EntityNotFoundError: If the entity does not exist.
        """
        ...

    @abstractmethod
    async def create(self, entity_type: str, fields: Record) -> Record:
        """
        Create an entity. An `id` in `fields` is honoured, otherwise one is generated.

        Returns:
            The created record with `id` and `version` set.
        """
        ...

    @abstractmethod
    async def update(
        self,
        entity_type: str,
        entity_id: str,
        fields: Record,
        expected_version: int | None = None,
    ) -> Record:
        """
        Merge `fields` into an entity and bump its version.

        Args:
            entity_type: Entity type name.
            entity_id: Entity id.
            fields: Top-level fields to overwrite.
            expected_version: When given, the update only applies if the
                stored version still equals it.

        Returns:
            The updated record.

        Raises:
            EntityNotFoundError: If the entity does not exist.
            ConcurrencyConflictError: If `expected_version` is stale.
        """
        ...

    @abstractmethod
    async def delete(self, entity_type: str, entity_id: str) -> None:
        """
        Delete an entity.

        Raises:
            EntityNotFoundError: If the entity does not exist.
        """
        ...


def matches_criteria(record: Record, criteria: dict[str, Any]) -> bool:
    """Check whether a record's top-level fields equal every criterion."""
    return all(record.get(key) == value for key, value in criteria.items())


class InMemoryEntityStore(EntityStore):
    """
    Process-local entity store.

    Used by the readiness self-test and by tests. Records are deep-copied on
    the way in and out so callers can never mutate stored state in place.
    """

    def __init__(self, seed: dict[str, list[Record]] | None = None) -> None:
        """
        Initialize the store.

        Args:
            seed: Optional records to preload, keyed by entity type.
        """
        self._entities: dict[str, dict[str, Record]] = {}
        for entity_type, records in (seed or {}).items():
            for record in records:
                self._insert(entity_type, record)

    def _insert(self, entity_type: str, fields: Record) -> Record:
        record = copy.deepcopy(fields)
        record["id"] = str(record.get("id") or uuid4().hex)
        record["version"] = 1
        bucket = self._entities.setdefault(entity_type, {})
        if record["id"] in bucket:
            raise StoreError(f"{entity_type} '{record['id']}' already exists")
        bucket[record["id"]] = record
        return copy.deepcopy(record)

    def _require(self, entity_type: str, entity_id: str) -> Record:
        record = self._entities.get(entity_type, {}).get(entity_id)
        if record is None:
            raise EntityNotFoundError(entity_type, entity_id)
        return record

    async def list(self, entity_type: str) -> list[Record]:
        return [copy.deepcopy(r) for r in self._entities.get(entity_type, {}).values()]

    async def filter(self, entity_type: str, **criteria: Any) -> list[Record]:
        return [
            copy.deepcopy(r)
            for r in self._entities.get(entity_type, {}).values()
            if matches_criteria(r, criteria)
        ]

    async def get(self, entity_type: str, entity_id: str) -> Record:
        return copy.deepcopy(self._require(entity_type, entity_id))

    async def create(self, entity_type: str, fields: Record) -> Record:
        record = self._insert(entity_type, fields)
        logger.debug(f"Created {entity_type} {record['id']}")
        return record

    async def update(
        self,
        entity_type: str,
        entity_id: str,
        fields: Record,
        expected_version: int | None = None,
    ) -> Record:
        record = self._require(entity_type, entity_id)
        if expected_version is not None and record["version"] != expected_version:
            raise ConcurrencyConflictError(
                entity_type, entity_id, expected_version, record["version"]
            )

        changes = copy.deepcopy(fields)
        changes.pop("id", None)
        changes.pop("version", None)
        record.update(changes)
        record["version"] += 1
        return copy.deepcopy(record)

    async def delete(self, entity_type: str, entity_id: str) -> None:
        self._require(entity_type, entity_id)
        del self._entities[entity_type][entity_id]
