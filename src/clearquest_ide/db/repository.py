"""
Repository pattern for database operations.

Provides a SQLAlchemy-backed implementation of the entity store. Each store
call runs in its own transaction.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from clearquest_ide.db.models import Base, EntityRecordModel, _now_utc
from clearquest_ide.db.store import (
    ConcurrencyConflictError,
    EntityNotFoundError,
    EntityStore,
    Record,
    StoreError,
    matches_criteria,
)

logger = logging.getLogger(__name__)


class EntityRecordRepository:
    """Repository for entity document rows."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy async session.
        """
        self._session = session

    async def get_by_id(self, entity_type: str, entity_id: str) -> EntityRecordModel | None:
        """
        Get a row by its composite key.

        Args:
            entity_type: Entity type name.
            entity_id: Entity id.

        Returns:
            The row if found, None otherwise.
        """
        return await self._session.get(EntityRecordModel, (entity_type, entity_id))

    async def get_all(self, entity_type: str) -> list[EntityRecordModel]:
        """Get every row of an entity type, oldest first."""
        stmt = (
            select(EntityRecordModel)
            .where(EntityRecordModel.entity_type == entity_type)
            .order_by(EntityRecordModel.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create(self, row: EntityRecordModel) -> EntityRecordModel:
        """
        Create a new row.

        Args:
            row: The row to create.

        Returns:
            The created row.
        """
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def compare_and_set(
        self,
        entity_type: str,
        entity_id: str,
        data: dict[str, Any],
        current_version: int,
    ) -> bool:
        """
        Write new data only if the stored version is still `current_version`.

        Returns:
            True if the row was updated.
        """
        stmt = (
            update(EntityRecordModel)
            .where(
                EntityRecordModel.entity_type == entity_type,
                EntityRecordModel.id == entity_id,
                EntityRecordModel.version == current_version,
            )
            .values(data=data, version=current_version + 1, updated_at=_now_utc())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def delete(self, row: EntityRecordModel) -> None:
        """
        Delete a row.

        Args:
            row: The row to delete.
        """
        await self._session.delete(row)
        await self._session.flush()


class SqlEntityStore(EntityStore):
    """Entity store persisted through SQLAlchemy async sessions."""

    def __init__(self, engine: AsyncEngine) -> None:
        """
        Initialize the store.

        Args:
            engine: Async engine bound to the database.
        """
        self._engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine, expire_on_commit=False
        )

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs: Any) -> SqlEntityStore:
        """Build a store from a connection string."""
        return cls(create_async_engine(database_url, **engine_kwargs))

    async def create_schema(self) -> None:
        """Create the entity table if it does not exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self._engine.dispose()

    async def list(self, entity_type: str) -> list[Record]:
        try:
            async with self._session_factory() as session:
                rows = await EntityRecordRepository(session).get_all(entity_type)
                return [row.to_record() for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list {entity_type}: {e}") from e

    async def filter(self, entity_type: str, **criteria: Any) -> list[Record]:
        # JSON querying differs between dialects, so criteria are applied in Python.
        records = await self.list(entity_type)
        return [r for r in records if matches_criteria(r, criteria)]

    async def get(self, entity_type: str, entity_id: str) -> Record:
        try:
            async with self._session_factory() as session:
                row = await EntityRecordRepository(session).get_by_id(entity_type, entity_id)
                if row is None:
                    raise EntityNotFoundError(entity_type, entity_id)
                return row.to_record()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to get {entity_type} '{entity_id}': {e}") from e

    async def create(self, entity_type: str, fields: Record) -> Record:
        data = dict(fields)
        entity_id = str(data.pop("id", None) or uuid4().hex)
        data.pop("version", None)

        try:
            async with self._session_factory() as session, session.begin():
                row = await EntityRecordRepository(session).create(
                    EntityRecordModel(entity_type=entity_type, id=entity_id, data=data, version=1)
                )
                record = row.to_record()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to create {entity_type} '{entity_id}': {e}") from e

        logger.debug(f"Created {entity_type} {entity_id}")
        return record

    async def update(
        self,
        entity_type: str,
        entity_id: str,
        fields: Record,
        expected_version: int | None = None,
    ) -> Record:
        changes = dict(fields)
        changes.pop("id", None)
        changes.pop("version", None)

        try:
            async with self._session_factory() as session, session.begin():
                repo = EntityRecordRepository(session)
                row = await repo.get_by_id(entity_type, entity_id)
                if row is None:
                    raise EntityNotFoundError(entity_type, entity_id)

                current_version = row.version
                if expected_version is not None and current_version != expected_version:
                    raise ConcurrencyConflictError(
                        entity_type, entity_id, expected_version, current_version
                    )

                data = {**(row.data or {}), **changes}
                if not await repo.compare_and_set(entity_type, entity_id, data, current_version):
                    raise ConcurrencyConflictError(
                        entity_type, entity_id, current_version, None
                    )
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update {entity_type} '{entity_id}': {e}") from e

        record = dict(data)
        record["id"] = entity_id
        record["version"] = current_version + 1
        return record

    async def delete(self, entity_type: str, entity_id: str) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                repo = EntityRecordRepository(session)
                row = await repo.get_by_id(entity_type, entity_id)
                if row is None:
                    raise EntityNotFoundError(entity_type, entity_id)
                await repo.delete(row)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete {entity_type} '{entity_id}': {e}") from e
