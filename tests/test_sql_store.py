"""
Tests for the SQLAlchemy-backed entity store, run against in-memory SQLite.
"""

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from clearquest_ide.db import (
    INTERVIEW_SESSION,
    SYSTEM_CONFIG,
    ConcurrencyConflictError,
    EntityNotFoundError,
    SqlEntityStore,
    StoreError,
)
from clearquest_ide.transcript import TranscriptLedger


async def make_store() -> SqlEntityStore:
    store = SqlEntityStore(create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool))
    await store.create_schema()
    return store


class TestSqlEntityStore:
    """Tests for SqlEntityStore."""

    @pytest.mark.asyncio
    async def test_create_and_get(self) -> None:
        """Test that created documents read back with id and version."""
        store = await make_store()
        try:
            created = await store.create(INTERVIEW_SESSION, {"id": "s1", "incidents": []})
            fetched = await store.get(INTERVIEW_SESSION, "s1")
        finally:
            await store.dispose()

        assert created == {"id": "s1", "incidents": [], "version": 1}
        assert fetched == created

    @pytest.mark.asyncio
    async def test_generated_id(self) -> None:
        """Test that a missing id is generated."""
        store = await make_store()
        try:
            created = await store.create(SYSTEM_CONFIG, {"config_key": "global_config"})
            records = await store.list(SYSTEM_CONFIG)
        finally:
            await store.dispose()

        assert created["id"]
        assert [r["id"] for r in records] == [created["id"]]

    @pytest.mark.asyncio
    async def test_duplicate_id_fails(self) -> None:
        """Test that inserting an existing id is a store error."""
        store = await make_store()
        try:
            await store.create(INTERVIEW_SESSION, {"id": "s1"})
            with pytest.raises(StoreError):
                await store.create(INTERVIEW_SESSION, {"id": "s1"})
        finally:
            await store.dispose()

    @pytest.mark.asyncio
    async def test_update_merges_and_bumps_version(self) -> None:
        """Test that updates merge top-level fields and increment the version."""
        store = await make_store()
        try:
            await store.create(INTERVIEW_SESSION, {"id": "s1", "status": "active", "incidents": []})
            updated = await store.update(INTERVIEW_SESSION, "s1", {"incidents": [{"incident_id": "i1"}]})
            fetched = await store.get(INTERVIEW_SESSION, "s1")
        finally:
            await store.dispose()

        assert updated["version"] == 2
        assert fetched["status"] == "active"
        assert fetched["incidents"] == [{"incident_id": "i1"}]

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self) -> None:
        """Test that a compare-and-set against an old version is rejected."""
        store = await make_store()
        try:
            await store.create(INTERVIEW_SESSION, {"id": "s1", "n": 0})
            await store.update(INTERVIEW_SESSION, "s1", {"n": 1}, expected_version=1)
            with pytest.raises(ConcurrencyConflictError) as exc_info:
                await store.update(INTERVIEW_SESSION, "s1", {"n": 2}, expected_version=1)
            fetched = await store.get(INTERVIEW_SESSION, "s1")
        finally:
            await store.dispose()

        assert exc_info.value.actual_version == 2
        assert fetched["n"] == 1

    @pytest.mark.asyncio
    async def test_filter_and_delete(self) -> None:
        """Test filtering by top-level fields and deleting."""
        store = await make_store()
        try:
            await store.create(SYSTEM_CONFIG, {"id": "a", "config_key": "global_config"})
            await store.create(SYSTEM_CONFIG, {"id": "b", "config_key": "other"})
            matches = await store.filter(SYSTEM_CONFIG, config_key="global_config")
            await store.delete(SYSTEM_CONFIG, "a")
            remaining = await store.list(SYSTEM_CONFIG)
            with pytest.raises(EntityNotFoundError):
                await store.get(SYSTEM_CONFIG, "a")
        finally:
            await store.dispose()

        assert [r["id"] for r in matches] == ["a"]
        assert [r["id"] for r in remaining] == ["b"]

    @pytest.mark.asyncio
    async def test_missing_entities(self) -> None:
        """Test not-found errors for update and delete."""
        store = await make_store()
        try:
            with pytest.raises(EntityNotFoundError):
                await store.update(INTERVIEW_SESSION, "nope", {"x": 1})
            with pytest.raises(EntityNotFoundError):
                await store.delete(INTERVIEW_SESSION, "nope")
        finally:
            await store.dispose()

    @pytest.mark.asyncio
    async def test_transcript_ledger_on_sql(self) -> None:
        """Test that the ledger's versioned appends work against the SQL store."""
        store = await make_store()
        try:
            await store.create(INTERVIEW_SESSION, {"id": "s1", "transcript_snapshot": []})
            ledger = TranscriptLedger(store)
            await ledger.append_welcome_message("s1")
            await ledger.append_user_message("s1", "Yes")
            transcript = await ledger.read("s1")
            session = await store.get(INTERVIEW_SESSION, "s1")
        finally:
            await store.dispose()

        assert [e.index for e in transcript] == [1, 2, 3]
        assert session["version"] == 4
