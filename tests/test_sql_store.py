"""
Tests for SqlTaskStore.

Tests cover:
- CRUD against an in-memory database
- Snapshot ordering and owner scoping
- Live subscriptions waking on committed writes
- Error translation
"""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from taskwise.database import TaskORM
from taskwise.models import Task, TaskInput, TaskPriority
from taskwise.services.remote_store import FatalStoreError, TaskQuery, TransientStoreError
from taskwise.services.sql_store import SqlTaskStore
from tests.helpers import NOW

QUERY = TaskQuery(owner_id="student-1")


def payload(title="Essay", **fields):
    return TaskInput(title=title, deadline=NOW, **fields)


async def only_task(store):
    (document,) = await store.fetch_snapshot(QUERY)
    return Task.model_validate(document)


class TestCrud:
    """Tests for the four mutation primitives."""

    @pytest.mark.asyncio
    async def test_create_returns_id_and_persists(self, sql_store):
        task_id = await sql_store.create(payload(priority=TaskPriority.HIGH, category="Math"))

        task = await only_task(sql_store)
        assert task.id == task_id
        assert task.title == "Essay"
        assert task.priority is TaskPriority.HIGH
        assert task.category == "Math"
        assert task.completed is False
        assert task.created_at is not None
        assert task.deadline == NOW

    @pytest.mark.asyncio
    async def test_missing_category_stored_as_empty_string(self, sql_store):
        await sql_store.create(payload())

        (document,) = await sql_store.fetch_snapshot(QUERY)

        assert document["category"] == ""
        assert Task.model_validate(document).category is None

    @pytest.mark.asyncio
    async def test_update_keeps_completion(self, sql_store):
        task_id = await sql_store.create(payload())
        await sql_store.toggle_complete(task_id, True)

        await sql_store.update(task_id, payload("Final essay", description="Two pages"))

        task = await only_task(sql_store)
        assert task.title == "Final essay"
        assert task.description == "Two pages"
        assert task.completed is True

    @pytest.mark.asyncio
    async def test_toggle_both_ways(self, sql_store):
        task_id = await sql_store.create(payload())

        await sql_store.toggle_complete(task_id, True)
        assert (await only_task(sql_store)).completed is True

        await sql_store.toggle_complete(task_id, False)
        assert (await only_task(sql_store)).completed is False

    @pytest.mark.asyncio
    async def test_delete(self, sql_store):
        task_id = await sql_store.create(payload())

        await sql_store.delete(task_id)

        assert await sql_store.fetch_snapshot(QUERY) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["update", "toggle_complete", "delete"])
    async def test_missing_task_is_fatal(self, sql_store, operation):
        args = {
            "update": ("missing", payload()),
            "toggle_complete": ("missing", True),
            "delete": ("missing",),
        }[operation]

        with pytest.raises(FatalStoreError) as exc_info:
            await getattr(sql_store, operation)(*args)

        assert exc_info.value.transient is False
        assert "not found" in str(exc_info.value)


class TestSnapshots:
    """Tests for snapshot queries."""

    @pytest.mark.asyncio
    async def test_newest_first(self, sql_store, db_manager):
        async with db_manager.get_session() as session:
            for minutes, task_id in [(30, "old"), (0, "new"), (10, "mid")]:
                session.add(TaskORM(
                    id=task_id,
                    owner_id="student-1",
                    title=task_id,
                    deadline=NOW,
                    priority="medium",
                    completed=False,
                    category="",
                    created_at=NOW - timedelta(minutes=minutes),
                ))

        documents = await sql_store.fetch_snapshot(QUERY)

        assert [d["id"] for d in documents] == ["new", "mid", "old"]

    @pytest.mark.asyncio
    async def test_owner_scoping(self, sql_store, db_manager):
        other = SqlTaskStore(db_manager, owner_id="student-2")
        await sql_store.create(payload("Mine"))
        await other.create(payload("Theirs"))

        mine = await sql_store.fetch_snapshot(QUERY)
        everyone = await sql_store.fetch_snapshot(TaskQuery())

        assert [d["title"] for d in mine] == ["Mine"]
        assert len(everyone) == 2

    @pytest.mark.asyncio
    async def test_datetimes_are_utc_aware(self, sql_store):
        await sql_store.create(payload())

        (document,) = await sql_store.fetch_snapshot(QUERY)

        assert document["deadline"].utcoffset() == timedelta(0)
        assert document["created_at"].utcoffset() == timedelta(0)


class TestSubscriptions:
    """Tests for live subscriptions."""

    @pytest.mark.asyncio
    async def test_initial_snapshot_then_updates(self, sql_store):
        stream = sql_store.subscribe(QUERY)

        assert await anext(stream) == []
        assert sql_store.subscriber_count == 1

        await sql_store.create(payload())
        second = await asyncio.wait_for(anext(stream), timeout=1)

        assert [d["title"] for d in second] == ["Essay"]

        await stream.aclose()
        assert sql_store.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_wakeups_are_coalesced(self, sql_store):
        stream = sql_store.subscribe(QUERY)
        await anext(stream)

        await sql_store.create(payload("One"))
        await sql_store.create(payload("Two"))
        snapshot = await asyncio.wait_for(anext(stream), timeout=1)

        assert len(snapshot) == 2

        await sql_store.create(payload("Three"))
        snapshot = await asyncio.wait_for(anext(stream), timeout=1)

        assert len(snapshot) == 3
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_close_ends_subscriptions(self, sql_store):
        stream = sql_store.subscribe(QUERY)
        await anext(stream)

        sql_store.close()

        with pytest.raises(StopAsyncIteration):
            await anext(stream)
        assert sql_store.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_failed_write_does_not_wake(self, sql_store):
        stream = sql_store.subscribe(QUERY)
        await anext(stream)

        with pytest.raises(FatalStoreError):
            await sql_store.delete("missing")
        assert all(wakeups.empty() for wakeups in sql_store._subscribers)

        await sql_store.create(payload())
        snapshot = await asyncio.wait_for(anext(stream), timeout=1)

        assert len(snapshot) == 1
        await stream.aclose()


class TestErrorTranslation:
    """Tests for mapping database errors onto store errors."""

    @pytest.mark.asyncio
    async def test_operational_error_is_transient(self, sql_store):
        error = OperationalError("SELECT", {}, Exception("database is locked"))

        with patch.object(sql_store.db_manager, "get_session", side_effect=error):
            with pytest.raises(TransientStoreError) as exc_info:
                await sql_store.fetch_snapshot(QUERY)

        assert exc_info.value.transient is True
        assert "fetch snapshot" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_other_database_errors_are_fatal(self, sql_store):
        error = IntegrityError("INSERT", {}, Exception("constraint failed"))

        with patch.object(sql_store.db_manager, "get_session", side_effect=error):
            with pytest.raises(FatalStoreError):
                await sql_store.create(payload())
