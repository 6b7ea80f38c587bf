"""
Pytest configuration and fixtures for TaskWise tests.

Provides an in-memory database, fake collaborators and task factories.
"""

from datetime import datetime, timedelta
from typing import Optional

import pytest
import pytest_asyncio

from taskwise.database import DatabaseManager
from taskwise.models import Task, TaskPriority
from taskwise.services.mutation_queue import MutationQueue
from taskwise.services.sql_store import SqlTaskStore
from tests.helpers import NOW, FakeRemoteStore, RecordingNotifier


@pytest_asyncio.fixture
async def db_manager():
    """
    Create an in-memory SQLite database for testing.

    Yields:
        DatabaseManager instance with in-memory database
    """
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.initialize()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def sql_store(db_manager):
    """SqlTaskStore over the in-memory database."""
    store = SqlTaskStore(db_manager, owner_id="student-1")
    yield store
    store.close()


@pytest.fixture
def now():
    """Fixed evaluation time."""
    return NOW


@pytest.fixture
def fake_store():
    return FakeRemoteStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def queue(fake_store, notifier):
    """MutationQueue wired to the fake store."""
    return MutationQueue(fake_store, notifier=notifier)


@pytest.fixture
def make_task():
    """
    Factory fixture for creating Task models.

    Deadlines are given in days relative to NOW.

    Example:
        def test_something(make_task):
            task = make_task("1", title="Essay", days=2, priority="high")
    """
    def _make_task(
        id: str = "task-1",
        title: str = "Test Task",
        days: float = 1,
        priority: TaskPriority = TaskPriority.MEDIUM,
        completed: bool = False,
        category: Optional[str] = None,
        description: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Task:
        return Task(
            id=id,
            title=title,
            description=description,
            deadline=NOW + timedelta(days=days),
            priority=priority,
            completed=completed,
            category=category,
            created_at=created_at or NOW,
        )
    return _make_task
