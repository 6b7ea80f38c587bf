"""
SQL-backed remote store adapter.

Reference RemoteStoreAdapter on top of the async SQLAlchemy database layer.
Every committed write wakes the live subscriptions, which re-run their
query and emit a fresh full snapshot (never a diff).
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Dict, Any, List, Optional, Set
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskwise.database import DatabaseManager, TaskORM
from taskwise.logging_config import get_logger
from taskwise.models import TaskInput
from taskwise.services.remote_store import (
    FatalStoreError,
    StoreError,
    TaskDocument,
    TaskQuery,
    TransientStoreError,
    payload_to_document,
)
from taskwise.utils.datetime_utils import ensure_utc, utc_now

logger = get_logger(__name__)

_CLOSED = object()


class SqlTaskStore:
    """
    Remote store adapter persisting tasks through SQLAlchemy.

    Snapshots are ordered newest first.
    """

    def __init__(self, db_manager: DatabaseManager, owner_id: Optional[str] = None):
        """
        Initialize the store.

        Args:
            db_manager: Initialized DatabaseManager
            owner_id: Owner stamped on tasks created through this store
        """
        self.db_manager = db_manager
        self.owner_id = owner_id
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        """Number of live subscriptions."""
        return len(self._subscribers)

    # ==============================================================================
    # SUBSCRIPTIONS
    # ==============================================================================

    async def subscribe(self, query: TaskQuery) -> AsyncIterator[List[TaskDocument]]:
        """
        Emit the current snapshot, then a new one after every committed write.

        Wake-ups that pile up while the consumer is busy are coalesced into
        a single re-query.

        Args:
            query: Which tasks to watch

        Yields:
            Full ordered list of task documents
        """
        wakeups: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(wakeups)
        logger.debug(f"Subscription opened for owner={query.owner_id}")
        try:
            while True:
                yield await self.fetch_snapshot(query)
                if await wakeups.get() is _CLOSED:
                    return
                while not wakeups.empty():
                    if wakeups.get_nowait() is _CLOSED:
                        return
        finally:
            self._subscribers.discard(wakeups)
            logger.debug(f"Subscription closed for owner={query.owner_id}")

    async def fetch_snapshot(self, query: TaskQuery) -> List[TaskDocument]:
        """
        Run the query once.

        Raises:
            TransientStoreError: If the database is temporarily unavailable
            FatalStoreError: On any other database error
        """
        statement = select(TaskORM).order_by(TaskORM.created_at.desc(), TaskORM.id)
        if query.owner_id is not None:
            statement = statement.where(TaskORM.owner_id == query.owner_id)

        async with self._translate_errors("fetch snapshot"):
            async with self.db_manager.get_session() as session:
                result = await session.execute(statement)
                return [self._orm_to_document(row) for row in result.scalars().all()]

    def close(self) -> None:
        """End every live subscription."""
        for wakeups in list(self._subscribers):
            wakeups.put_nowait(_CLOSED)

    def _notify(self) -> None:
        for wakeups in self._subscribers:
            wakeups.put_nowait(None)

    # ==============================================================================
    # MUTATIONS
    # ==============================================================================

    async def create(self, payload: TaskInput) -> str:
        """
        Insert a new incomplete task.

        Returns:
            The id assigned to the task
        """
        task_id = uuid4().hex
        async with self._write("create task") as session:
            session.add(TaskORM(
                id=task_id,
                owner_id=self.owner_id,
                completed=False,
                created_at=utc_now(),
                **payload_to_document(payload),
            ))
        logger.info(f"Created task {task_id}")
        return task_id

    async def update(self, task_id: str, payload: TaskInput) -> None:
        """Replace a task's editable fields. Completion and creation time are kept."""
        async with self._write("update task") as session:
            task_orm = await self._get_task_or_raise(session, task_id)
            for field, value in payload_to_document(payload).items():
                setattr(task_orm, field, value)
        logger.info(f"Updated task {task_id}")

    async def toggle_complete(self, task_id: str, completed: bool) -> None:
        """Set a task's completion flag."""
        async with self._write("toggle task") as session:
            task_orm = await self._get_task_or_raise(session, task_id)
            task_orm.completed = completed
        logger.info(f"Marked task {task_id} completed={completed}")

    async def delete(self, task_id: str) -> None:
        """Delete a task."""
        async with self._write("delete task") as session:
            task_orm = await self._get_task_or_raise(session, task_id)
            await session.delete(task_orm)
        logger.info(f"Deleted task {task_id}")

    # ==============================================================================
    # HELPERS
    # ==============================================================================

    @asynccontextmanager
    async def _write(self, action: str) -> AsyncGenerator[AsyncSession, None]:
        """Run a write in one transaction and wake subscribers once it commits."""
        async with self._translate_errors(action):
            async with self.db_manager.get_session() as session:
                yield session
        self._notify()

    @asynccontextmanager
    async def _translate_errors(self, action: str) -> AsyncGenerator[None, None]:
        """Map SQLAlchemy errors onto the store error taxonomy."""
        try:
            yield
        except StoreError:
            raise
        except OperationalError as e:
            raise TransientStoreError(f"Failed to {action}: {e}") from e
        except SQLAlchemyError as e:
            raise FatalStoreError(f"Failed to {action}: {e}") from e

    @staticmethod
    async def _get_task_or_raise(session: AsyncSession, task_id: str) -> TaskORM:
        task_orm = await session.get(TaskORM, task_id)
        if task_orm is None:
            raise FatalStoreError(f"Task with id {task_id} not found")
        return task_orm

    @staticmethod
    def _orm_to_document(task_orm: TaskORM) -> Dict[str, Any]:
        return {
            "id": task_orm.id,
            "title": task_orm.title,
            "description": task_orm.description,
            "deadline": ensure_utc(task_orm.deadline),
            "priority": task_orm.priority,
            "completed": task_orm.completed,
            "category": task_orm.category,
            "created_at": ensure_utc(task_orm.created_at),
        }
