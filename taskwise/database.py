"""
Database layer for TaskWise.

Provides the SQLAlchemy ORM table and async engine/session management
behind the reference SQL task store.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy import Boolean, DateTime, String, Text, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from taskwise.config import DEFAULT_DATABASE_URL
from taskwise.logging_config import get_logger
from taskwise.models import CATEGORY_MAX_LENGTH, TITLE_MAX_LENGTH

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base for TaskWise tables."""
    pass


class TaskORM(Base):
    """
    SQLAlchemy ORM model for tasks.

    Mirrors the Task Pydantic model. A missing category is stored as an
    empty string.
    """
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    category: Mapped[str] = mapped_column(String(CATEGORY_MAX_LENGTH), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<TaskORM(id={self.id}, title={self.title}, completed={self.completed})>"


class DatabaseManager:
    """
    Owns the async engine and hands out transactional sessions.

    One instance backs every SqlTaskStore of a process. Tests point it at
    ``sqlite+aiosqlite:///:memory:``.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        """
        Args:
            database_url: SQLAlchemy async URL of the task database
            echo: Log every SQL statement (debugging aid)
        """
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_initialized(self) -> bool:
        return self.session_maker is not None

    def _ensure_sqlite_directory(self) -> None:
        """Create the parent folder of a file-based SQLite database."""
        url = make_url(self.database_url)
        if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
            return
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> None:
        """
        Open the engine and create the tasks table if it is missing.

        Raises:
            SQLAlchemyError: If the database cannot be opened
        """
        logger.info(f"Opening task database {self.database_url}")
        try:
            self._ensure_sqlite_directory()
            self.engine = create_async_engine(self.database_url, echo=self.echo)
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            logger.error(f"Could not open task database {self.database_url}: {e}", exc_info=True)
            raise

        # Rows stay readable after commit; snapshots are built from them.
        self.session_maker = async_sessionmaker(self.engine, expire_on_commit=False)
        logger.debug("Task database ready")

    async def close(self) -> None:
        """Dispose of the engine. Safe to call twice."""
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.session_maker = None
        logger.info(f"Closed task database {self.database_url}")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        One unit of work: committed on clean exit, rolled back on error.

        Usage:
            async with db_manager.get_session() as session:
                session.add(TaskORM(...))

        Raises:
            RuntimeError: If initialize() has not been awaited
        """
        if self.session_maker is None:
            raise RuntimeError("Task database is not open; await initialize() first")

        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.warning(f"Rolled back task database transaction: {e}")
                raise
