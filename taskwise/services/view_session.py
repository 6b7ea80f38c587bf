"""
View session: the owned state object behind one rendered task view.

Ties together one live subscription, the mutation queue that reconciles it
and the derivation cache. Construction and teardown follow the
subscription's lifetime, not any UI framework's.
"""

import asyncio
import contextlib
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Union

from taskwise.logging_config import get_logger
from taskwise.models import ALL_CATEGORIES, FilterConfig, SortOption, StatusFilter, TaskInput
from taskwise.services.mutation_queue import (
    MutationQueue,
    MutationRecord,
    SnapshotError,
    TaskNotFoundError,
    TaskPayload,
)
from taskwise.services.notifications import Notifier
from taskwise.services.remote_store import RemoteStoreAdapter, TaskQuery
from taskwise.services.view_derivation import DEFAULT_UPCOMING_LIMIT, DerivedView, ViewCache
from taskwise.utils.datetime_utils import utc_now

logger = get_logger(__name__)


class ViewStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LIVE = "live"
    UNAVAILABLE = "unavailable"


class TaskViewSession:
    """
    Keeps a derived task view consistent with a live remote collection.

    Usage:
        async with TaskViewSession(store) as session:
            await session.watch(TaskQuery(owner_id="me"))
            session.create({"title": "Essay", "deadline": deadline})
            view = session.view
    """

    def __init__(
        self,
        adapter: RemoteStoreAdapter,
        notifier: Optional[Notifier] = None,
        filter_config: Optional[FilterConfig] = None,
        sort: Union[SortOption, str] = SortOption.DEADLINE,
        upcoming_limit: int = DEFAULT_UPCOMING_LIMIT,
        clock: Callable[[], datetime] = utc_now,
        on_change: Optional[Callable[[], None]] = None,
    ):
        """
        Initialize the session. No subscription is opened until watch().

        Args:
            adapter: Remote store adapter
            notifier: Receives mutation outcome events
            filter_config: Initial filter (defaults to all statuses, all categories)
            sort: Initial sort option
            upcoming_limit: Number of upcoming tasks in the stats
            clock: Source of "now" for overdue/upcoming
            on_change: Optional callback invoked whenever the view may have changed
        """
        self.adapter = adapter
        self.clock = clock
        self.on_change = on_change
        self.queue = MutationQueue(adapter, notifier=notifier, on_change=self._changed)

        self._filter = filter_config or FilterConfig()
        self._sort = SortOption(sort)
        self._cache = ViewCache(upcoming_limit=upcoming_limit)

        self._query: Optional[TaskQuery] = None
        self._consumer: Optional[asyncio.Task] = None
        self._status = ViewStatus.IDLE
        self.error: Optional[str] = None
        self.last_snapshot_error: Optional[str] = None
        self._first_snapshot = asyncio.Event()

    async def __aenter__(self) -> "TaskViewSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ==============================================================================
    # STATE
    # ==============================================================================

    @property
    def status(self) -> ViewStatus:
        return self._status

    @property
    def query(self) -> Optional[TaskQuery]:
        return self._query

    @property
    def filter_config(self) -> FilterConfig:
        return self._filter

    @property
    def sort(self) -> SortOption:
        return self._sort

    @property
    def view(self) -> DerivedView:
        """Current derived view, pulled through the memo cache."""
        return self._cache.get(
            self.queue.reconciled,
            self.queue.version,
            self._filter,
            self._sort,
            self.clock(),
        )

    def _changed(self) -> None:
        if self.on_change:
            self.on_change()

    def _set_status(self, status: ViewStatus, error: Optional[str] = None) -> None:
        self._status = status
        self.error = error
        self._changed()

    # ==============================================================================
    # SUBSCRIPTION LIFETIME
    # ==============================================================================

    async def watch(self, query: TaskQuery) -> None:
        """
        Start watching a query, replacing any previous one.

        The previous subscription is cancelled and fully torn down before the
        new one delivers anything, so stale snapshots cannot be applied.
        """
        await self.unwatch()

        self._query = query
        self._first_snapshot.clear()
        self.last_snapshot_error = None
        self.queue.reset_snapshot()
        self._set_status(ViewStatus.LOADING)

        self._consumer = asyncio.get_running_loop().create_task(self._consume(query))
        logger.info(f"Watching tasks for owner={query.owner_id}")

    async def unwatch(self) -> None:
        """Cancel the active subscription, if any, and wait for it to finish."""
        consumer, self._consumer = self._consumer, None
        if consumer is None:
            return
        consumer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await consumer
        if self._status is not ViewStatus.UNAVAILABLE:
            self._set_status(ViewStatus.IDLE)
        logger.debug("Subscription torn down")

    async def close(self) -> None:
        """Tear down the subscription. In-flight mutations keep running."""
        await self.unwatch()

    async def wait_until_loaded(self) -> None:
        """Wait for the first snapshot of the current query (or for it to fail)."""
        await self._first_snapshot.wait()

    async def _consume(self, query: TaskQuery) -> None:
        try:
            async for documents in self.adapter.subscribe(query):
                try:
                    self.queue.receive_snapshot(documents)
                except SnapshotError as e:
                    logger.error(f"Ignoring malformed snapshot, keeping last good state: {e}")
                    self.last_snapshot_error = str(e)
                    self._changed()
                    continue
                self.last_snapshot_error = None
                if self._status is not ViewStatus.LIVE:
                    self._set_status(ViewStatus.LIVE)
                self._first_snapshot.set()
        except Exception as e:
            logger.error(f"Subscription failed for owner={query.owner_id}: {e}", exc_info=True)
            self._set_status(ViewStatus.UNAVAILABLE, str(e))
        else:
            logger.warning(f"Subscription ended for owner={query.owner_id}")
            self._set_status(ViewStatus.UNAVAILABLE, "Subscription ended")
        self._first_snapshot.set()

    # ==============================================================================
    # FILTER / SORT
    # ==============================================================================

    def set_filter(
        self,
        status: Union[StatusFilter, str, None] = None,
        category: Optional[str] = None,
    ) -> FilterConfig:
        """
        Change the status and/or category filter. Omitted parts are kept.

        Returns:
            The new filter configuration
        """
        self._filter = FilterConfig(
            status=status if status is not None else self._filter.status,
            category=category if category is not None else self._filter.category,
        )
        self._changed()
        return self._filter

    def reset_filters(self) -> FilterConfig:
        """Show all statuses and all categories."""
        return self.set_filter(status=StatusFilter.ALL, category=ALL_CATEGORIES)

    def set_sort(self, sort: Union[SortOption, str]) -> SortOption:
        self._sort = SortOption(sort)
        self._changed()
        return self._sort

    # ==============================================================================
    # MUTATIONS
    # ==============================================================================

    def create(self, payload: TaskPayload) -> MutationRecord:
        return self.queue.create(payload)

    def update(self, task_id: str, payload: TaskPayload) -> MutationRecord:
        return self.queue.update(task_id, payload)

    def edit(self, task_id: str, **changes) -> MutationRecord:
        """
        Update a task by changing only some fields of its current values.

        Raises:
            TaskNotFoundError: If the task is not in the view
        """
        task = self.queue.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task with id {task_id} not found")
        payload = TaskInput.from_task(task).model_dump()
        payload.update(changes)
        return self.queue.update(task_id, payload)

    def toggle_complete(self, task_id: str, completed: bool) -> MutationRecord:
        return self.queue.toggle_complete(task_id, completed)

    def delete(self, task_id: str) -> MutationRecord:
        return self.queue.delete(task_id)
