"""
Mutation queue: optimistic mutations reconciled against remote snapshots.

The queue owns the reconciled task set. It is the last remote snapshot with
the effect of every live mutation record overlaid on top, in submission
order. A record is live while it is pending, and after confirmation until
the next snapshot supersedes it. Failed records are dropped and the set is
recomputed without them, which rolls their effect back.

All state transitions run synchronously on the event loop. Only the adapter
calls are awaited, so readers never observe a partial overlay.
"""

import asyncio
from datetime import datetime
from enum import Enum
from itertools import count
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from taskwise.logging_config import get_logger
from taskwise.models import Task, TaskInput
from taskwise.services.notifications import (
    FAILURE_MESSAGES,
    SUCCESS_MESSAGES,
    LoggingNotifier,
    NotificationEvent,
    NotificationKind,
    NotificationOutcome,
    Notifier,
    toggled_message,
)
from taskwise.services.remote_store import RemoteStoreAdapter, StoreError
from taskwise.utils.datetime_utils import utc_now

logger = get_logger(__name__)

LOCAL_ID_PREFIX = "local-"

TaskPayload = Union[TaskInput, Mapping[str, Any]]


class MutationQueueError(Exception):
    """Base exception for mutation queue errors."""
    pass


class InvalidMutationError(MutationQueueError):
    """Raised when a mutation payload is malformed. Nothing is applied."""
    pass


class TaskNotFoundError(MutationQueueError):
    """Raised when a mutation targets a task that is not in the reconciled set."""
    pass


class SnapshotError(MutationQueueError):
    """Raised when an incoming snapshot is malformed. The last good set is kept."""
    pass


class MutationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    TOGGLE = "toggle"
    DELETE = "delete"


class MutationState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


_NOTIFICATION_KINDS = {
    MutationKind.CREATE: NotificationKind.CREATED,
    MutationKind.UPDATE: NotificationKind.UPDATED,
    MutationKind.TOGGLE: NotificationKind.TOGGLED,
    MutationKind.DELETE: NotificationKind.DELETED,
}


class Mutation(BaseModel):
    """A user action as submitted, before it is applied."""

    model_config = ConfigDict(frozen=True)

    kind: MutationKind
    target_id: Optional[str] = Field(default=None, min_length=1)
    payload: Optional[TaskInput] = None
    completed: Optional[bool] = None

    @model_validator(mode='after')
    def validate_shape(self) -> 'Mutation':
        """
        Check that each kind carries exactly what it needs.

        Raises:
            ValueError: If a required field is missing or a create names a target
        """
        if self.kind is MutationKind.CREATE:
            if self.target_id is not None:
                raise ValueError("create mutations cannot name a target id")
        elif self.target_id is None:
            raise ValueError(f"{self.kind.value} mutations require a target id")

        if self.kind in (MutationKind.CREATE, MutationKind.UPDATE) and self.payload is None:
            raise ValueError(f"{self.kind.value} mutations require a payload")
        if self.kind is MutationKind.TOGGLE and self.completed is None:
            raise ValueError("toggle mutations require a completed flag")
        return self


class MutationRecord(BaseModel):
    """
    One in-flight user action.

    Attributes:
        seq: Submission order
        target_id: Task the mutation applies to. For creates this stays None
            until the store assigns an id (by acknowledgment or by a matching
            snapshot).
        local_id: Placeholder id of the optimistically inserted task (creates only)
        optimistic: Task snapshot the optimistic effect produced (None for deletes)
        previous: Task as it was before the effect (None for creates)
    """

    seq: int
    kind: MutationKind
    mutation: Mutation
    target_id: Optional[str] = None
    local_id: Optional[str] = None
    state: MutationState = MutationState.PENDING
    optimistic: Optional[Task] = None
    previous: Optional[Task] = None
    error: Optional[str] = None
    retryable: bool = False
    submitted_at: datetime = Field(default_factory=utc_now)

    @property
    def effective_id(self) -> Optional[str]:
        """Id the record's task currently goes by in the reconciled set."""
        return self.target_id or self.local_id


# ==============================================================================
# RECONCILIATION
# ==============================================================================

def parse_snapshot(documents: Iterable[Mapping[str, Any]]) -> Tuple[Task, ...]:
    """
    Validate a raw snapshot into tasks, preserving order.

    Raises:
        SnapshotError: If the snapshot is not a list of valid tasks with unique ids
    """
    if isinstance(documents, (str, bytes, Mapping)):
        raise SnapshotError("Snapshot must be a sequence of task documents")
    try:
        items = list(documents)
    except TypeError as e:
        raise SnapshotError(f"Snapshot is not iterable: {e}") from e

    tasks: List[Task] = []
    seen = set()
    for index, document in enumerate(items):
        try:
            task = Task.model_validate(document)
        except ValidationError as e:
            raise SnapshotError(f"Invalid task at position {index}: {e}") from e
        if task.id in seen:
            raise SnapshotError(f"Duplicate task id {task.id} in snapshot")
        seen.add(task.id)
        tasks.append(task)
    return tuple(tasks)


def _resolve(task_id: str, aliases: Mapping[str, Optional[str]]) -> str:
    return aliases.get(task_id) or task_id


def _apply_effect(
    tasks: Dict[str, Task],
    record: MutationRecord,
    aliases: Mapping[str, Optional[str]],
) -> Dict[str, Task]:
    if record.kind is MutationKind.CREATE:
        task_id = record.effective_id
        if task_id in tasks:
            # The store already reflects this create.
            return tasks
        task = record.optimistic.model_copy(update={"id": task_id})
        # Newest first, like the store's own ordering.
        return {task_id: task, **tasks}

    task_id = _resolve(record.target_id, aliases)
    current = tasks.get(task_id)
    if current is None:
        # Target is gone (deleted remotely or never created); nothing to overlay.
        return tasks

    if record.kind is MutationKind.UPDATE:
        tasks[task_id] = current.model_copy(update=dict(record.mutation.payload))
    elif record.kind is MutationKind.TOGGLE:
        tasks[task_id] = current.model_copy(update={"completed": record.mutation.completed})
    elif record.kind is MutationKind.DELETE:
        del tasks[task_id]
    return tasks


def reconcile(
    snapshot: Sequence[Task],
    records: Iterable[MutationRecord],
    aliases: Optional[Mapping[str, Optional[str]]] = None,
) -> Tuple[Task, ...]:
    """
    Overlay live mutation records on a snapshot.

    Records are applied in the order given; a later record for the same task
    wins. Failed records are skipped.

    Args:
        snapshot: Last remote snapshot
        records: Mutation records in submission order
        aliases: Placeholder id -> assigned id for creates that have left the
            record list but are still targeted by later records

    Returns:
        The reconciled task set
    """
    live = [r for r in records if r.state is not MutationState.FAILED]
    resolved: Dict[str, Optional[str]] = dict(aliases or {})
    for record in live:
        if record.kind is MutationKind.CREATE and record.target_id:
            resolved[record.local_id] = record.target_id

    tasks = {task.id: task for task in snapshot}
    for record in live:
        tasks = _apply_effect(tasks, record, resolved)
    return tuple(tasks.values())


# ==============================================================================
# QUEUE
# ==============================================================================

class MutationQueue:
    """
    Single owner of the reconciled task set.

    Applies mutations optimistically, dispatches them to the remote store
    adapter, and folds acknowledgments, failures and snapshots back into the
    set. Mutations on the same task reach the adapter in submission order.
    """

    def __init__(
        self,
        adapter: RemoteStoreAdapter,
        notifier: Optional[Notifier] = None,
        on_change: Optional[Callable[[], None]] = None,
    ):
        """
        Initialize the queue.

        Args:
            adapter: Remote store adapter mutations are dispatched to
            notifier: Receives success/failure events (defaults to logging them)
            on_change: Optional callback invoked after every recomputation
        """
        self.adapter = adapter
        self.notifier = notifier or LoggingNotifier()
        self.on_change = on_change

        self._snapshot: Tuple[Task, ...] = ()
        self._records: List[MutationRecord] = []
        self._reconciled: Tuple[Task, ...] = ()
        self._version = 0

        # Placeholder id -> assigned id (None until assigned, or if the create failed)
        self._aliases: Dict[str, Optional[str]] = {}

        self._seq = count(1)
        self._inflight: Dict[int, asyncio.Task] = {}
        self._chains: Dict[str, asyncio.Task] = {}

    # ==============================================================================
    # READ ACCESS
    # ==============================================================================

    @property
    def reconciled(self) -> Tuple[Task, ...]:
        """Current reconciled task set."""
        return self._reconciled

    @property
    def version(self) -> int:
        """Incremented on every recomputation of the reconciled set."""
        return self._version

    @property
    def snapshot(self) -> Tuple[Task, ...]:
        """Last remote snapshot accepted."""
        return self._snapshot

    @property
    def records(self) -> Tuple[MutationRecord, ...]:
        """Live mutation records in submission order."""
        return tuple(self._records)

    @property
    def pending_count(self) -> int:
        return sum(1 for r in self._records if r.state is MutationState.PENDING)

    def resolve_id(self, task_id: str) -> str:
        """Map a placeholder id to the id the store assigned, if known."""
        return _resolve(task_id, self._aliases)

    def get(self, task_id: str) -> Optional[Task]:
        """Look up a task in the reconciled set by id or placeholder id."""
        resolved = self.resolve_id(task_id)
        for task in self._reconciled:
            if task.id == resolved:
                return task
        return None

    # ==============================================================================
    # MUTATIONS
    # ==============================================================================

    def create(self, payload: TaskPayload) -> MutationRecord:
        """Optimistically add a task and dispatch the create."""
        return self.apply(self._build(MutationKind.CREATE, payload=payload))

    def update(self, task_id: str, payload: TaskPayload) -> MutationRecord:
        """Optimistically replace a task's editable fields and dispatch the update."""
        return self.apply(self._build(MutationKind.UPDATE, target_id=task_id, payload=payload))

    def toggle_complete(self, task_id: str, completed: bool) -> MutationRecord:
        """Optimistically set a task's completion flag and dispatch the toggle."""
        return self.apply(self._build(MutationKind.TOGGLE, target_id=task_id, completed=completed))

    def delete(self, task_id: str) -> MutationRecord:
        """Optimistically remove a task and dispatch the delete."""
        return self.apply(self._build(MutationKind.DELETE, target_id=task_id))

    @staticmethod
    def _build(kind: MutationKind, **fields: Any) -> Mutation:
        try:
            return Mutation(kind=kind, **fields)
        except ValidationError as e:
            raise InvalidMutationError(f"Invalid {kind.value} mutation: {e}") from e

    def apply(self, mutation: Mutation) -> MutationRecord:
        """
        Apply a mutation optimistically and schedule its dispatch.

        Must be called from within the running event loop.

        Args:
            mutation: Validated mutation

        Returns:
            The pending MutationRecord

        Raises:
            TaskNotFoundError: If the target is not in the reconciled set
        """
        record = MutationRecord(seq=next(self._seq), kind=mutation.kind, mutation=mutation)

        if mutation.kind is MutationKind.CREATE:
            record.local_id = f"{LOCAL_ID_PREFIX}{uuid4().hex}"
            record.optimistic = Task(id=record.local_id, completed=False, **dict(mutation.payload))
            self._aliases[record.local_id] = None
            chain_key = record.local_id
        else:
            previous = self.get(mutation.target_id)
            if previous is None:
                raise TaskNotFoundError(f"Task with id {mutation.target_id} not found")
            record.target_id = mutation.target_id
            record.previous = previous
            if mutation.kind is MutationKind.UPDATE:
                record.optimistic = previous.model_copy(update=dict(mutation.payload))
            elif mutation.kind is MutationKind.TOGGLE:
                record.optimistic = previous.model_copy(update={"completed": mutation.completed})
            chain_key = previous.id

        self._records.append(record)
        self._recompute()
        logger.debug(f"Applied {record.kind.value} #{record.seq} for {record.effective_id}")

        self._schedule(record, chain_key)
        return record

    def _schedule(self, record: MutationRecord, chain_key: str) -> None:
        previous = self._chains.get(chain_key)
        task = asyncio.get_running_loop().create_task(self._dispatch(record, previous))
        self._inflight[record.seq] = task
        self._chains[chain_key] = task
        task.add_done_callback(self._release_chain)

    def _release_chain(self, task: asyncio.Task) -> None:
        for key in [k for k, t in self._chains.items() if t is task]:
            del self._chains[key]

    async def _dispatch(self, record: MutationRecord, previous: Optional[asyncio.Task]) -> None:
        if previous is not None:
            await asyncio.wait({previous})
        try:
            result = await self._call_adapter(record)
        except Exception as e:
            self._fail(record, e)
        else:
            self._confirm(record, result)
        finally:
            self._inflight.pop(record.seq, None)

    async def _call_adapter(self, record: MutationRecord) -> Optional[str]:
        mutation = record.mutation
        if record.kind is MutationKind.CREATE:
            return await self.adapter.create(mutation.payload)

        task_id = self.resolve_id(record.target_id)
        if task_id in self._aliases:
            raise MutationQueueError(f"Task {record.target_id} was never created")

        if record.kind is MutationKind.UPDATE:
            await self.adapter.update(task_id, mutation.payload)
        elif record.kind is MutationKind.TOGGLE:
            await self.adapter.toggle_complete(task_id, mutation.completed)
        elif record.kind is MutationKind.DELETE:
            await self.adapter.delete(task_id)
        return None

    def _confirm(self, record: MutationRecord, assigned_id: Optional[str]) -> None:
        if record.kind is MutationKind.CREATE and assigned_id:
            self._adopt_id(record, assigned_id)

        record.state = MutationState.CONFIRMED
        self._recompute()
        logger.info(f"Confirmed {record.kind.value} #{record.seq} for {record.effective_id}")

        if record.kind is MutationKind.TOGGLE:
            detail = toggled_message(record.mutation.completed)
        else:
            detail = SUCCESS_MESSAGES[_NOTIFICATION_KINDS[record.kind]]
        self._notify(record, NotificationOutcome.SUCCESS, detail)

    def _fail(self, record: MutationRecord, error: Exception) -> None:
        record.state = MutationState.FAILED
        record.error = str(error)
        record.retryable = isinstance(error, StoreError) and error.transient

        if record in self._records:
            self._records.remove(record)
        self._recompute()
        logger.error(
            f"{record.kind.value} #{record.seq} for {record.effective_id} failed "
            f"(retryable={record.retryable}): {error}",
            exc_info=True
        )

        detail = FAILURE_MESSAGES[_NOTIFICATION_KINDS[record.kind]]
        self._notify(record, NotificationOutcome.FAILURE, f"{detail} {error}".strip())

    def _notify(self, record: MutationRecord, outcome: NotificationOutcome, detail: str) -> None:
        self.notifier.notify(NotificationEvent(
            kind=_NOTIFICATION_KINDS[record.kind],
            outcome=outcome,
            detail=detail,
            task_id=record.effective_id,
        ))

    async def wait_idle(self) -> None:
        """Wait until every dispatched mutation has resolved."""
        while self._inflight:
            await asyncio.wait(list(self._inflight.values()))

    # ==============================================================================
    # SNAPSHOTS
    # ==============================================================================

    def receive_snapshot(self, documents: Iterable[Mapping[str, Any]]) -> None:
        """
        Fold a new remote snapshot into the reconciled set.

        Confirmed records are superseded by the snapshot and destroyed.
        Pending records are re-applied on top.

        Raises:
            SnapshotError: If the snapshot is malformed; state is left untouched
        """
        snapshot = parse_snapshot(documents)

        self._match_pending_creates(snapshot)
        superseded = sum(1 for r in self._records if r.state is MutationState.CONFIRMED)
        self._records = [r for r in self._records if r.state is MutationState.PENDING]
        self._prune_aliases()
        self._snapshot = snapshot
        self._recompute()

        logger.debug(
            f"Snapshot received: {len(snapshot)} tasks, "
            f"{superseded} superseded, {len(self._records)} pending overlaid"
        )

    def _match_pending_creates(self, snapshot: Sequence[Task]) -> None:
        """
        Adopt store ids for pending creates the snapshot already reflects.

        A new task (unknown id) whose fields equal a pending create's payload
        is taken to be that create, so it is not shown twice.
        """
        known = {task.id for task in self._snapshot}
        known.update(r.target_id for r in self._records if r.target_id)

        for record in self._records:
            if record.kind is not MutationKind.CREATE or record.target_id:
                continue
            for task in snapshot:
                if task.id not in known and TaskInput.from_task(task) == record.mutation.payload:
                    self._adopt_id(record, task.id)
                    known.add(task.id)
                    logger.debug(f"Snapshot reflects pending create #{record.seq} as {task.id}")
                    break

    def _adopt_id(self, record: MutationRecord, assigned_id: str) -> None:
        """Point a create's placeholder at the id the store gave it."""
        record.target_id = assigned_id
        self._aliases[record.local_id] = assigned_id
        # Mutations submitted under either id share one dispatch chain.
        if record.local_id in self._chains:
            self._chains.setdefault(assigned_id, self._chains[record.local_id])

    def _prune_aliases(self) -> None:
        """Drop placeholder ids no live record or dispatch chain refers to."""
        referenced = set(self._chains)
        for record in self._records:
            referenced.update(i for i in (record.local_id, record.target_id) if i)
        for local_id in [k for k in self._aliases if k not in referenced]:
            del self._aliases[local_id]

    def reset_snapshot(self) -> None:
        """Forget the held snapshot, e.g. when the watched query changes."""
        self._snapshot = ()
        self._records = [r for r in self._records if r.state is MutationState.PENDING]
        self._prune_aliases()
        self._recompute()

    def _recompute(self) -> None:
        self._reconciled = reconcile(self._snapshot, self._records, self._aliases)
        self._version += 1
        if self.on_change:
            self.on_change()
