"""
Remote store adapter contract.

The core talks to the remote task collection only through this Protocol:
a live subscription that emits full snapshots, and four mutation
coroutines. Retry policy belongs to the adapter, not the core.
"""

from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from taskwise.models import TaskInput

TaskDocument = Mapping[str, Any]
"""One raw task as delivered by a snapshot (id, title, deadline, ...)."""


class StoreError(Exception):
    """
    Base exception for remote store failures.

    Attributes:
        transient: True if retrying the same call may succeed
    """

    transient = False

    def __init__(self, message: str, *, transient: Optional[bool] = None):
        super().__init__(message)
        if transient is not None:
            self.transient = transient


class TransientStoreError(StoreError):
    """Retryable failure (network hiccup, busy database)."""

    transient = True


class FatalStoreError(StoreError):
    """Non-retryable failure (missing document, rejected write)."""

    transient = False


class TaskQuery(BaseModel):
    """Describes which remote collection slice a view watches."""

    model_config = ConfigDict(frozen=True)

    owner_id: Optional[str] = Field(default=None, description="Only tasks owned by this user")


class RemoteStoreAdapter(Protocol):
    """Live query plus mutation primitives against the remote task collection."""

    def subscribe(self, query: TaskQuery) -> AsyncIterator[List[TaskDocument]]:
        """Yield the full ordered task list matching query on every change."""
        ...

    async def create(self, payload: TaskInput) -> str:
        """Create a task and return the id the store assigned."""
        ...

    async def update(self, task_id: str, payload: TaskInput) -> None: ...

    async def toggle_complete(self, task_id: str, completed: bool) -> None: ...

    async def delete(self, task_id: str) -> None: ...


def payload_to_document(payload: TaskInput) -> Dict[str, Any]:
    """Serialize a task payload the way stores persist it (blank category, not null)."""
    return {
        "title": payload.title,
        "description": payload.description,
        "deadline": payload.deadline,
        "priority": payload.priority.value,
        "category": payload.category or "",
    }
