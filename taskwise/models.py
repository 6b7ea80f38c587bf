"""
Pydantic models for TaskWise.

Defines the task entity, the payload users submit to create or edit a task,
and the filter/sort configuration the view is derived with. Task snapshots
are frozen: the reconciled set is shared with readers and never mutated
in place.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskwise.utils.datetime_utils import ensure_utc

TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 1000
CATEGORY_MAX_LENGTH = 100

ALL_CATEGORIES = "all"


class TaskPriority(str, Enum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PRIORITY_RANK = {
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}


class StatusFilter(str, Enum):
    """Which completion states the view shows."""

    ALL = "all"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"


class SortOption(str, Enum):
    """Sort keys offered by the view."""

    DEADLINE = "deadline"
    PRIORITY = "priority"
    TITLE = "title"
    CATEGORY = "category"


class _TaskFields(BaseModel):
    """User-editable task fields shared by Task and TaskInput."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH, description="Task title")
    description: Optional[str] = Field(
        default=None, max_length=DESCRIPTION_MAX_LENGTH, description="Optional task description"
    )
    deadline: datetime = Field(..., description="Deadline timestamp (UTC)")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Task priority")
    category: Optional[str] = Field(
        default=None, max_length=CATEGORY_MAX_LENGTH, description="Optional free-form category label"
    )

    @field_validator("description", "category", mode="before")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """
        Treat empty strings as "not set".

        The store persists a missing category as an empty string.
        """
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("deadline")
    @classmethod
    def normalize_deadline(cls, v: datetime) -> datetime:
        """Store deadlines as aware UTC datetimes."""
        return ensure_utc(v)


class TaskInput(_TaskFields):
    """
    Payload for creating or editing a task.

    Validated before any optimistic change is made, so a malformed payload
    never reaches the remote store.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "title": "Read chapter 5",
                "description": "Exercises 1-10",
                "deadline": "2025-03-05T14:30:00Z",
                "priority": "high",
                "category": "Math",
            }
        },
    )

    @classmethod
    def from_task(cls, task: "Task") -> "TaskInput":
        """Build an edit payload carrying a task's current field values."""
        return cls(
            title=task.title,
            description=task.description,
            deadline=task.deadline,
            priority=task.priority,
            category=task.category,
        )


class Task(_TaskFields):
    """
    A single deadline-bound task as held in a snapshot or the reconciled set.

    The id is assigned by the remote store. Optimistically created tasks
    carry a local placeholder id until the store confirms them.
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "3f2b0c1e9a7d4b8c",
                "title": "Read chapter 5",
                "description": "Exercises 1-10",
                "deadline": "2025-03-05T14:30:00Z",
                "priority": "high",
                "completed": False,
                "category": "Math",
                "created_at": "2025-03-01T09:00:00Z",
            }
        },
    )

    id: str = Field(..., min_length=1, description="Opaque unique identifier")
    completed: bool = Field(default=False, description="Whether the task is completed")
    created_at: Optional[datetime] = Field(default=None, description="Creation timestamp, set by the store")

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store creation timestamps as aware UTC datetimes."""
        return ensure_utc(v) if v is not None else None

    def is_overdue(self, now: datetime) -> bool:
        """
        Check whether the task is past its deadline.

        Args:
            now: Evaluation time

        Returns:
            True if the task is incomplete and its deadline is strictly before now
        """
        return not self.completed and self.deadline < ensure_utc(now)


class FilterConfig(BaseModel):
    """
    Selection applied to the reconciled set before sorting.

    Both predicates compose with logical AND.
    """

    model_config = ConfigDict(frozen=True)

    status: StatusFilter = Field(default=StatusFilter.ALL, description="Completion status filter")
    category: str = Field(default=ALL_CATEGORIES, min_length=1, description="Category label or 'all'")

    def matches(self, task: Task) -> bool:
        """Check whether a task passes both the status and the category filter."""
        if self.status is StatusFilter.COMPLETED and not task.completed:
            return False
        if self.status is StatusFilter.INCOMPLETE and task.completed:
            return False
        if self.category != ALL_CATEGORIES and task.category != self.category:
            return False
        return True
