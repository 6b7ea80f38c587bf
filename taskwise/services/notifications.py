"""
Notification boundary.

The mutation queue and the suggestion helper report outcomes here for
user-facing presentation. Notifiers have no say in internal state.
"""

from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from taskwise.logging_config import get_logger

logger = get_logger(__name__)


class NotificationKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    TOGGLED = "toggled"
    DELETED = "deleted"
    BREAKDOWN = "breakdown"


class NotificationOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class NotificationEvent(BaseModel):
    """A discrete, user-presentable outcome."""

    model_config = ConfigDict(frozen=True)

    kind: NotificationKind
    outcome: NotificationOutcome
    detail: str = Field(..., description="Human readable message")
    task_id: Optional[str] = Field(default=None, description="Task the event concerns, if any")


class Notifier(Protocol):
    """Receives notification events. No return value is expected."""

    def notify(self, event: NotificationEvent) -> None: ...


class LoggingNotifier:
    """Default notifier: writes events to the application log."""

    def notify(self, event: NotificationEvent) -> None:
        if event.outcome is NotificationOutcome.FAILURE:
            logger.warning(f"[{event.kind.value}] {event.detail}")
        else:
            logger.info(f"[{event.kind.value}] {event.detail}")


SUCCESS_MESSAGES = {
    NotificationKind.CREATED: "Task added successfully.",
    NotificationKind.UPDATED: "Task updated successfully.",
    NotificationKind.DELETED: "Task deleted successfully.",
}

FAILURE_MESSAGES = {
    NotificationKind.CREATED: "Failed to add task.",
    NotificationKind.UPDATED: "Failed to update task.",
    NotificationKind.TOGGLED: "Failed to update task status.",
    NotificationKind.DELETED: "Failed to delete task.",
}


def toggled_message(completed: bool) -> str:
    return f"Task marked as {'complete' if completed else 'incomplete'}."
