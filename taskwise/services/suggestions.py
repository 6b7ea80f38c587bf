"""
Task breakdown suggestions.

The suggestion service is an external collaborator: given a task title and
description it proposes sub-tasks. It is best-effort. Its failures never
block or fail a task mutation; they are only reported as notifications.
The caller merges the suggestions into the description and then issues an
ordinary update.
"""

from typing import List, Optional, Protocol

from pydantic import BaseModel, Field

from taskwise.logging_config import get_logger
from taskwise.services.notifications import (
    NotificationEvent,
    NotificationKind,
    NotificationOutcome,
    Notifier,
)

logger = get_logger(__name__)

SUGGESTIONS_HEADER = "Suggested Sub-tasks:"


class Breakdown(BaseModel):
    """Sub-tasks proposed for one task."""

    sub_tasks: List[str] = Field(default_factory=list)


class SuggestionService(Protocol):
    async def suggest_breakdown(self, title: str, description: Optional[str] = None) -> Breakdown: ...


def merge_sub_tasks(description: Optional[str], sub_tasks: List[str]) -> str:
    """
    Append suggested sub-tasks to a description as a bulleted list.

    Example:
        >>> merge_sub_tasks("Chapter 5", ["Read", "Exercises"])
        'Chapter 5\\n\\nSuggested Sub-tasks:\\n- Read\\n- Exercises'
    """
    bullets = "\n".join(f"- {item}" for item in sub_tasks)
    block = f"{SUGGESTIONS_HEADER}\n{bullets}"
    if description:
        return f"{description}\n\n{block}"
    return block


async def break_down_description(
    service: SuggestionService,
    title: str,
    description: Optional[str],
    notifier: Notifier,
) -> Optional[str]:
    """
    Ask the suggestion service for sub-tasks and merge them into the description.

    Never raises on collaborator failure.

    Args:
        service: Suggestion collaborator
        title: Task title (required)
        description: Current description, if any
        notifier: Receives the outcome

    Returns:
        The merged description, or None if nothing was suggested
    """
    def report(outcome: NotificationOutcome, detail: str) -> None:
        notifier.notify(NotificationEvent(kind=NotificationKind.BREAKDOWN, outcome=outcome, detail=detail))

    if not title or not title.strip():
        report(NotificationOutcome.FAILURE, "Please enter a task title before breaking it down.")
        return None

    try:
        result = await service.suggest_breakdown(title, description)
        sub_tasks = [item.strip() for item in result.sub_tasks if item and item.strip()]
    except Exception as e:
        logger.warning(f"Task breakdown failed for '{title}': {e}", exc_info=True)
        report(NotificationOutcome.FAILURE, "Failed to break down the task. Please try again.")
        return None

    if not sub_tasks:
        report(NotificationOutcome.SUCCESS, "Could not suggest sub-tasks for this item.")
        return None

    report(NotificationOutcome.SUCCESS, "Suggested sub-tasks added to the description.")
    return merge_sub_tasks(description, sub_tasks)
