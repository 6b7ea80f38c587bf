"""
Console rendering of a derived task view.

A thin, read-only consumer of DerivedView used by `python -m taskwise`.
Colors follow the task card: red for high priority and overdue deadlines,
yellow for medium, blue for low, green for completed tasks.
"""

from datetime import datetime
from typing import Optional

from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from taskwise.models import Task, TaskPriority
from taskwise.services.view_derivation import DerivedView
from taskwise.utils.datetime_utils import format_deadline, format_relative_deadline

PRIORITY_COLORS = {
    TaskPriority.LOW: "#66D9EF",
    TaskPriority.MEDIUM: "#F3C300",
    TaskPriority.HIGH: "#F92672",
}
COMPLETE_COLOR = "#A6E22E"
OVERDUE_COLOR = "#BE0032"
DIM_COLOR = "#75715E"


def task_line(task: Task) -> Text:
    """One task: checkbox, title (struck through when done), category."""
    text = Text()
    if task.completed:
        text.append("[✓] ", style=COMPLETE_COLOR)
        text.append(task.title, style=f"strike {COMPLETE_COLOR}")
    else:
        text.append("[ ] ")
        text.append(task.title)
    if task.category:
        text.append(f"  #{task.category}", style=DIM_COLOR)
    return text


def deadline_text(task: Task, now: datetime, timezone_name: str = "UTC") -> Text:
    label = f"{format_relative_deadline(task.deadline, now)} ({format_deadline(task.deadline, timezone_name)})"
    style = OVERDUE_COLOR if task.is_overdue(now) else ""
    return Text(label, style=style)


def render_view(view: DerivedView, now: datetime, timezone_name: str = "UTC") -> RenderableType:
    """
    Build a renderable for the whole view: stats panel plus task table.

    Args:
        view: Derived view to show
        now: Evaluation time used for relative deadlines
        timezone_name: Display timezone for absolute deadlines
    """
    stats = view.stats
    summary = Text()
    summary.append(f"{stats.incomplete} incomplete", style="bold")
    summary.append(f"  {stats.completed} completed")
    summary.append(f"  {stats.completion_rate_percent}% done")
    summary.append(f"  {stats.overdue_count} overdue", style=OVERDUE_COLOR if stats.overdue_count else "")

    upcoming = Text("\nUpcoming: ", style=DIM_COLOR)
    if stats.upcoming:
        upcoming.append(", ".join(
            f"{task.title} ({format_deadline(task.deadline, timezone_name)})" for task in stats.upcoming
        ))
    else:
        upcoming.append("No immediate deadlines.")
    summary.append_text(upcoming)

    if not view.ordered_tasks:
        body: RenderableType = Text(
            "No tasks yet!" if stats.total == 0 else "No tasks match your current filters.",
            style=DIM_COLOR,
        )
    else:
        body = Table("Task", "Priority", "Deadline", expand=True)
        for task in view.ordered_tasks:
            body.add_row(
                task_line(task),
                Text(task.priority.value, style=PRIORITY_COLORS[task.priority]),
                deadline_text(task, now, timezone_name),
            )

    categories = ", ".join(view.facets[1:]) or "none"
    return Group(
        Panel(summary, title="TaskWise"),
        body,
        Text(f"Categories: {categories}", style=DIM_COLOR),
    )


def print_view(
    view: DerivedView,
    now: datetime,
    timezone_name: str = "UTC",
    console: Optional[Console] = None,
) -> None:
    """Print the view to the terminal."""
    (console or Console()).print(render_view(view, now, timezone_name))
