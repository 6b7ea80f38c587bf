"""
View derivation: a pure function from the reconciled task set, filter and
sort configuration to the view a renderer shows.

Sorting is a total order in every mode (task id is the last tie-break), so
deriving twice from the same inputs yields the same list. Aggregates and
facets are computed over the unfiltered set.
"""

import unicodedata
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from taskwise.logging_config import get_logger
from taskwise.models import (
    ALL_CATEGORIES,
    PRIORITY_RANK,
    FilterConfig,
    SortOption,
    StatusFilter,
    Task,
)
from taskwise.utils.datetime_utils import ensure_utc

logger = get_logger(__name__)

DEFAULT_UPCOMING_LIMIT = 3


class ViewStats(BaseModel):
    """Aggregate counters over the whole (unfiltered) task set."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    completed: int = 0
    incomplete: int = 0
    completion_rate_percent: int = Field(default=0, ge=0, le=100)
    overdue_count: int = 0
    upcoming: Tuple[Task, ...] = ()


class DerivedView(BaseModel):
    """Everything a renderer needs for one frame."""

    model_config = ConfigDict(frozen=True)

    ordered_tasks: Tuple[Task, ...] = ()
    facets: Tuple[str, ...] = (ALL_CATEGORIES,)
    stats: ViewStats = Field(default_factory=ViewStats)


def _text_key(value: str) -> Tuple[str, str]:
    """Locale-style collation key: accent- and case-insensitive first, raw text second."""
    stripped = "".join(
        c for c in unicodedata.normalize("NFKD", value) if not unicodedata.combining(c)
    )
    return (stripped.casefold(), value)


_SORT_KEYS: Dict[SortOption, Callable[[Task], tuple]] = {
    SortOption.DEADLINE: lambda t: (t.deadline,),
    SortOption.PRIORITY: lambda t: (-PRIORITY_RANK[t.priority], t.deadline),
    SortOption.TITLE: lambda t: (_text_key(t.title),),
    SortOption.CATEGORY: lambda t: (_text_key(t.category or ""), t.deadline),
}


def sort_key(sort: SortOption, group_by_completion: bool) -> Callable[[Task], tuple]:
    """
    Build the sort key for a sort mode.

    Args:
        sort: Active sort option
        group_by_completion: Put incomplete tasks ahead of completed ones.
            Never applied to title sorting.

    Returns:
        Key function producing a total order
    """
    sort = SortOption(sort)
    base = _SORT_KEYS[sort]
    group = group_by_completion and sort is not SortOption.TITLE

    def key(task: Task) -> tuple:
        prefix = (task.completed,) if group else ()
        return prefix + base(task) + (task.id,)

    return key


def filter_tasks(tasks: Iterable[Task], filter_config: FilterConfig) -> List[Task]:
    """Select the tasks passing the status and category filters."""
    return [task for task in tasks if filter_config.matches(task)]


def order_tasks(tasks: Iterable[Task], filter_config: FilterConfig, sort: SortOption) -> Tuple[Task, ...]:
    """Filter then sort."""
    group = filter_config.status is StatusFilter.ALL
    return tuple(sorted(filter_tasks(tasks, filter_config), key=sort_key(sort, group)))


def category_facets(tasks: Iterable[Task]) -> Tuple[str, ...]:
    """Distinct non-empty categories, sorted, behind a synthetic "all" entry."""
    categories = sorted({task.category for task in tasks if task.category})
    return (ALL_CATEGORIES, *categories)


def completion_rate(completed: int, total: int) -> int:
    """
    Percentage of completed tasks rounded half up to an integer.

    Returns:
        Integer in [0, 100]; 0 when there are no tasks
    """
    if total <= 0:
        return 0
    return (completed * 200 + total) // (2 * total)


def compute_stats(
    tasks: Sequence[Task],
    now: datetime,
    upcoming_limit: int = DEFAULT_UPCOMING_LIMIT,
) -> ViewStats:
    """
    Aggregate counters over the unfiltered task set.

    Args:
        tasks: Reconciled task set
        now: Evaluation time for overdue/upcoming
        upcoming_limit: Maximum number of upcoming tasks returned

    Returns:
        ViewStats for the set
    """
    now = ensure_utc(now)
    total = len(tasks)
    completed = sum(1 for task in tasks if task.completed)
    incomplete = [task for task in tasks if not task.completed]

    upcoming = sorted(
        (task for task in incomplete if task.deadline >= now),
        key=lambda t: (t.deadline, t.id),
    )

    return ViewStats(
        total=total,
        completed=completed,
        incomplete=total - completed,
        completion_rate_percent=completion_rate(completed, total),
        overdue_count=sum(1 for task in incomplete if task.deadline < now),
        upcoming=tuple(upcoming[:max(upcoming_limit, 0)]),
    )


def derive(
    tasks: Sequence[Task],
    filter_config: FilterConfig,
    sort: SortOption,
    now: datetime,
    upcoming_limit: int = DEFAULT_UPCOMING_LIMIT,
) -> DerivedView:
    """
    Derive the view for a task set.

    Pure: identical inputs give an identical view.

    Args:
        tasks: Reconciled task set
        filter_config: Status/category selection
        sort: Sort option
        now: Evaluation time for overdue/upcoming
        upcoming_limit: Maximum number of upcoming tasks

    Returns:
        DerivedView with ordered tasks, facets and stats
    """
    return DerivedView(
        ordered_tasks=order_tasks(tasks, filter_config, SortOption(sort)),
        facets=category_facets(tasks),
        stats=compute_stats(tasks, now, upcoming_limit),
    )


class ViewCache:
    """
    Memoizes the ordering/facet part of the view.

    Keyed on (set version, filter, sort). Stats depend on the clock and are
    recomputed on every pull.
    """

    def __init__(self, upcoming_limit: int = DEFAULT_UPCOMING_LIMIT):
        self.upcoming_limit = upcoming_limit
        self._key: Optional[tuple] = None
        self._ordered: Tuple[Task, ...] = ()
        self._facets: Tuple[str, ...] = (ALL_CATEGORIES,)
        self.hits = 0
        self.misses = 0

    def get(
        self,
        tasks: Sequence[Task],
        version: int,
        filter_config: FilterConfig,
        sort: SortOption,
        now: datetime,
    ) -> DerivedView:
        """Return the view, reusing the cached ordering when nothing it depends on changed."""
        key = (version, filter_config, SortOption(sort))
        if key == self._key:
            self.hits += 1
        else:
            self.misses += 1
            self._ordered = order_tasks(tasks, filter_config, key[2])
            self._facets = category_facets(tasks)
            self._key = key
            logger.debug(f"View recomputed for version={version}, filter={filter_config}, sort={key[2].value}")

        return DerivedView(
            ordered_tasks=self._ordered,
            facets=self._facets,
            stats=compute_stats(tasks, now, self.upcoming_limit),
        )

    def invalidate(self) -> None:
        self._key = None
