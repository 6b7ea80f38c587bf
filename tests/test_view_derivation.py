"""
Tests for the view derivation engine.

Tests cover:
- Each sort mode and its tie-breaks
- Incomplete-before-completed grouping
- Filtering
- Aggregate counters and upcoming list
- Category facets
- Memoization
"""

from datetime import timedelta

import pytest

from taskwise.models import FilterConfig, SortOption, StatusFilter
from taskwise.services.view_derivation import (
    ViewCache,
    category_facets,
    completion_rate,
    compute_stats,
    derive,
)
from tests.helpers import NOW

ALL = FilterConfig(status=StatusFilter.ALL)


def titles(view):
    return [task.title for task in view.ordered_tasks]


@pytest.fixture
def pair(make_task):
    """Two incomplete tasks: B is high priority due later, A is low priority due sooner."""
    return [
        make_task("1", title="B", priority="high", days=2),
        make_task("2", title="A", priority="low", days=1),
    ]


class TestSorting:
    """Tests for the sort modes."""

    def test_sort_by_title(self, pair):
        assert titles(derive(pair, ALL, SortOption.TITLE, NOW)) == ["A", "B"]

    def test_sort_by_priority(self, pair):
        assert titles(derive(pair, ALL, SortOption.PRIORITY, NOW)) == ["B", "A"]

    def test_sort_by_deadline(self, pair):
        assert titles(derive(pair, ALL, SortOption.DEADLINE, NOW)) == ["A", "B"]

    def test_priority_ties_broken_by_deadline(self, make_task):
        tasks = [
            make_task("1", title="late", priority="high", days=5),
            make_task("2", title="soon", priority="high", days=1),
            make_task("3", title="medium", priority="medium", days=0.5),
        ]

        assert titles(derive(tasks, ALL, "priority", NOW)) == ["soon", "late", "medium"]

    def test_category_sort_puts_uncategorized_first(self, make_task):
        tasks = [
            make_task("1", title="math", category="Math", days=1),
            make_task("2", title="none", category=None, days=3),
            make_task("3", title="art", category="Art", days=2),
        ]

        assert titles(derive(tasks, ALL, SortOption.CATEGORY, NOW)) == ["none", "art", "math"]

    def test_category_ties_broken_by_deadline(self, make_task):
        tasks = [
            make_task("1", title="later", category="Math", days=4),
            make_task("2", title="sooner", category="Math", days=1),
        ]

        assert titles(derive(tasks, ALL, SortOption.CATEGORY, NOW)) == ["sooner", "later"]

    def test_title_sort_is_case_and_accent_insensitive(self, make_task):
        tasks = [
            make_task("1", title="banana"),
            make_task("2", title="Écrire"),
            make_task("3", title="apple"),
            make_task("4", title="Cherry"),
        ]

        assert titles(derive(tasks, ALL, SortOption.TITLE, NOW)) == ["apple", "banana", "Cherry", "Écrire"]

    def test_identical_keys_fall_back_to_id(self, make_task):
        tasks = [make_task("b", title="Same"), make_task("a", title="Same")]

        view = derive(tasks, ALL, SortOption.DEADLINE, NOW)

        assert [task.id for task in view.ordered_tasks] == ["a", "b"]

    @pytest.mark.parametrize("sort", list(SortOption))
    def test_order_independent_of_input_order(self, make_task, sort):
        tasks = [
            make_task("1", title="x", days=1, priority="low", category="B"),
            make_task("2", title="x", days=1, priority="low", category="B"),
            make_task("3", title="y", days=2, priority="high", category="A", completed=True),
            make_task("4", title="z", days=-1, priority="medium"),
        ]

        forward = derive(tasks, ALL, sort, NOW)
        backward = derive(list(reversed(tasks)), ALL, sort, NOW)

        assert forward == backward
        assert derive(tasks, ALL, sort, NOW) == forward


class TestCompletionGrouping:
    """Tests for the incomplete-before-completed rule."""

    @pytest.mark.parametrize("sort", [SortOption.DEADLINE, SortOption.PRIORITY, SortOption.CATEGORY])
    def test_incomplete_first_when_showing_all(self, make_task, sort):
        tasks = [
            make_task("1", title="done", days=-5, priority="high", completed=True),
            make_task("2", title="open", days=5, priority="low"),
        ]

        assert titles(derive(tasks, ALL, sort, NOW)) == ["open", "done"]

    def test_title_sort_ignores_completion(self, make_task):
        tasks = [
            make_task("1", title="B open"),
            make_task("2", title="A done", completed=True),
        ]

        assert titles(derive(tasks, ALL, SortOption.TITLE, NOW)) == ["A done", "B open"]

    def test_no_grouping_under_completed_filter(self, make_task):
        tasks = [
            make_task("1", title="later", days=3, completed=True),
            make_task("2", title="sooner", days=1, completed=True),
        ]

        view = derive(tasks, FilterConfig(status=StatusFilter.COMPLETED), SortOption.DEADLINE, NOW)

        assert titles(view) == ["sooner", "later"]


class TestFiltering:
    """Tests for status and category selection."""

    def test_incomplete_filter(self, make_task):
        tasks = [make_task("1", title="open"), make_task("2", title="done", completed=True)]

        view = derive(tasks, FilterConfig(status="incomplete"), SortOption.DEADLINE, NOW)

        assert titles(view) == ["open"]

    def test_category_filter(self, make_task):
        tasks = [make_task("1", title="m", category="Math"), make_task("2", title="a", category="Art")]

        view = derive(tasks, FilterConfig(category="Art"), SortOption.DEADLINE, NOW)

        assert titles(view) == ["a"]

    def test_toggled_task_leaves_incomplete_view_but_counts_stay(self, pair):
        incomplete = FilterConfig(status=StatusFilter.INCOMPLETE)
        before = derive(pair, incomplete, SortOption.DEADLINE, NOW)

        toggled = [pair[0].model_copy(update={"completed": True}), pair[1]]
        after = derive(toggled, incomplete, SortOption.DEADLINE, NOW)

        assert "B" not in titles(after)
        assert after.stats.total == before.stats.total
        assert after.stats.completed == before.stats.completed + 1


class TestStats:
    """Tests for the aggregate counters."""

    def test_empty_set(self):
        stats = compute_stats([], NOW)

        assert stats.total == 0
        assert stats.completion_rate_percent == 0
        assert stats.overdue_count == 0
        assert stats.upcoming == ()

    def test_counts(self, make_task):
        tasks = [
            make_task("1", completed=True),
            make_task("2", completed=True),
            make_task("3"),
        ]

        stats = compute_stats(tasks, NOW)

        assert (stats.total, stats.completed, stats.incomplete) == (3, 2, 1)
        assert stats.completion_rate_percent == 67

    @pytest.mark.parametrize("completed,total,expected", [
        (0, 5, 0),
        (5, 5, 100),
        (1, 3, 33),
        (1, 8, 13),   # 12.5 rounds half up
        (1, 200, 1),  # 0.5 rounds half up
        (0, 0, 0),
    ])
    def test_completion_rate_rounding(self, completed, total, expected):
        assert completion_rate(completed, total) == expected

    def test_overdue_counts_only_incomplete_strictly_past(self, make_task):
        tasks = [
            make_task("1", days=-1),
            make_task("2", days=-1, completed=True),
            make_task("3", days=0),
            make_task("4", days=1),
        ]

        assert compute_stats(tasks, NOW).overdue_count == 1

    def test_upcoming_nearest_three_incomplete(self, make_task):
        tasks = [
            make_task("1", title="d4", days=4),
            make_task("2", title="d1", days=1),
            make_task("3", title="now", days=0),
            make_task("4", title="d2", days=2),
            make_task("5", title="past", days=-1),
            make_task("6", title="done", days=0.5, completed=True),
        ]

        stats = compute_stats(tasks, NOW)

        assert [task.title for task in stats.upcoming] == ["now", "d1", "d2"]

    def test_upcoming_limit_configurable(self, make_task):
        tasks = [make_task(str(i), days=i + 1) for i in range(5)]

        assert len(compute_stats(tasks, NOW, upcoming_limit=5).upcoming) == 5

    def test_stats_ignore_active_filter(self, make_task):
        tasks = [make_task("1", category="Math"), make_task("2", category="Art", completed=True)]

        view = derive(tasks, FilterConfig(category="Math", status="incomplete"), SortOption.DEADLINE, NOW)

        assert len(view.ordered_tasks) == 1
        assert view.stats.total == 2
        assert view.stats.completed == 1


class TestFacets:
    """Tests for the category facet list."""

    def test_facets_sorted_with_all_first(self, make_task):
        tasks = [
            make_task("1", category="Math"),
            make_task("2", category="Art"),
            make_task("3", category="Math"),
            make_task("4", category=None),
        ]

        assert category_facets(tasks) == ("all", "Art", "Math")

    def test_facets_for_empty_set(self):
        assert category_facets([]) == ("all",)

    def test_facets_ignore_filter(self, make_task):
        tasks = [make_task("1", category="Math"), make_task("2", category="Art")]

        view = derive(tasks, FilterConfig(category="Math"), SortOption.DEADLINE, NOW)

        assert view.facets == ("all", "Art", "Math")


class TestViewCache:
    """Tests for memoization keyed on (version, filter, sort)."""

    def test_same_key_reuses_ordering(self, pair):
        cache = ViewCache()

        first = cache.get(pair, 1, ALL, SortOption.TITLE, NOW)
        second = cache.get(pair, 1, ALL, SortOption.TITLE, NOW)

        assert first == second
        assert (cache.misses, cache.hits) == (1, 1)

    def test_new_version_recomputes(self, pair, make_task):
        cache = ViewCache()
        cache.get(pair, 1, ALL, SortOption.TITLE, NOW)

        view = cache.get(pair + [make_task("3", title="C")], 2, ALL, SortOption.TITLE, NOW)

        assert titles(view) == ["A", "B", "C"]
        assert cache.misses == 2

    def test_filter_or_sort_change_recomputes(self, pair):
        cache = ViewCache()
        cache.get(pair, 1, ALL, SortOption.TITLE, NOW)

        by_priority = cache.get(pair, 1, ALL, SortOption.PRIORITY, NOW)
        filtered = cache.get(pair, 1, FilterConfig(status="completed"), SortOption.PRIORITY, NOW)

        assert titles(by_priority) == ["B", "A"]
        assert filtered.ordered_tasks == ()
        assert cache.misses == 3

    def test_stats_follow_the_clock(self, pair):
        cache = ViewCache()

        early = cache.get(pair, 1, ALL, SortOption.TITLE, NOW)
        late = cache.get(pair, 1, ALL, SortOption.TITLE, NOW + timedelta(days=3))

        assert early.stats.overdue_count == 0
        assert late.stats.overdue_count == 2
        assert cache.hits == 1

    def test_cached_view_matches_derive(self, pair):
        cache = ViewCache()

        assert cache.get(pair, 7, ALL, SortOption.PRIORITY, NOW) == derive(pair, ALL, SortOption.PRIORITY, NOW)
