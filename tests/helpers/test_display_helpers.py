"""Tests for live-disruption view filtering and grouping."""

from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any

import pytest

from ttc_incidents.helpers.display import (
    group_base_routes,
    group_threads_by_route_overlap,
    is_displayable_thread,
)

NOW = datetime(2025, 11, 20, 12, 0, tzinfo=UTC)


def make_thread(thread_id: str = "thread-live-504", **overrides: Any) -> SimpleNamespace:  # noqa: ANN401
    """Build a thread-shaped object with displayable defaults."""
    fields: dict[str, Any] = {
        "thread_id": thread_id,
        "title": "504 King: Delays",
        "affected_routes": ["504"],
        "categories": ["DELAY"],
        "is_hidden": False,
        "is_resolved": False,
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestIsDisplayableThread:
    """Tests for is_displayable_thread."""

    def test_active_thread_is_displayable(self) -> None:
        """Test an ordinary active thread is shown."""
        assert is_displayable_thread(make_thread()) is True

    def test_resolved_but_visible_thread_is_displayable(self) -> None:
        """Test resolved threads stay visible during the grace period."""
        assert is_displayable_thread(make_thread(is_resolved=True, categories=["SERVICE_RESUMED"])) is True

    @pytest.mark.parametrize(
        "overrides",
        [
            {"is_hidden": True},
            {"categories": ["DELAY", "PLANNED_SERVICE_DISRUPTION"]},
            {"title": "   "},
            {"title": None},
            {"created_at": None},
            {"updated_at": "2025-11-20T12:00:00"},
        ],
    )
    def test_excluded_threads(self, overrides: dict[str, Any]) -> None:
        """Test each exclusion rule alone hides the thread."""
        assert is_displayable_thread(make_thread(**overrides)) is False


class TestGroupThreadsByRouteOverlap:
    """Tests for group_threads_by_route_overlap."""

    def test_groups_transitively(self) -> None:
        """Test 37 / 37A+52 / 52 chain into one group, others stay apart."""
        a = make_thread("a", affected_routes=["37"])
        b = make_thread("b", affected_routes=["504"])
        c = make_thread("c", affected_routes=["37A", "52"])
        d = make_thread("d", affected_routes=["52"])
        e = make_thread("e", affected_routes=[])

        groups = group_threads_by_route_overlap([a, b, c, d, e])

        assert [[t.thread_id for t in group] for group in groups] == [["a", "c", "d"], ["b"], ["e"]]

    def test_threads_without_routes_are_never_grouped(self) -> None:
        """Test route-less threads each form their own group."""
        threads = [make_thread("x", affected_routes=[]), make_thread("y", affected_routes=[])]

        groups = group_threads_by_route_overlap(threads)

        assert len(groups) == 2

    def test_late_bridge_merges_earlier_groups(self) -> None:
        """Test a later thread can join two earlier groups."""
        a = make_thread("a", affected_routes=["504"])
        b = make_thread("b", affected_routes=["505"])
        c = make_thread("c", affected_routes=["505A", "504B"])

        groups = group_threads_by_route_overlap([a, b, c])

        assert [[t.thread_id for t in group] for group in groups] == [["a", "b", "c"]]

    def test_empty_input(self) -> None:
        """Test no threads gives no groups."""
        assert group_threads_by_route_overlap([]) == []


class TestGroupBaseRoutes:
    """Tests for group_base_routes."""

    def test_union_in_first_seen_order(self) -> None:
        """Test base routes are merged in order."""
        threads = [make_thread(affected_routes=["37A", "52"]), make_thread(affected_routes=["37", "Line 1"])]

        assert group_base_routes(threads) == ["37", "52", "Line 1"]
