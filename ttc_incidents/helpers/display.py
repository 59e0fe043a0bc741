"""Pure helpers for the live-disruption view.

Two concerns:

- Filtering: threads that belong in the scheduled-closures view, or whose
  stored data is unusable, never appear in the active view.
- Grouping: threads whose base routes overlap ("37" and "37A") are shown
  together. This is display-side deduplication only; stored thread rows
  are never merged.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from ttc_incidents.helpers.categorization import is_planned_category
from ttc_incidents.helpers.route_extraction import base_route


class DisplayableThread(Protocol):
    """Fields the display helpers read from a thread row."""

    thread_id: str
    title: str
    affected_routes: list[str]
    categories: list[str]
    is_hidden: bool
    created_at: datetime
    updated_at: datetime


def is_displayable_thread(thread: DisplayableThread) -> bool:
    """
    Check whether a thread belongs in the live-disruption view.

    Each of these is independently sufficient to exclude it:

    - the thread is hidden
    - a category marks it planned/scheduled
    - the title is missing or blank
    - a timestamp is not a datetime (malformed row)

    Resolved threads stay displayable until hidden, so the "service resumed"
    state is visible for the grace period.
    """
    if thread.is_hidden:
        return False
    if is_planned_category(thread.categories or []):
        return False
    if not (thread.title or "").strip():
        return False
    return isinstance(thread.created_at, datetime) and isinstance(thread.updated_at, datetime)


def group_threads_by_route_overlap[T: DisplayableThread](threads: Sequence[T]) -> list[list[T]]:
    """
    Group threads whose base routes overlap, transitively.

    Threads keep their input order inside a group; groups are ordered by
    their first member. Threads with no routes are never grouped.

    Args:
        threads: Threads to group, usually newest first

    Returns:
        List of groups, each a non-empty list of threads
    """
    parent = list(range(len(threads)))

    def find(index: int) -> int:
        while parent[index] != index:
            parent[index] = parent[parent[index]]
            index = parent[index]
        return index

    owner: dict[str, int] = {}
    for index, thread in enumerate(threads):
        for route in thread.affected_routes or []:
            key = base_route(route)
            if key in owner:
                root_a, root_b = find(owner[key]), find(index)
                if root_a != root_b:
                    parent[max(root_a, root_b)] = min(root_a, root_b)
            else:
                owner[key] = index

    groups: dict[int, list[T]] = {}
    for index, thread in enumerate(threads):
        groups.setdefault(find(index), []).append(thread)
    return list(groups.values())


def group_base_routes(threads: Sequence[DisplayableThread]) -> list[str]:
    """
    Union of base routes across threads, first-seen order.

    Example:
        >>> from types import SimpleNamespace
        >>> group_base_routes([SimpleNamespace(affected_routes=["37A", "52"]), SimpleNamespace(affected_routes=["37"])])
        ['37', '52']
    """
    routes: list[str] = []
    for thread in threads:
        for route in thread.affected_routes or []:
            key = base_route(route)
            if key not in routes:
                routes.append(key)
    return routes
