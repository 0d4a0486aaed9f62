from __future__ import annotations

import logging
from typing import Callable, Mapping

from .grid import Grid, cell_at

logger = logging.getLogger(__name__)

Predicate = Callable[[str], bool]

FILTER_ACTIONS = ("not-empty", "empty", "contains", "not-contains")


def make_predicate(action: str, keyword: str | None = None) -> Predicate:
    if action == "not-empty":
        return lambda value: (value or "").strip() != ""
    if action == "empty":
        return lambda value: (value or "").strip() == ""
    if action in {"contains", "not-contains"}:
        if not keyword:
            raise ValueError(f"Filter {action!r} needs a keyword")
        lookup = keyword.lower()
        if action == "contains":
            return lambda value: lookup in (value or "").lower()
        return lambda value: lookup not in (value or "").lower()
    raise ValueError(f"Unknown filter action: {action}")


def accepts(predicate: Predicate, value: str) -> bool:
    try:
        return bool(predicate(value))
    except Exception as error:  # noqa: BLE001
        logger.debug("Filter predicate failed on %r: %s", value, error)
        return True


def apply_filters(grid: Grid, predicates: Mapping[int, Predicate]) -> list[bool]:
    items = sorted(predicates.items())
    return [
        all(accepts(predicate, cell_at(grid, row, col)) for col, predicate in items)
        for row in range(1, grid.row_count + 1)
    ]


class FilterSet:
    """Per-column predicates keyed by 1-indexed column."""

    def __init__(self) -> None:
        self._predicates: dict[int, Predicate] = {}

    def __contains__(self, col: int) -> bool:
        return col in self._predicates

    def __len__(self) -> int:
        return len(self._predicates)

    def set(self, col: int, predicate: Predicate) -> None:
        self._predicates[col] = predicate

    def set_action(self, col: int, action: str, keyword: str | None = None) -> None:
        if action == "reset":
            self.clear(col)
            return
        self.set(col, make_predicate(action, keyword))

    def clear(self, col: int) -> None:
        self._predicates.pop(col, None)

    def clear_all(self) -> None:
        self._predicates.clear()

    def active_columns(self) -> list[int]:
        return sorted(self._predicates)

    def visibility(self, grid: Grid) -> list[bool]:
        return apply_filters(grid, self._predicates)
