from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .annotations import AnnotationStore, Entry, normalize_range, range_key
from .filters import FilterSet
from .grid import Coordinate, Grid, cell_at
from .layout import LayoutEngine, LayoutState
from .record import iso_utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    start: Coordinate
    end: Coordinate

    @property
    def is_single(self) -> bool:
        return self.start == self.end

    @property
    def key(self) -> str:
        return self.start.key() if self.is_single else range_key(self.start, self.end)

    def title(self) -> str:
        if self.is_single:
            return f"Comment on R{self.start.row} C{self.start.col}"
        rows = f"R{self.start.row}" if self.start.row == self.end.row else f"R{self.start.row}-R{self.end.row}"
        cols = f"C{self.start.col}" if self.start.col == self.end.col else f"C{self.start.col}-C{self.end.col}"
        return f"Comment on {rows} {cols}"


class ResizeDrag:
    """One column-edge drag; widths are taken relative to the width at drag start."""

    def __init__(self, controller: "ReviewController", col: int) -> None:
        self.controller = controller
        self.col = col
        self.start_width = controller.layout.column_width(col)
        self.active = True

    def move(self, delta: float) -> int:
        if not self.active:
            return self.controller.layout.column_width(self.col)
        return self.controller.layout.resize_column(self.col, self.start_width, delta)

    def release(self) -> None:
        self.active = False
        if self.controller.active_drag is self:
            self.controller.active_drag = None


class ReviewController:
    """Grid interactions independent of any rendering technology.

    ``on_select``, ``on_resize_start`` and ``on_header_menu`` are the entry
    points a view calls; the page script wires the same operations to DOM
    events.
    """

    def __init__(self, grid: Grid, mode: str = "csv", file_name: str = "") -> None:
        self.grid = grid
        self.mode = mode
        self.file_name = file_name
        self.layout = LayoutEngine(LayoutState.for_grid(grid.column_count, mode), grid.row_count)
        self.filters = FilterSet()
        self.indicators: set[Coordinate] = set()
        self.render_count = 0
        self.store = AnnotationStore(grid, on_indicator=self._set_indicator, on_rerender=self._rerender)
        self.selection: Selection | None = None
        self.active_drag: ResizeDrag | None = None
        self.menu_column: int | None = None
        self.menu_row: int | None = None
        self.visibility = [True] * grid.row_count

    def on_select(self, coord: Coordinate, end: Coordinate | None = None) -> dict[str, Any]:
        start, stop = normalize_range(coord, end or coord)
        self.selection = Selection(start, stop)
        existing = self.store.get(self.selection.key)
        if self.selection.is_single:
            value = cell_at(self.grid, start.row, start.col)
            preview = f"Cell value: {value or '(empty)'}"
        else:
            preview = f"Selected {stop.row - start.row + 1} x {stop.col - start.col + 1} cells"
        return {
            "key": self.selection.key,
            "title": self.selection.title(),
            "preview": preview,
            "text": existing.text if existing is not None else "",
        }

    def on_select_row(self, row: int, end_row: int | None = None) -> dict[str, Any]:
        width = max(1, self.grid.column_count)
        return self.on_select(Coordinate(row, 1), Coordinate(end_row or row, width))

    def save_current(self, text: str) -> Entry | None:
        if self.selection is None:
            return None
        selection = self.selection
        self.selection = None
        if selection.is_single:
            return self.store.save(selection.start, text)
        return self.store.save_range(selection.start, selection.end, text)

    def clear_current(self) -> None:
        if self.selection is None:
            return
        selection = self.selection
        self.selection = None
        self.store.clear_range(selection.start, selection.end)

    def on_resize_start(self, col: int) -> ResizeDrag | None:
        if self.active_drag is not None:
            self.active_drag.release()
        try:
            self.active_drag = ResizeDrag(self, col)
        except IndexError as error:
            logger.debug("Ignoring resize: %s", error)
            return None
        return self.active_drag

    def fit_columns(self, box_width: float) -> bool:
        return self.layout.fit_to_viewport(box_width)

    def on_header_menu(self, col: int) -> dict[str, Any]:
        self.menu_column = col
        return {
            "column": col,
            "frozen": self.layout.state.freeze_column_count == col,
            "filtered": col in self.filters,
        }

    def on_row_menu(self, row: int) -> dict[str, Any]:
        self.menu_row = row
        return {"row": row, "frozen": self.layout.state.freeze_row_count == row}

    def apply_filter_action(self, action: str, keyword: str | None = None) -> list[bool]:
        col, self.menu_column = self.menu_column, None
        if col is None:
            return self.visibility
        try:
            self.filters.set_action(col, action, keyword)
        except ValueError as error:
            logger.debug("Ignoring filter on column %d: %s", col, error)
            return self.visibility
        return self.refresh_visibility()

    def freeze_menu_column(self, checked: bool) -> None:
        if self.menu_column is not None:
            self.layout.toggle_freeze_column(self.menu_column, checked)

    def freeze_menu_row(self, checked: bool) -> None:
        if self.menu_row is not None:
            self.layout.toggle_freeze_row(self.menu_row, checked)

    def refresh_visibility(self) -> list[bool]:
        self.visibility = self.filters.visibility(self.grid)
        self.layout.set_visibility(self.visibility)
        return self.visibility

    def submission(self, reason: str, summary: str | None = None) -> dict[str, Any]:
        """The ``/exit`` body for the current comments; the store is clean afterwards."""

        data: dict[str, Any] = {
            "file": self.file_name,
            "mode": self.mode,
            "reason": reason,
            "timestamp": iso_utc_now(),
            "comments": [entry.to_dict() for entry in self.store.list()],
        }
        if summary and summary.strip():
            data["summary"] = summary.strip()
        self.store.mark_clean()
        return data

    def visible_rows(self) -> list[int]:
        return [index for index, shown in enumerate(self.visibility, start=1) if shown]

    def _set_indicator(self, coord: Coordinate, on: bool) -> None:
        if on:
            self.indicators.add(coord)
        else:
            self.indicators.discard(coord)

    def _rerender(self) -> None:
        self.indicators = self.store.indicators()
        self.render_count += 1
