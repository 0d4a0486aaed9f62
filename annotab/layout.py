from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Sequence

ROW_HEADER_WIDTH = 28
MIN_COL_WIDTH = 80
MAX_COL_WIDTH = 420
DEFAULT_COL_WIDTH = 120
TEXT_COL_WIDTH = 240
HEADER_HEIGHT = 34
ROW_HEIGHT = 34
FIT_SCALE_MIN = 0.4
FIT_SCALE_MAX = 2.0
FIT_GUTTER = 24


class PaintLayer(IntEnum):
    BODY = 0
    FROZEN_EDGE = 1
    CORNER = 2


# CSS z-index per cell role; the browser page uses the same table.
Z_INDEX = {
    "body": 1,
    "rowHeader": 2,
    "columnHeader": 3,
    "frozenColumn": 4,
    "frozenRow": 5,
    "frozenColumnHeader": 6,
    "frozenRowHeader": 7,
    "corner": 8,
}


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def js_round(value: float) -> int:
    return int(math.floor(value + 0.5))


def layout_constants() -> dict[str, int | float]:
    return {
        "rowHeaderWidth": ROW_HEADER_WIDTH,
        "minColWidth": MIN_COL_WIDTH,
        "maxColWidth": MAX_COL_WIDTH,
        "defaultColWidth": DEFAULT_COL_WIDTH,
        "textColWidth": TEXT_COL_WIDTH,
        "fitScaleMin": FIT_SCALE_MIN,
        "fitScaleMax": FIT_SCALE_MAX,
        "fitGutter": FIT_GUTTER,
    }


def initial_column_widths(column_count: int, mode: str) -> list[int]:
    count = max(1, column_count)
    if mode != "csv" and count == 1:
        return [TEXT_COL_WIDTH]
    return [DEFAULT_COL_WIDTH] * count


@dataclass
class LayoutState:
    column_widths: list[int]
    freeze_column_count: int = 0
    freeze_row_count: int = 0

    @classmethod
    def for_grid(cls, column_count: int, mode: str) -> "LayoutState":
        return cls(column_widths=initial_column_widths(column_count, mode))

    @property
    def column_count(self) -> int:
        return len(self.column_widths)


@dataclass(frozen=True)
class StickyOffsets:
    column_left: dict[int, int] = field(default_factory=dict)
    row_top: dict[int, int] = field(default_factory=dict)


class LayoutEngine:
    """Sticky geometry for frozen leading rows and columns.

    Rows and columns are 1-indexed. Column 0 is the row-number header and row
    0 is the column header row.
    """

    def __init__(
        self,
        state: LayoutState,
        row_count: int,
        *,
        header_height: int = HEADER_HEIGHT,
        row_height: int = ROW_HEIGHT,
        row_header_width: int = ROW_HEADER_WIDTH,
    ) -> None:
        self.state = state
        self.row_count = row_count
        self.header_height = header_height
        self.row_header_width = row_header_width
        self.row_heights = [row_height] * row_count
        self.visible = [True] * row_count
        self.offsets = StickyOffsets()
        self.recompute()

    def set_freeze_columns(self, count: int) -> None:
        self.state.freeze_column_count = int(clamp(count, 0, self.state.column_count))
        self.recompute()

    def set_freeze_rows(self, count: int) -> None:
        self.state.freeze_row_count = int(clamp(count, 0, self.row_count))
        self.recompute()

    def toggle_freeze_column(self, col: int, checked: bool) -> None:
        self.set_freeze_columns(col if checked else 0)

    def toggle_freeze_row(self, row: int, checked: bool) -> None:
        self.set_freeze_rows(row if checked else 0)

    def _check_column(self, col: int) -> None:
        if not 1 <= col <= self.state.column_count:
            raise IndexError(f"Column {col} is outside 1..{self.state.column_count}")

    def column_width(self, col: int) -> int:
        self._check_column(col)
        return self.state.column_widths[col - 1]

    def set_row_height(self, row: int, height: int) -> None:
        if not 1 <= row <= self.row_count:
            raise IndexError(f"Row {row} is outside 1..{self.row_count}")
        self.row_heights[row - 1] = max(0, int(height))
        self.recompute()

    def set_visibility(self, visible: Sequence[bool]) -> None:
        if len(visible) != self.row_count:
            raise ValueError(f"Expected {self.row_count} visibility flags, got {len(visible)}")
        self.visible = list(visible)
        self.recompute()

    def resize_column(self, col: int, start_width: int, delta: float) -> int:
        self._check_column(col)
        width = js_round(clamp(start_width + delta, MIN_COL_WIDTH, MAX_COL_WIDTH))
        self.state.column_widths[col - 1] = width
        self.recompute()
        return width

    def fit_to_width(self, available: float) -> bool:
        total = sum(self.state.column_widths)
        if total == 0 or available <= 0:
            return False
        scale = clamp(available / total, FIT_SCALE_MIN, FIT_SCALE_MAX)
        self.state.column_widths = [
            int(clamp(js_round(width * scale), MIN_COL_WIDTH, MAX_COL_WIDTH)) for width in self.state.column_widths
        ]
        self.recompute()
        return True

    def fit_to_viewport(self, box_width: float) -> bool:
        return self.fit_to_width(box_width - self.row_header_width - FIT_GUTTER)

    def recompute(self) -> StickyOffsets:
        column_left: dict[int, int] = {}
        left = self.row_header_width
        for index, width in enumerate(self.state.column_widths[: self.state.freeze_column_count], start=1):
            column_left[index] = left
            left += width

        row_top: dict[int, int] = {}
        top = self.header_height
        for index in range(1, self.state.freeze_row_count + 1):
            row_top[index] = top
            if self.visible[index - 1]:
                top += self.row_heights[index - 1]

        self.offsets = StickyOffsets(column_left=column_left, row_top=row_top)
        return self.offsets

    def is_column_frozen(self, col: int) -> bool:
        return 1 <= col <= self.state.freeze_column_count

    def is_row_frozen(self, row: int) -> bool:
        return 1 <= row <= self.state.freeze_row_count

    def paint_layer(self, row: int, col: int) -> PaintLayer:
        frozen_row = self.is_row_frozen(row)
        frozen_col = self.is_column_frozen(col)
        if frozen_row and frozen_col:
            return PaintLayer.CORNER
        if frozen_row or frozen_col:
            return PaintLayer.FROZEN_EDGE
        return PaintLayer.BODY

    def z_index(self, row: int, col: int) -> int:
        if row == 0:
            return Z_INDEX["frozenColumnHeader"] if self.is_column_frozen(col) else Z_INDEX["columnHeader"]
        if col == 0:
            return Z_INDEX["frozenRowHeader"] if self.is_row_frozen(row) else Z_INDEX["rowHeader"]
        layer = self.paint_layer(row, col)
        if layer is PaintLayer.CORNER:
            return Z_INDEX["corner"]
        if layer is PaintLayer.FROZEN_EDGE:
            return Z_INDEX["frozenRow"] if self.is_row_frozen(row) else Z_INDEX["frozenColumn"]
        return Z_INDEX["body"]
