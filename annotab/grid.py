from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, NamedTuple


class Coordinate(NamedTuple):
    """1-indexed (row, column) address of a grid cell."""

    row: int
    col: int

    def key(self) -> str:
        return f"{self.row}-{self.col}"

    @classmethod
    def from_key(cls, key: str) -> "Coordinate":
        row, _, col = str(key).partition("-")
        try:
            return cls(int(row), int(col))
        except ValueError as error:
            raise ValueError(f"Invalid coordinate key: {key!r}") from error


@dataclass(frozen=True)
class Grid:
    rows: tuple[tuple[str, ...], ...] = ()
    labels: tuple[str, ...] = field(default=())

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[str]], labels: Iterable[str] | None = None) -> "Grid":
        frozen = tuple(tuple(str(value) for value in row) for row in rows)
        return cls(rows=frozen, labels=tuple(labels or ()))

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return column_count_of(self)

    def row_values(self, row: int) -> list[str]:
        width = self.column_count
        return [cell_at(self, row, col) for col in range(1, width + 1)]

    def column_labels(self, minimum: int = 0) -> list[str]:
        width = max(minimum, self.column_count)
        labels = list(self.labels[:width])
        labels.extend(f"C{index}" for index in range(len(labels) + 1, width + 1))
        return labels

    def to_json_rows(self) -> list[list[str]]:
        return [list(row) for row in self.rows]


def column_count_of(grid: Grid) -> int:
    return max((len(row) for row in grid.rows), default=0)


def cell_at(grid: Grid, row: int, col: int) -> str:
    if row < 1 or col < 1 or row > len(grid.rows):
        return ""
    values = grid.rows[row - 1]
    if col > len(values):
        return ""
    return values[col - 1]
