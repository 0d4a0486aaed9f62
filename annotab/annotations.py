from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Union

from .grid import Coordinate, Grid, cell_at

logger = logging.getLogger(__name__)

SNAPSHOT_TTL_MS = 3 * 60 * 60 * 1000

IndicatorListener = Callable[[Coordinate, bool], None]
RerenderListener = Callable[[], None]


@dataclass(frozen=True)
class Annotation:
    row: int
    col: int
    text: str
    original_value: str = ""

    @property
    def key(self) -> str:
        return Coordinate(self.row, self.col).key()

    def cells(self) -> Iterator[Coordinate]:
        yield Coordinate(self.row, self.col)

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "col": self.col, "text": self.text, "value": self.original_value}


@dataclass(frozen=True)
class RangeAnnotation:
    start_row: int
    start_col: int
    end_row: int
    end_col: int
    text: str

    @property
    def key(self) -> str:
        return range_key(Coordinate(self.start_row, self.start_col), Coordinate(self.end_row, self.end_col))

    def cells(self) -> Iterator[Coordinate]:
        for row in range(self.start_row, self.end_row + 1):
            for col in range(self.start_col, self.end_col + 1):
                yield Coordinate(row, col)

    def covers(self, coord: Coordinate) -> bool:
        return self.start_row <= coord.row <= self.end_row and self.start_col <= coord.col <= self.end_col

    def to_dict(self) -> dict[str, Any]:
        return {
            "startRow": self.start_row,
            "startCol": self.start_col,
            "endRow": self.end_row,
            "endCol": self.end_col,
            "text": self.text,
            "isRange": True,
        }


Entry = Union[Annotation, RangeAnnotation]


def range_key(start: Coordinate, end: Coordinate) -> str:
    return f"{start.key()}:{end.key()}"


def normalize_range(start: Coordinate, end: Coordinate) -> tuple[Coordinate, Coordinate]:
    return (
        Coordinate(min(start.row, end.row), min(start.col, end.col)),
        Coordinate(max(start.row, end.row), max(start.col, end.col)),
    )


def entry_sort_key(entry: Entry) -> tuple[int, int, int, int, int]:
    if isinstance(entry, RangeAnnotation):
        return (entry.start_row, entry.start_col, 1, entry.end_row, entry.end_col)
    return (entry.row, entry.col, 0, entry.row, entry.col)


def entry_from_dict(data: Any) -> Entry | None:
    """Build an entry from its serialized form; ``None`` for blank or invalid data."""

    if not isinstance(data, dict):
        return None
    text = str(data.get("text", "")).strip()
    if not text:
        return None
    try:
        if data.get("isRange"):
            start, end = normalize_range(
                Coordinate(int(data["startRow"]), int(data["startCol"])),
                Coordinate(int(data["endRow"]), int(data["endCol"])),
            )
            if start.row < 1 or start.col < 1:
                return None
            return RangeAnnotation(start.row, start.col, end.row, end.col, text)
        row, col = int(data["row"]), int(data["col"])
    except (KeyError, TypeError, ValueError):
        return None
    if row < 1 or col < 1:
        return None
    value = data.get("value", data.get("originalValue", ""))
    return Annotation(row, col, text, "" if value is None else str(value))


class AnnotationStore:
    """Comments keyed by coordinate (or rectangle) with has-comment indicators.

    An entry exists only while its trimmed text is non-empty. Each mutation
    reports the indicator state of exactly the cells it touched through
    ``on_indicator``; ``restore`` replaces everything at once and calls
    ``on_rerender`` a single time instead.
    """

    def __init__(
        self,
        grid: Grid,
        *,
        on_indicator: IndicatorListener | None = None,
        on_rerender: RerenderListener | None = None,
    ) -> None:
        self.grid = grid
        self.on_indicator = on_indicator
        self.on_rerender = on_rerender
        self._entries: dict[str, Entry] = {}
        self._touched = False
        self.dirty = False

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if isinstance(key, Coordinate):
            key = key.key()
        return key in self._entries

    def get(self, key: Coordinate | str) -> Entry | None:
        if isinstance(key, Coordinate):
            key = key.key()
        return self._entries.get(key)

    def save(self, coord: Coordinate, text: str) -> Annotation | None:
        clean = (text or "").strip()
        if not clean:
            self.clear(coord)
            return None
        entry = Annotation(coord.row, coord.col, clean, cell_at(self.grid, coord.row, coord.col))
        self._entries[entry.key] = entry
        self._mark_mutated()
        self._emit(coord, True)
        return entry

    def clear(self, coord: Coordinate) -> None:
        removed = self._entries.pop(coord.key(), None)
        if removed is not None:
            self._mark_mutated()
            self._emit(coord, self.has_comment(coord))

    def save_range(self, start: Coordinate, end: Coordinate, text: str) -> RangeAnnotation | None:
        start, end = normalize_range(start, end)
        if start == end:
            return self.save(start, text)  # type: ignore[return-value]
        clean = (text or "").strip()
        if not clean:
            self.clear_range(start, end)
            return None
        entry = RangeAnnotation(start.row, start.col, end.row, end.col, clean)
        self._entries[entry.key] = entry
        self._mark_mutated()
        for cell in entry.cells():
            self._emit(cell, True)
        return entry

    def clear_range(self, start: Coordinate, end: Coordinate) -> None:
        start, end = normalize_range(start, end)
        if start == end:
            self.clear(start)
            return
        removed = self._entries.pop(range_key(start, end), None)
        if removed is not None:
            self._mark_mutated()
            for cell in removed.cells():
                self._emit(cell, self.has_comment(cell))

    def list(self) -> list[Entry]:
        return sorted(self._entries.values(), key=entry_sort_key)

    def has_comment(self, coord: Coordinate) -> bool:
        if coord.key() in self._entries:
            return True
        return any(isinstance(entry, RangeAnnotation) and entry.covers(coord) for entry in self._entries.values())

    def indicators(self) -> set[Coordinate]:
        marked: set[Coordinate] = set()
        for entry in self._entries.values():
            marked.update(entry.cells())
        return marked

    def snapshot(self, now_ms: int) -> dict[str, Any]:
        return {"comments": {key: entry.to_dict() for key, entry in self._entries.items()}, "timestamp": now_ms}

    def mark_clean(self) -> None:
        self.dirty = False

    def restore(self, snapshot: Any, now_ms: int, ttl_ms: int = SNAPSHOT_TTL_MS) -> bool:
        if self._touched:
            logger.debug("Ignoring snapshot restore after edits")
            return False
        if not isinstance(snapshot, dict) or not isinstance(snapshot.get("comments"), dict):
            return False
        timestamp = snapshot.get("timestamp")
        if not isinstance(timestamp, (int, float)) or now_ms - timestamp > ttl_ms:
            return False
        restored: dict[str, Entry] = {}
        for data in snapshot["comments"].values():
            entry = entry_from_dict(data)
            if entry is not None:
                restored[entry.key] = entry
        if not restored:
            return False
        self._entries = restored
        self.dirty = False
        if self.on_rerender is not None:
            self.on_rerender()
        return True

    def _mark_mutated(self) -> None:
        self._touched = True
        self.dirty = True

    def _emit(self, coord: Coordinate, on: bool) -> None:
        if self.on_indicator is not None:
            self.on_indicator(coord, on)
