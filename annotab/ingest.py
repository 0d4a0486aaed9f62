from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from markdown_it import MarkdownIt

from .delimited import parse_delimited
from .diff_grid import diff_to_grid
from .encoding import decode_bytes
from .grid import Grid

logger = logging.getLogger(__name__)

DELIMITERS = {".csv": ",", ".tsv": "\t"}
MARKDOWN_EXTENSIONS = {".md", ".markdown"}
DIFF_EXTENSIONS = {".diff", ".patch"}


class IngestError(RuntimeError):
    pass


@dataclass(frozen=True)
class IngestResult:
    grid: Grid
    mode: str
    title: str
    encoding: str
    preview_html: str | None = None


def classify_mode(path: Path) -> str:
    ext = path.suffix.lower()
    if ext in DELIMITERS:
        return "csv"
    if ext in MARKDOWN_EXTENSIONS:
        return "markdown"
    if ext in DIFF_EXTENSIONS:
        return "diff"
    return "text"


def render_preview(text: str) -> str:
    md = MarkdownIt("commonmark", {"breaks": True}).enable("table").enable("strikethrough")
    return md.render(text)


def lines_to_grid(text: str) -> Grid:
    return Grid.from_rows(([line] for line in text.replace("\r\n", "\n").split("\n")), labels=("Text",))


def read_source(path: Path) -> bytes:
    if not path.exists():
        raise IngestError(f"File not found: {path}")
    if path.is_dir():
        raise IngestError(f"Not a file: {path}")
    try:
        return path.read_bytes()
    except OSError as error:
        raise IngestError(f"Cannot read {path}: {error}") from error


def ingest(path: Path, encoding_override: str | None = None) -> IngestResult:
    raw = read_source(path)
    text, encoding = decode_bytes(raw, encoding_override)
    mode = classify_mode(path)
    preview_html = None

    if mode == "csv":
        rows = parse_delimited(text, DELIMITERS[path.suffix.lower()])
        width = max((len(row) for row in rows), default=0)
        grid = Grid.from_rows(rows, labels=[f"C{index}" for index in range(1, max(1, width) + 1)])
    elif mode == "diff":
        try:
            grid = diff_to_grid(text)
        except RuntimeError as error:
            logger.warning("Cannot parse %s as a diff (%s), showing it as text", path.name, error)
            mode = "text"
            grid = lines_to_grid(text)
    else:
        grid = lines_to_grid(text)
        if mode == "markdown":
            preview_html = render_preview(text)

    logger.debug("Loaded %s as %s: %d rows x %d cols", path.name, mode, grid.row_count, grid.column_count)
    return IngestResult(grid=grid, mode=mode, title=path.name, encoding=encoding, preview_html=preview_html)
