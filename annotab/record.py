from __future__ import annotations

import datetime as dt
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .annotations import entry_from_dict, entry_sort_key

logger = logging.getLogger(__name__)


class PayloadError(ValueError):
    pass


def iso_utc_now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_exit_body(raw: bytes) -> dict[str, Any]:
    text = raw.decode("utf-8", errors="replace").strip()
    if not text:
        return {}
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as error:
        raise PayloadError(f"Invalid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise PayloadError("Exit payload must be a JSON object.")
    return payload


def normalize_comments(raw: Any) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = list(raw.values())
    if not isinstance(raw, list):
        raise PayloadError("`comments` must be a list.")
    entries = []
    for item in raw:
        entry = entry_from_dict(item)
        if entry is None:
            if not (isinstance(item, dict) and not str(item.get("text", "")).strip()):
                logger.warning("Skipping invalid comment entry: %r", item)
            continue
        entries.append(entry)
    entries.sort(key=entry_sort_key)
    return [entry.to_dict() for entry in entries]


@dataclass
class SessionRecord:
    file: str
    mode: str
    reason: str
    timestamp: str
    comments: list[dict[str, Any]] = field(default_factory=list)
    summary: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any], *, file: str, mode: str) -> "SessionRecord":
        summary = str(payload.get("summary") or "").strip()
        return cls(
            file=str(payload.get("file") or file),
            mode=str(payload.get("mode") or mode),
            reason=str(payload.get("reason") or "beacon"),
            timestamp=str(payload.get("timestamp") or payload.get("at") or iso_utc_now()),
            comments=normalize_comments(payload.get("comments")),
            summary=summary or None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "file": self.file,
            "mode": self.mode,
            "reason": self.reason,
            "timestamp": self.timestamp,
            "comments": self.comments,
        }
        if self.summary:
            data["summary"] = self.summary
        return data


def dump_record(record: SessionRecord) -> str:
    return yaml.safe_dump(record.to_dict(), allow_unicode=True, sort_keys=False, width=120).rstrip("\n")


def dump_records(records: list[SessionRecord]) -> str:
    """One record dumps as itself; several are grouped under ``files`` in the given order."""

    if len(records) == 1:
        return dump_record(records[0])
    data = {"files": [record.to_dict() for record in records]}
    return yaml.safe_dump(data, allow_unicode=True, sort_keys=False, width=120).rstrip("\n")


def _location(comment: dict[str, Any]) -> str:
    if comment.get("isRange"):
        return f"R{comment['startRow']}-R{comment['endRow']} C{comment['startCol']}-C{comment['endCol']}"
    return f"R{comment['row']} C{comment['col']}"


def render_record_summary(console: Console, record: SessionRecord) -> None:
    table = Table(title=f"Comments for {record.file} ({record.reason})", header_style="bold magenta")
    table.add_column("cell", style="cyan", no_wrap=True)
    table.add_column("value")
    table.add_column("comment")
    for comment in record.comments:
        table.add_row(_location(comment), escape(str(comment.get("value", ""))), escape(str(comment["text"])))
    if not record.comments:
        table.add_row("-", "", "[dim](no comments)[/dim]")
    console.print(table)
    if record.summary:
        console.print(f"[bold]Summary:[/bold] {escape(record.summary)}")
