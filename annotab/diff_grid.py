from __future__ import annotations

import re
from typing import Any

from .grid import Grid

HUNK_HEADER_RE = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@(?P<header>.*)$"
)

DIFF_LABELS = ("Type", "Old", "New", "Text")


def normalize_diff_path(raw: str) -> str | None:
    value = raw.strip().split("\t", 1)[0]
    if value == "/dev/null":
        return None
    if value.startswith("a/") or value.startswith("b/"):
        return value[2:]
    return value


def _new_file(old_path: str | None, new_path: str | None, meta_line: str | None = None) -> dict[str, Any]:
    return {
        "oldPath": old_path,
        "newPath": new_path,
        "isNew": False,
        "isDeleted": False,
        "isBinary": False,
        "meta": [meta_line] if meta_line else [],
        "hunks": [],
    }


def _hunk_accepts(hunk: dict[str, Any], line: str) -> bool:
    if line.startswith("\\"):
        return True
    if hunk["old_left"] <= 0 and hunk["new_left"] <= 0:
        return False
    return line == "" or line[0] in " +-"


def _append_hunk_line(hunk: dict[str, Any], line: str) -> None:
    marker = line[:1]
    if marker == "\\":
        hunk["lines"].append({"type": "meta", "content": line[2:], "oldLine": None, "newLine": None})
    elif marker == "+":
        hunk["lines"].append({"type": "add", "content": line[1:], "oldLine": None, "newLine": hunk["new_cursor"]})
        hunk["new_cursor"] += 1
        hunk["new_left"] -= 1
    elif marker == "-":
        hunk["lines"].append({"type": "delete", "content": line[1:], "oldLine": hunk["old_cursor"], "newLine": None})
        hunk["old_cursor"] += 1
        hunk["old_left"] -= 1
    else:
        hunk["lines"].append(
            {"type": "context", "content": line[1:], "oldLine": hunk["old_cursor"], "newLine": hunk["new_cursor"]}
        )
        hunk["old_cursor"] += 1
        hunk["new_cursor"] += 1
        hunk["old_left"] -= 1
        hunk["new_left"] -= 1


def parse_unified_diff(diff_text: str) -> list[dict[str, Any]]:
    lines = diff_text.splitlines()
    files: list[dict[str, Any]] = []
    current_file: dict[str, Any] | None = None
    current_hunk: dict[str, Any] | None = None
    index = 0

    while index < len(lines):
        line = lines[index]

        # Hunk bodies are bounded by the header counts.
        if current_hunk is not None:
            if _hunk_accepts(current_hunk, line):
                _append_hunk_line(current_hunk, line)
                index += 1
                continue
            current_hunk = None

        if line.startswith("diff --git "):
            if current_file is not None:
                files.append(current_file)
            parts = line.split()
            current_file = _new_file(
                normalize_diff_path(parts[2] if len(parts) > 2 else ""),
                normalize_diff_path(parts[3] if len(parts) > 3 else ""),
                line,
            )
            current_hunk = None
            index += 1
            continue

        # Plain unified diffs have no "diff --git" line; a ---/+++ pair opens a file.
        if (
            line.startswith("--- ")
            and index + 1 < len(lines)
            and lines[index + 1].startswith("+++ ")
            and (current_file is None or current_file["hunks"])
        ):
            if current_file is not None:
                files.append(current_file)
            current_file = _new_file(None, None)
            current_hunk = None

        if current_file is None:
            index += 1
            continue

        if line.startswith("@@ "):
            match = HUNK_HEADER_RE.match(line)
            if not match:
                raise RuntimeError(f"Unsupported hunk header: {line}")
            old_start = int(match.group("old_start"))
            new_start = int(match.group("new_start"))
            old_count = int(match.group("old_count") or "1")
            new_count = int(match.group("new_count") or "1")
            current_hunk = {
                "oldStart": old_start,
                "oldCount": old_count,
                "newStart": new_start,
                "newCount": new_count,
                "context": match.group("header"),
                "header": line,
                "lines": [],
                "old_cursor": old_start,
                "new_cursor": new_start,
                "old_left": old_count,
                "new_left": new_count,
            }
            current_file["hunks"].append(current_hunk)
            index += 1
            continue

        if line.startswith("new file mode"):
            current_file["isNew"] = True
        elif line.startswith("deleted file mode"):
            current_file["isDeleted"] = True
        elif line.startswith("Binary files ") or line == "GIT binary patch":
            current_file["isBinary"] = True
        elif line.startswith("--- "):
            path = normalize_diff_path(line[4:])
            if path is None:
                current_file["isNew"] = True
            else:
                current_file["oldPath"] = path
        elif line.startswith("+++ "):
            path = normalize_diff_path(line[4:])
            if path is None:
                current_file["isDeleted"] = True
            else:
                current_file["newPath"] = path
        current_file["meta"].append(line)
        index += 1

    if current_file is not None:
        files.append(current_file)
    for item in files:
        for hunk in item["hunks"]:
            hunk.pop("old_cursor", None)
            hunk.pop("new_cursor", None)
            hunk.pop("old_left", None)
            hunk.pop("new_left", None)
    return files


def _line_number(value: int | None) -> str:
    return "" if value is None else str(value)


def diff_to_grid(diff_text: str) -> Grid:
    rows: list[list[str]] = []
    for item in parse_unified_diff(diff_text):
        old_path = item["oldPath"] or "/dev/null"
        new_path = item["newPath"] or "/dev/null"
        title = new_path if old_path == new_path else f"{old_path} -> {new_path}"
        if item["isBinary"]:
            title += " (binary)"
        rows.append(["file", "", "", title])
        for hunk in item["hunks"]:
            rows.append(["hunk", "", "", hunk["header"]])
            for line in hunk["lines"]:
                rows.append(
                    [line["type"], _line_number(line["oldLine"]), _line_number(line["newLine"]), line["content"]]
                )
    return Grid.from_rows(rows, labels=DIFF_LABELS)
