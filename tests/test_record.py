import io
import sys
import unittest
from pathlib import Path

import yaml
from rich.console import Console

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from annotab.record import (  # noqa: E402
    PayloadError,
    SessionRecord,
    dump_record,
    dump_records,
    normalize_comments,
    parse_exit_body,
    render_record_summary,
)


class TestRecord(unittest.TestCase):
    def test_parse_exit_body(self):
        self.assertEqual(parse_exit_body(b""), {})
        self.assertEqual(parse_exit_body(b'{"comments": []}'), {"comments": []})
        with self.assertRaises(PayloadError):
            parse_exit_body(b"{not json")
        with self.assertRaises(PayloadError):
            parse_exit_body(b"[1, 2]")

    def test_record_from_minimal_payload(self):
        payload = {"comments": [{"row": 2, "col": 3, "text": "x", "value": "150"}]}
        record = SessionRecord.from_payload(payload, file="data.csv", mode="csv")
        self.assertEqual(record.file, "data.csv")
        self.assertEqual(record.mode, "csv")
        self.assertEqual(record.reason, "beacon")
        self.assertTrue(record.timestamp.endswith("Z"))
        self.assertEqual(record.comments, [{"row": 2, "col": 3, "text": "x", "value": "150"}])
        self.assertIsNone(record.summary)

    def test_yaml_field_order_and_optional_summary(self):
        record = SessionRecord(
            file="data.csv",
            mode="csv",
            reason="button",
            timestamp="2026-01-02T03:04:05.000Z",
            comments=[{"row": 2, "col": 1, "text": "check", "value": "1"}],
            summary="Looks fine",
        )
        text = dump_record(record)
        loaded = yaml.safe_load(text)
        self.assertEqual(list(loaded), ["file", "mode", "reason", "timestamp", "comments", "summary"])
        self.assertEqual(list(loaded["comments"][0]), ["row", "col", "text", "value"])
        self.assertEqual(loaded["timestamp"], "2026-01-02T03:04:05.000Z")
        record.summary = "  "
        self.assertNotIn("summary", yaml.safe_load(dump_record(record)))

    def test_unicode_is_not_escaped(self):
        record = SessionRecord(file="売上.csv", mode="csv", reason="button", timestamp="t", comments=[])
        self.assertIn("売上.csv", dump_record(record))

    def test_several_records_are_grouped_under_files(self):
        first = SessionRecord(file="a.csv", mode="csv", reason="button", timestamp="t", comments=[])
        second = SessionRecord(file="b.md", mode="text", reason="beacon", timestamp="t", comments=[], summary="ok")
        self.assertEqual(dump_records([first]), dump_record(first))
        loaded = yaml.safe_load(dump_records([first, second]))
        self.assertEqual(list(loaded), ["files"])
        self.assertEqual([item["file"] for item in loaded["files"]], ["a.csv", "b.md"])
        self.assertEqual(loaded["files"][1]["summary"], "ok")

    def test_normalize_comments_sorts_and_skips_invalid(self):
        raw = {
            "3-1": {"row": 3, "col": 1, "text": "later"},
            "1-1:2-2": {"startRow": 1, "startCol": 1, "endRow": 2, "endCol": 2, "text": "block", "isRange": True},
            "1-1": {"row": 1, "col": 1, "text": "first", "value": "a"},
            "bad": {"row": "?", "col": 1, "text": "broken"},
            "blank": {"row": 2, "col": 2, "text": " "},
        }
        with self.assertLogs("annotab.record", level="WARNING") as logs:
            comments = normalize_comments(raw)
        self.assertEqual(len(logs.output), 1)
        self.assertEqual([c.get("row", c.get("startRow")) for c in comments], [1, 1, 3])
        self.assertTrue(comments[1]["isRange"])
        with self.assertRaises(PayloadError):
            normalize_comments("nope")

    def test_summary_table_escapes_markup(self):
        buffer = io.StringIO()
        console = Console(file=buffer, width=120, color_system=None)
        record = SessionRecord(
            file="data.csv",
            mode="csv",
            reason="button",
            timestamp="t",
            comments=[{"row": 1, "col": 1, "text": "[bold]literal[/bold]", "value": "a"}],
            summary="done",
        )
        render_record_summary(console, record)
        output = buffer.getvalue()
        self.assertIn("[bold]literal[/bold]", output)
        self.assertIn("R1 C1", output)
        self.assertIn("Summary: done", output)


if __name__ == "__main__":
    unittest.main()
