import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from annotab.annotations import (  # noqa: E402
    SNAPSHOT_TTL_MS,
    Annotation,
    AnnotationStore,
    RangeAnnotation,
    entry_from_dict,
)
from annotab.delimited import parse_delimited  # noqa: E402
from annotab.grid import Coordinate, Grid  # noqa: E402


def make_store():
    events = []
    renders = []
    grid = Grid.from_rows(parse_delimited("a,b\n1,2\n,4"))
    store = AnnotationStore(
        grid,
        on_indicator=lambda coord, on: events.append((coord, on)),
        on_rerender=lambda: renders.append(True),
    )
    return store, events, renders


class TestAnnotationStore(unittest.TestCase):
    def test_save_records_original_value(self):
        store, _events, _renders = make_store()
        store.save(Coordinate(2, 1), "check")
        self.assertEqual(store.list(), [Annotation(2, 1, "check", "1")])
        self.assertEqual(store.list()[0].to_dict(), {"row": 2, "col": 1, "text": "check", "value": "1"})

    def test_whitespace_only_text_removes_entry(self):
        store, events, _renders = make_store()
        store.save(Coordinate(1, 2), "note")
        store.save(Coordinate(1, 2), "   ")
        self.assertEqual(store.list(), [])
        self.assertEqual(events, [(Coordinate(1, 2), True), (Coordinate(1, 2), False)])

    def test_saving_blank_on_empty_cell_is_not_a_mutation(self):
        store, events, _renders = make_store()
        store.save(Coordinate(3, 1), "")
        self.assertEqual(events, [])
        self.assertFalse(store.dirty)

    def test_list_is_row_major_with_ranges_after_cells(self):
        store, _events, _renders = make_store()
        store.save(Coordinate(3, 2), "c")
        store.save_range(Coordinate(2, 2), Coordinate(1, 1), "range")
        store.save(Coordinate(1, 2), "b")
        store.save(Coordinate(1, 1), "a")
        keys = [entry.key for entry in store.list()]
        self.assertEqual(keys, ["1-1", "1-1:2-2", "1-2", "3-2"])

    def test_indicators_follow_ranges(self):
        store, events, _renders = make_store()
        store.save(Coordinate(1, 1), "single")
        store.save_range(Coordinate(1, 1), Coordinate(2, 2), "block")
        self.assertEqual(store.indicators(), {Coordinate(1, 1), Coordinate(1, 2), Coordinate(2, 1), Coordinate(2, 2)})
        events.clear()
        store.clear_range(Coordinate(1, 1), Coordinate(2, 2))
        self.assertEqual(dict(events)[Coordinate(1, 1)], True)
        self.assertEqual(dict(events)[Coordinate(2, 2)], False)
        self.assertEqual(store.indicators(), {Coordinate(1, 1)})

    def test_single_cell_range_is_a_cell_annotation(self):
        store, _events, _renders = make_store()
        entry = store.save_range(Coordinate(2, 2), Coordinate(2, 2), "x")
        self.assertIsInstance(entry, Annotation)
        self.assertEqual(entry.original_value, "2")

    def test_restore_replaces_once_and_clears_dirty(self):
        source, _events, _renders = make_store()
        source.save(Coordinate(2, 1), "check")
        source.save_range(Coordinate(1, 1), Coordinate(1, 2), "header")
        snapshot = source.snapshot(now_ms=1_000)

        store, events, renders = make_store()
        self.assertTrue(store.restore(snapshot, now_ms=2_000))
        self.assertEqual(renders, [True])
        self.assertEqual(events, [])
        self.assertFalse(store.dirty)
        self.assertEqual([entry.key for entry in store.list()], ["1-1:1-2", "2-1"])

    def test_restore_refused_when_stale_or_after_edits(self):
        source, _events, _renders = make_store()
        source.save(Coordinate(2, 1), "check")
        snapshot = source.snapshot(now_ms=0)

        store, _events, renders = make_store()
        self.assertFalse(store.restore(snapshot, now_ms=SNAPSHOT_TTL_MS + 1))
        store.save(Coordinate(1, 1), "fresh")
        self.assertFalse(store.restore(snapshot, now_ms=10))
        self.assertEqual(renders, [])
        self.assertEqual(len(store), 1)
        self.assertFalse(store.restore({"comments": "bad", "timestamp": 0}, now_ms=0))

    def test_entry_from_dict(self):
        self.assertIsNone(entry_from_dict({"row": 1, "col": 1, "text": "  "}))
        self.assertIsNone(entry_from_dict({"row": "x", "col": 1, "text": "t"}))
        self.assertIsNone(entry_from_dict({"row": 0, "col": 1, "text": "t"}))
        self.assertEqual(entry_from_dict({"row": 2, "col": 3, "text": "x", "value": "150"}), Annotation(2, 3, "x", "150"))
        self.assertEqual(
            entry_from_dict({"startRow": 3, "startCol": 2, "endRow": 1, "endCol": 1, "text": "r", "isRange": True}),
            RangeAnnotation(1, 1, 3, 2, "r"),
        )


if __name__ == "__main__":
    unittest.main()
