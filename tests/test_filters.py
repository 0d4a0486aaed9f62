import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from annotab.filters import FilterSet, apply_filters, make_predicate  # noqa: E402
from annotab.grid import Grid  # noqa: E402

GRID = Grid.from_rows(
    [
        ["apple", "red", "150"],
        ["Banana", "", "20"],
        ["cherry", "red"],
        ["", "green", "7"],
    ]
)


class TestFilters(unittest.TestCase):
    def test_predicates(self):
        self.assertTrue(make_predicate("not-empty")(" x "))
        self.assertFalse(make_predicate("not-empty")("   "))
        self.assertTrue(make_predicate("empty")(""))
        self.assertTrue(make_predicate("contains", "BAN")("banana"))
        self.assertTrue(make_predicate("not-contains", "ban")("apple"))
        with self.assertRaises(ValueError):
            make_predicate("contains", "")
        with self.assertRaises(ValueError):
            make_predicate("regex", "x")

    def test_no_filters_shows_everything(self):
        self.assertEqual(apply_filters(GRID, {}), [True, True, True, True])

    def test_filters_compose_with_and(self):
        visible = apply_filters(GRID, {2: make_predicate("contains", "red"), 3: make_predicate("not-empty")})
        self.assertEqual(visible, [True, False, False, False])

    def test_missing_cells_read_as_empty(self):
        self.assertEqual(apply_filters(GRID, {3: make_predicate("empty")}), [False, False, True, False])

    def test_throwing_predicate_keeps_row_visible(self):
        def explode(value):
            if value == "Banana":
                raise RuntimeError("boom")
            return False

        self.assertEqual(apply_filters(GRID, {1: explode}), [False, True, False, False])

    def test_filter_set_reset_and_clear(self):
        filters = FilterSet()
        filters.set_action(1, "not-empty")
        filters.set_action(2, "contains", "red")
        self.assertEqual(filters.active_columns(), [1, 2])
        self.assertEqual(filters.visibility(GRID), [True, False, True, False])
        filters.set_action(2, "reset")
        self.assertNotIn(2, filters)
        self.assertEqual(filters.visibility(GRID), [True, True, True, False])
        filters.clear_all()
        self.assertEqual(len(filters), 0)


if __name__ == "__main__":
    unittest.main()
