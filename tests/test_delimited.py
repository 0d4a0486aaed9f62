import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from annotab.delimited import parse_delimited, serialize_delimited  # noqa: E402


class TestParseDelimited(unittest.TestCase):
    def test_plain_rows(self):
        self.assertEqual(parse_delimited("a,b\n1,2\n,4"), [["a", "b"], ["1", "2"], ["", "4"]])

    def test_quoted_delimiter_newline_and_doubled_quote(self):
        text = 'name,note\n"Smith, J","line1\nline2 ""quoted"""\n'
        self.assertEqual(
            parse_delimited(text),
            [["name", "note"], ["Smith, J", 'line1\nline2 "quoted"']],
        )

    def test_crlf_is_stripped_even_inside_quotes(self):
        self.assertEqual(parse_delimited('a,"x\r\ny"\r\n1,2\r\n'), [["a", "x\ny"], ["1", "2"]])

    def test_trailing_empty_row_is_dropped_but_inner_empty_rows_stay(self):
        self.assertEqual(parse_delimited("a\n\nb\n"), [["a"], [""], ["b"]])
        self.assertEqual(parse_delimited("a,b\n,\n"), [["a", "b"]])

    def test_empty_input_gives_no_rows(self):
        self.assertEqual(parse_delimited(""), [])

    def test_unterminated_quote_runs_to_end(self):
        self.assertEqual(parse_delimited('a,"open\nrest'), [["a", "open\nrest"]])

    def test_tab_delimiter(self):
        self.assertEqual(parse_delimited("a\tb,c\n1\t2", "\t"), [["a", "b,c"], ["1", "2"]])

    def test_ragged_rows_are_kept_as_is(self):
        self.assertEqual(parse_delimited("a,b,c\n1\n"), [["a", "b", "c"], ["1"]])


class TestSerializeDelimited(unittest.TestCase):
    def test_round_trip_preserves_special_fields(self):
        rows = [["id", "text"], ["1", 'say "hi", then\nleave'], ["2", ""]]
        text = serialize_delimited(rows)
        self.assertEqual(parse_delimited(text), rows)

    def test_only_fields_that_need_quotes_are_quoted(self):
        self.assertEqual(serialize_delimited([["a", "b c", "d,e"]]), 'a,b c,"d,e"')
        self.assertEqual(serialize_delimited([["a\tb", "c"]], "\t"), '"a\tb"\tc')


if __name__ == "__main__":
    unittest.main()
