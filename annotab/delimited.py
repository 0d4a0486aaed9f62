from __future__ import annotations

from typing import Iterable

QUOTE = '"'


def parse_delimited(text: str, delimiter: str = ",") -> list[list[str]]:
    """Split CSV/TSV text into rows of fields in a single pass.

    Quoted fields may hold the delimiter, newlines and doubled quotes. An
    unterminated quote runs to the end of input. Carriage returns are
    dropped everywhere, and a final row whose fields are all empty is removed.
    """

    rows: list[list[str]] = []
    row: list[str] = []
    field: list[str] = []
    in_quotes = False
    index = 0
    length = len(text)

    while index < length:
        ch = text[index]
        if ch == "\r":
            pass
        elif in_quotes:
            if ch == QUOTE:
                if index + 1 < length and text[index + 1] == QUOTE:
                    field.append(QUOTE)
                    index += 1
                else:
                    in_quotes = False
            else:
                field.append(ch)
        elif ch == QUOTE:
            in_quotes = True
        elif ch == delimiter:
            row.append("".join(field))
            field = []
        elif ch == "\n":
            row.append("".join(field))
            rows.append(row)
            row = []
            field = []
        else:
            field.append(ch)
        index += 1

    row.append("".join(field))
    rows.append(row)

    if rows and all(value == "" for value in rows[-1]):
        rows.pop()
    return rows


def _quote_field(value: str, delimiter: str) -> str:
    if any(token in value for token in (delimiter, QUOTE, "\n", "\r")):
        return QUOTE + value.replace(QUOTE, QUOTE * 2) + QUOTE
    return value


def serialize_delimited(rows: Iterable[Iterable[str]], delimiter: str = ",") -> str:
    return "\n".join(delimiter.join(_quote_field(str(value), delimiter) for value in row) for row in rows)
