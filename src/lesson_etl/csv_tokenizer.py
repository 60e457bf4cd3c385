"""lesson_etl.csv_tokenizer

Quote-aware CSV tokenizer used by both the contacts and lesson-content
imports.

The stdlib csv module is not used here because uploads come from
spreadsheet exports with mixed line endings: a bare '\\r' outside quotes is
dropped rather than treated as a row break, and a trailing blank line must
not produce an extra row.
"""

from __future__ import annotations

_QUOTE = '"'
_SEPARATOR = ","
_NEEDS_QUOTING = frozenset({_QUOTE, _SEPARATOR, "\n", "\r"})


def tokenize(text: str) -> list[list[str]]:
    """Split raw CSV text into rows of fields.

    Fields are returned exactly as written (no trimming).  Empty input
    yields an empty list.
    """
    rows: list[list[str]] = []
    row: list[str] = []
    buf: list[str] = []
    in_quotes = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if in_quotes:
            if ch == _QUOTE:
                if i + 1 < n and text[i + 1] == _QUOTE:
                    buf.append(_QUOTE)
                    i += 2
                    continue
                in_quotes = False
            else:
                buf.append(ch)
        elif ch == _QUOTE:
            in_quotes = True
        elif ch == _SEPARATOR:
            row.append("".join(buf))
            buf = []
        elif ch == "\n":
            row.append("".join(buf))
            rows.append(row)
            row = []
            buf = []
        elif ch == "\r":
            pass
        else:
            buf.append(ch)
        i += 1

    row.append("".join(buf))
    if any(cell != "" for cell in row):
        rows.append(row)
    return rows


def _quote_field(value: str) -> str:
    if any(ch in _NEEDS_QUOTING for ch in value):
        return _QUOTE + value.replace(_QUOTE, _QUOTE * 2) + _QUOTE
    return value


def serialize(rows: list[list[str]]) -> str:
    """Inverse of tokenize: every row is written with a trailing newline."""
    return "".join(
        _SEPARATOR.join(_quote_field(cell) for cell in row) + "\n"
        for row in rows
    )
