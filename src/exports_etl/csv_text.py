"""exports_etl.csv_text

Lenient CSV tokenizer for third-party export files.

Rules:
  - Comma delimiter, newline row terminator.
  - A double quote opens a quoted field only when it is the first
    character of the field; anywhere else it is a literal character.
  - Inside quotes, "" is one literal quote and newlines are kept.
  - A trailing CR is stripped from the last field of each row (CRLF files).
  - A final row without a trailing newline is still emitted; an
    unterminated quoted field at end of input is treated as closed.

The whole document is parsed in memory in one pass. Blank rows are kept
by parse_csv() and removed by drop_blank_rows().
"""

from __future__ import annotations

CsvRow = tuple[str, ...]
CsvDocument = tuple[CsvRow, ...]


def parse_csv(text: str) -> CsvDocument:
    rows: list[CsvRow] = []
    row: list[str] = []
    field: list[str] = []
    in_quotes = False

    def end_row() -> None:
        last = "".join(field)
        if last.endswith("\r"):
            last = last[:-1]
        row.append(last)
        rows.append(tuple(row))
        row.clear()
        field.clear()

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        if in_quotes:
            if ch == '"':
                if i + 1 < n and text[i + 1] == '"':
                    field.append('"')
                    i += 2
                    continue
                in_quotes = False
            else:
                field.append(ch)
            i += 1
            continue

        if ch == '"' and not field:
            in_quotes = True
        elif ch == ",":
            row.append("".join(field))
            field.clear()
        elif ch == "\n":
            end_row()
        else:
            field.append(ch)
        i += 1

    # No extra empty row for a trailing newline.
    if field or row:
        end_row()

    return tuple(rows)


def is_blank_row(row: CsvRow) -> bool:
    """True when every field in the row is empty."""
    return all(value == "" for value in row)


def drop_blank_rows(rows: CsvDocument) -> CsvDocument:
    return tuple(r for r in rows if not is_blank_row(r))
