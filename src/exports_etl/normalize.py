"""Row normalization for staging-table appends.

Parsed CSV rows are matched to the target columns by position only.
Cell values pass through verbatim: no trimming, no type coercion.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

from exports_etl.csv_text import CsvRow
from exports_etl.schema import TargetTableSchema
from exports_etl.shared import RowWidthExceeded


@dataclass(frozen=True)
class NormalizedRow:
    """A row padded to the schema width, tagged with its column names."""

    columns: tuple[str, ...]
    cells: tuple[str | None, ...]

    def __len__(self) -> int:
        return len(self.cells)

    def items(self) -> Iterator[tuple[str, str | None]]:
        return zip(self.columns, self.cells)

    def get(self, column: str) -> str | None:
        return self.cells[self.columns.index(column)]


# ---------------------------------------------------------------------------
# Width validation
# ---------------------------------------------------------------------------

def check_row_widths(rows: Sequence[CsvRow], schema: TargetTableSchema) -> None:
    """Raise RowWidthExceeded for the first row wider than the schema.

    Runs over every row before anything is normalized or inserted.
    Row indexes in the error are 1-based.
    """
    width = schema.width
    for idx, row in enumerate(rows, start=1):
        if len(row) > width:
            raise RowWidthExceeded(idx, len(row), schema.table, width)


# ---------------------------------------------------------------------------
# Padding
# ---------------------------------------------------------------------------

def pad_row(row: CsvRow, schema: TargetTableSchema) -> NormalizedRow:
    missing = schema.width - len(row)
    if missing < 0:
        raise ValueError(f"row has {len(row)} cells, schema width is {schema.width}")
    cells: tuple[str | None, ...] = tuple(row) + (None,) * missing
    return NormalizedRow(columns=schema.columns, cells=cells)


def normalize_rows(rows: Sequence[CsvRow], schema: TargetTableSchema) -> list[NormalizedRow]:
    check_row_widths(rows, schema)
    return [pad_row(r, schema) for r in rows]
