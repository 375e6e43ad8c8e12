"""exports_etl.batch_insert

Bulk append of normalized rows into a staging table.

Rows are sent in fixed-size batches, one multi-row INSERT per batch, in
file order. The connection is expected to run in autocommit mode so each
batch commits on its own: when batch k fails, batches 1..k-1 stay in the
table and the run stops. Table and column names are quoted with
psycopg.sql.Identifier; every cell value is a bound parameter.
"""

from __future__ import annotations

import logging
from typing import Iterator, Sequence

import psycopg
from psycopg import sql

from exports_etl.normalize import NormalizedRow
from exports_etl.progress import ProgressReporter
from exports_etl.schema import TargetTableSchema
from exports_etl.shared import InsertFailure

log = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 250

# PostgreSQL wire protocol limit on bind parameters per statement
MAX_BIND_PARAMS = 65535


def iter_batches(
    rows: Sequence[NormalizedRow],
    batch_size: int,
) -> Iterator[Sequence[NormalizedRow]]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    for start in range(0, len(rows), batch_size):
        yield rows[start:start + batch_size]


def rows_per_statement(batch_size: int, width: int) -> int:
    """Largest batch not above batch_size whose INSERT stays within MAX_BIND_PARAMS."""
    return min(batch_size, max(1, MAX_BIND_PARAMS // max(width, 1)))


def build_insert_statement(
    schema: TargetTableSchema,
    row_count: int,
    db_schema: str | None = None,
) -> sql.Composed:
    """INSERT INTO <table> (<cols>) VALUES (%s, ...), ... for row_count rows."""
    if db_schema:
        target = sql.Identifier(db_schema, schema.table)
    else:
        target = sql.Identifier(schema.table)
    columns_sql = sql.SQL(", ").join(sql.Identifier(col) for col in schema.columns)
    row_sql = sql.SQL("({})").format(
        sql.SQL(", ").join(sql.Placeholder() for _ in schema.columns)
    )
    values_sql = sql.SQL(", ").join(row_sql for _ in range(row_count))
    return sql.SQL("INSERT INTO {} ({}) VALUES {}").format(
        target, columns_sql, values_sql,
    )


def insert_batches(
    conn: psycopg.Connection,
    schema: TargetTableSchema,
    rows: Sequence[NormalizedRow],
    reporter: ProgressReporter,
    rows_parsed: int,
    batch_size: int = DEFAULT_BATCH_SIZE,
    db_schema: str | None = None,
) -> int:
    """Insert rows batch by batch; return the number of rows inserted.

    Raises InsertFailure carrying the count committed before the failing
    batch.
    """
    inserted = 0
    effective_size = rows_per_statement(batch_size, schema.width)
    if effective_size < batch_size:
        log.warning(
            "batch size %d x %d columns exceeds %d bind parameters; using %d rows per INSERT",
            batch_size, schema.width, MAX_BIND_PARAMS, effective_size,
        )
    reporter.emit("inserting", rows_parsed=rows_parsed, rows_inserted=0)

    for batch_number, batch in enumerate(iter_batches(rows, effective_size), start=1):
        statement = build_insert_statement(schema, len(batch), db_schema)
        params: list[str | None] = []
        for row in batch:
            params.extend(row.cells)
        try:
            conn.execute(statement, params)
        except psycopg.Error as exc:
            log.error(
                "insert into %s failed at batch %d after %d row(s): %s",
                schema.table, batch_number, inserted, exc,
            )
            raise InsertFailure(batch_number, inserted, exc) from exc
        inserted += len(batch)
        reporter.emit("inserting", rows_parsed=rows_parsed, rows_inserted=inserted)

    log.info("inserted %d row(s) into %s", inserted, schema.table)
    return inserted
