"""exports_etl.schema

Catalog lookups against information_schema:
  - insertable columns of a staging table, in declared order
  - the list of *_export staging tables offered for import

Nothing here is cached; the catalog is queried on every call so that a
schema change between two imports is always picked up.
"""

from __future__ import annotations

from dataclasses import dataclass

import psycopg

from exports_etl.shared import SchemaLookupFailure


@dataclass(frozen=True)
class TargetTableSchema:
    table: str
    columns: tuple[str, ...]

    @property
    def width(self) -> int:
        return len(self.columns)


def fetch_column_catalog(
    conn: psycopg.Connection,
    db_schema: str,
    table: str,
) -> list[tuple[str, bool]]:
    """Return (column_name, is_generated) pairs in ordinal order.

    Identity columns, GENERATED ALWAYS columns and serial columns
    (defaults drawn from a sequence) count as generated.
    """
    rows = conn.execute(
        """
        SELECT column_name,
               (is_identity = 'YES'
                OR is_generated = 'ALWAYS'
                OR COALESCE(column_default, '') LIKE 'nextval(%%') AS is_generated
        FROM information_schema.columns
        WHERE table_schema = %s
          AND table_name = %s
        ORDER BY ordinal_position ASC
        """,
        (db_schema, table),
    ).fetchall()
    return [(str(name), bool(generated)) for name, generated in rows]


def resolve_target_schema(
    conn: psycopg.Connection,
    db_schema: str,
    table: str,
) -> TargetTableSchema:
    columns = tuple(
        name for name, generated in fetch_column_catalog(conn, db_schema, table)
        if not generated
    )
    if not columns:
        raise SchemaLookupFailure(table)
    return TargetTableSchema(table=table, columns=columns)


def list_export_tables(conn: psycopg.Connection, db_schema: str) -> list[str]:
    """Return base tables in db_schema whose names end in '_export'."""
    rows = conn.execute(
        r"""
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = %s
          AND table_type = 'BASE TABLE'
          AND table_name LIKE '%%\_export'
        ORDER BY table_name ASC
        """,
        (db_schema,),
    ).fetchall()
    return [str(r[0]) for r in rows]
