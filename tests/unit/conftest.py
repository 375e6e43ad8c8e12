"""Unit test fixtures.

FakeConn stands in for a psycopg connection: catalog queries (plain SQL
strings) are answered from in-memory data; composed INSERT statements
are recorded with their bound parameters; CALL statements are recorded
as issued.
"""

from __future__ import annotations

import psycopg
import pytest


class FakeCursor:
    def __init__(self, rows: list[tuple]) -> None:
        self._rows = rows

    def fetchall(self) -> list[tuple]:
        return list(self._rows)

    def fetchone(self) -> tuple | None:
        return self._rows[0] if self._rows else None


class FakeConn:
    def __init__(
        self,
        catalog: list[tuple[str, bool]] | None = None,
        procedures: set[str] | None = None,
        tables: list[str] | None = None,
        fail_on_batch: int | None = None,
    ) -> None:
        self.catalog = catalog or []
        self.procedures = set(procedures or ())
        self.tables = tables or []
        self.fail_on_batch = fail_on_batch
        self.insert_params: list[list] = []
        self.insert_statements: list = []
        self.calls: list = []
        self.catalog_queries: list[tuple] = []

    def execute(self, query, params=None):
        if isinstance(query, str):
            self.catalog_queries.append((query, params))
            if "information_schema.columns" in query:
                return FakeCursor(list(self.catalog))
            if "information_schema.routines" in query:
                _, routine_name = params
                return FakeCursor([(1,)] if routine_name in self.procedures else [])
            if "information_schema.tables" in query:
                return FakeCursor([(t,) for t in self.tables])
            raise AssertionError(f"unexpected query: {query}")

        if params is None:
            self.calls.append(query)
            return FakeCursor([])

        batch_number = len(self.insert_params) + 1
        if self.fail_on_batch == batch_number:
            raise psycopg.errors.StringDataRightTruncation("value too long for type character varying(10)")
        self.insert_statements.append(query)
        self.insert_params.append(list(params))
        return FakeCursor([])


@pytest.fixture
def fake_conn():
    return FakeConn
