"""exports_etl.merge_steps

Non-destructive person/household patching after a staging append.

The merge logic itself lives in server-side procedures; this module only
decides which ones run and in what order. Each step is checked against
information_schema.routines before it is called, and runs with no
arguments. Steps run strictly one after another. A missing routine stops
the sequence; steps that already ran are not undone.

make_everything() rebuilds person/household from scratch by truncating
them first. It is never part of this sequence and is refused by name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import psycopg
from psycopg import sql

from exports_etl.progress import ProgressReporter
from exports_etl.shared import (
    DestructiveRoutineRefused,
    MergeRoutineMissing,
    MergeStepFailure,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeStep:
    name: str
    label: str


MERGE_STEPS: tuple[MergeStep, ...] = (
    MergeStep("merge_person_from_exports_with_audit", "Merging people..."),
    MergeStep("merge_households_from_pantry", "Updating households..."),
    MergeStep("sweep_person_flavors_by_recency", "Sweeping latest fields..."),
)

DESTRUCTIVE_ROUTINES = frozenset({"make_everything"})


def procedure_exists(conn: psycopg.Connection, db_schema: str, routine_name: str) -> bool:
    row = conn.execute(
        """
        SELECT 1
        FROM information_schema.routines
        WHERE routine_schema = %s
          AND routine_type = 'PROCEDURE'
          AND routine_name = %s
        LIMIT 1
        """,
        (db_schema, routine_name),
    ).fetchone()
    return row is not None


def call_procedure(conn: psycopg.Connection, db_schema: str, routine_name: str) -> None:
    if routine_name in DESTRUCTIVE_ROUTINES:
        raise DestructiveRoutineRefused(routine_name)
    conn.execute(
        sql.SQL("CALL {}()").format(sql.Identifier(db_schema, routine_name))
    )


def run_merge_steps(
    conn: psycopg.Connection,
    db_schema: str,
    reporter: ProgressReporter,
    steps: tuple[MergeStep, ...] = MERGE_STEPS,
) -> list[str]:
    """Run every step in order; return the names of the steps that ran."""
    completed: list[str] = []
    reporter.emit("patching", message="Running merge/patch procedures...")

    for step in steps:
        if step.name in DESTRUCTIVE_ROUTINES:
            raise DestructiveRoutineRefused(step.name)
        if not procedure_exists(conn, db_schema, step.name):
            log.error("merge routine %s.%s not found; completed=%s", db_schema, step.name, completed)
            raise MergeRoutineMissing(step.name)
        reporter.emit("patching", message=step.label)
        try:
            call_procedure(conn, db_schema, step.name)
        except psycopg.Error as exc:
            raise MergeStepFailure(step.name, exc) from exc
        log.info("merge step %s done", step.name)
        completed.append(step.name)

    return completed
