"""exports_etl.append_exports

CLI entrypoint and driver for appending third-party CSV exports
(pantry, pharmacy, clinic) into *_export staging tables, followed by the
non-destructive person/household merge.

Modes (--mode):
  append       - append one CSV into one staging table, then run the merge steps (default)
  list_tables  - print the *_export staging tables available for import

Usage (append):
    python -m exports_etl.append_exports \\
        --mode append \\
        --db-dsn "$DB_DSN" \\
        --table pantry_export \\
        --csv-path "rawEvidence/pantry_2025_q3.csv" \\
        --has-header

Usage (list_tables):
    python -m exports_etl.append_exports --mode list_tables --config config/exports_etl.yml

Run stages:
    Idle → SchemaResolved → Parsed → Validated → Inserting → Patching → Done
Any stage may move to Failed. Failures never raise out of
append_csv_to_table(); they come back as an ImportOutcome with ok=False
and the counts reached so far. Rows from batches that committed before a
failure stay in the table.
"""

from __future__ import annotations

import logging
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

import click
import psycopg

from exports_etl.batch_insert import insert_batches
from exports_etl.config import AppendConfig, ConfigValidationError, load_config
from exports_etl.csv_text import drop_blank_rows, parse_csv
from exports_etl.merge_steps import run_merge_steps
from exports_etl.normalize import normalize_rows
from exports_etl.progress import ProgressEvent, ProgressReporter
from exports_etl.schema import list_export_tables, resolve_target_schema
from exports_etl.shared import (
    AppendError,
    FileNotFound,
    FileTooLarge,
    ImportOutcome,
    InsertFailure,
    InvalidStateTransition,
    InvalidTarget,
    MergeRoutineMissing,
    MergeStepFailure,
    NotAFile,
    write_run_report,
)

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Run state machine
# ---------------------------------------------------------------------------

class RunState(str, Enum):
    IDLE = "idle"
    SCHEMA_RESOLVED = "schema_resolved"
    PARSED = "parsed"
    VALIDATED = "validated"
    INSERTING = "inserting"
    PATCHING = "patching"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.SCHEMA_RESOLVED, RunState.FAILED}),
    RunState.SCHEMA_RESOLVED: frozenset({RunState.PARSED, RunState.FAILED}),
    RunState.PARSED: frozenset({RunState.VALIDATED, RunState.FAILED}),
    RunState.VALIDATED: frozenset({RunState.INSERTING, RunState.FAILED}),
    RunState.INSERTING: frozenset({RunState.PATCHING, RunState.FAILED}),
    RunState.PATCHING: frozenset({RunState.DONE, RunState.FAILED}),
    RunState.DONE: frozenset(),
    RunState.FAILED: frozenset(),
}


@dataclass
class AppendRun:
    table: str
    csv_path: str | None = None
    state: RunState = RunState.IDLE
    rows_parsed: int = 0
    rows_inserted: int = 0
    columns_used: int = 0

    def advance(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(f"{self.state.value} -> {new_state.value}")
        self.state = new_state

    def outcome(self, ok: bool, message: str) -> ImportOutcome:
        return ImportOutcome(
            ok=ok,
            message=message,
            table=self.table or None,
            csv_path=self.csv_path,
            rows_parsed=self.rows_parsed,
            rows_inserted=self.rows_inserted,
            columns_used=self.columns_used,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _check_csv_file(csv_path: str, max_file_bytes: int) -> Path:
    path = Path(csv_path).resolve()
    if not path.exists():
        raise FileNotFound(path)
    if not path.is_file():
        raise NotAFile(path)
    size = path.stat().st_size
    if size > max_file_bytes:
        raise FileTooLarge(path, size, max_file_bytes)
    return path


def _as_sentence(text: str) -> str:
    text = text.rstrip()
    return text if text.endswith(".") else f"{text}."


def _failure_message(exc: Exception, rows_inserted: int) -> str:
    if isinstance(exc, InsertFailure):
        base = f"Append/patch failed: {exc.cause}"
    elif isinstance(exc, (MergeRoutineMissing, MergeStepFailure)):
        base = f"Append/patch failed: {exc}"
    elif isinstance(exc, AppendError):
        base = str(exc)
    else:
        base = f"Append/patch failed: {exc}"
    base = _as_sentence(base)

    if rows_inserted == 0:
        return f"{base} No rows were inserted."
    return (
        f"{base} ({rows_inserted} row(s) were inserted before this error "
        "and were not rolled back.)"
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def append_csv_to_table(
    conn: psycopg.Connection,
    config: AppendConfig,
    table: str,
    csv_path: str,
    has_header: bool,
    reporter: ProgressReporter | None = None,
) -> ImportOutcome:
    """Append csv_path into table, then run the merge steps.

    conn must be in autocommit mode so each batch and each merge step
    commits independently.
    """
    reporter = reporter or ProgressReporter()
    reporter.reset()
    run = AppendRun(table=table)

    try:
        if not table:
            raise InvalidTarget("No table selected.")
        if not csv_path:
            raise InvalidTarget("No CSV selected.")

        path = _check_csv_file(csv_path, config.max_file_bytes)
        run.csv_path = str(path)

        reporter.emit("loading", message="Loading table schema...")
        schema = resolve_target_schema(conn, config.db_schema, table)
        run.columns_used = schema.width
        run.advance(RunState.SCHEMA_RESOLVED)

        reporter.emit("reading", message="Reading CSV...")
        text = path.read_text(encoding="utf-8-sig", errors="replace")

        reporter.emit("parsing", message="Parsing CSV...")
        rows = parse_csv(text)
        if has_header and rows:
            rows = rows[1:]
        rows = drop_blank_rows(rows)
        run.rows_parsed = len(rows)
        run.advance(RunState.PARSED)
        reporter.emit("parsed", rows_parsed=run.rows_parsed)
        log.info("parsed %d row(s) from %s", run.rows_parsed, path)

        normalized = normalize_rows(rows, schema)
        run.advance(RunState.VALIDATED)

        run.advance(RunState.INSERTING)
        try:
            run.rows_inserted = insert_batches(
                conn, schema, normalized, reporter,
                rows_parsed=run.rows_parsed,
                batch_size=config.batch_size,
                db_schema=config.db_schema,
            )
        except InsertFailure as exc:
            run.rows_inserted = exc.rows_inserted
            raise

        run.advance(RunState.PATCHING)
        run_merge_steps(conn, config.db_schema, reporter)

        run.advance(RunState.DONE)
        message = (
            f"Inserted {run.rows_inserted} row(s) into {table}. "
            "Patched person/household tables successfully."
        )
        reporter.emit(
            "done",
            rows_parsed=run.rows_parsed,
            rows_inserted=run.rows_inserted,
            message=message,
        )
        return run.outcome(True, message)

    except AppendError as exc:
        log.error("append into %s failed in state %s: %s", table, run.state.value, exc)
        return _fail(run, reporter, _failure_message(exc, run.rows_inserted))
    except Exception as exc:
        log.exception("append into %s failed in state %s", table, run.state.value)
        return _fail(run, reporter, _failure_message(exc, run.rows_inserted))


def _fail(run: AppendRun, reporter: ProgressReporter, message: str) -> ImportOutcome:
    run.advance(RunState.FAILED)
    reporter.emit(
        "error",
        rows_parsed=run.rows_parsed,
        rows_inserted=run.rows_inserted,
        message=message,
    )
    return run.outcome(False, message)


def run_append(
    config: AppendConfig,
    table: str,
    csv_path: str,
    has_header: bool,
    reporter: ProgressReporter | None = None,
) -> ImportOutcome:
    """Open an autocommit connection from config and run append_csv_to_table()."""
    reporter = reporter or ProgressReporter()
    reporter.reset()
    try:
        conn = psycopg.connect(config.db_dsn, autocommit=True)
    except psycopg.Error as exc:
        message = _as_sentence(f"Could not connect to database: {exc}") + " No rows were inserted."
        reporter.emit("error", message=message)
        return ImportOutcome(ok=False, message=message, table=table or None)
    try:
        return append_csv_to_table(conn, config, table, csv_path, has_header, reporter)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _echo_progress(run_id: str):
    def _echo(event: ProgressEvent) -> None:
        parts = [f"[{run_id}] {event.phase}"]
        if event.rows_inserted is not None and event.rows_parsed is not None:
            parts.append(f"{event.rows_inserted}/{event.rows_parsed} rows")
        elif event.rows_parsed is not None:
            parts.append(f"{event.rows_parsed} rows")
        if event.message:
            parts.append(event.message)
        click.echo(" ".join(parts), err=event.phase == "error")
    return _echo


@click.command()
@click.option(
    "--mode",
    default="append",
    type=click.Choice(["append", "list_tables"]),
    show_default=True,
    help="Run mode",
)
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML config file")
@click.option("--db-dsn", default=None, envvar="DB_DSN", help="PostgreSQL DSN (overrides config; env DB_DSN)")
@click.option("--db-schema", default=None, help="Schema holding staging tables and merge procedures")
@click.option("--table", default=None, help="[append] Target *_export staging table")
@click.option("--csv-path", default=None, type=click.Path(), help="[append] Input CSV")
@click.option("--has-header", is_flag=True, default=False, help="[append] Discard the first CSV row")
@click.option("--batch-size", default=None, type=click.IntRange(min=1), help="[append] Rows per INSERT")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
def main(
    mode: str,
    config_path: str | None,
    db_dsn: str | None,
    db_schema: str | None,
    table: str | None,
    csv_path: str | None,
    has_header: bool,
    batch_size: int | None,
    run_id: str | None,
) -> None:
    """Staging-table CSV append CLI."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()

    try:
        config = load_config(Path(config_path)) if config_path else AppendConfig()
    except (ConfigValidationError, FileNotFoundError) as exc:
        click.echo(f"[{run_id}] FATAL: bad config {config_path}: {exc}", err=True)
        sys.exit(1)
    config = config.with_overrides(db_dsn=db_dsn, db_schema=db_schema, batch_size=batch_size)
    if not config.db_dsn:
        click.echo(f"[{run_id}] FATAL: no DSN; pass --db-dsn, set DB_DSN, or use --config", err=True)
        sys.exit(1)

    click.echo(f"[{run_id}] Starting {mode} run")

    if mode == "list_tables":
        try:
            with psycopg.connect(config.db_dsn, autocommit=True) as conn:
                for name in list_export_tables(conn, config.db_schema):
                    click.echo(name)
        except psycopg.Error as exc:
            click.echo(f"[{run_id}] FATAL: could not list export tables: {exc}", err=True)
            sys.exit(1)
        return

    reporter = ProgressReporter()
    reporter.subscribe(_echo_progress(run_id))
    outcome = run_append(config, table or "", csv_path or "", has_header, reporter)

    report_path = write_run_report(
        run_id, started_at, mode,
        {"table": table or "", "csv_path": csv_path or ""},
        outcome,
        [e.to_dict() for e in reporter.events],
        config.report_dir,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if not outcome.ok:
        click.echo(f"[{run_id}] FATAL: {outcome.message}", err=True)
        sys.exit(1)
    click.echo(f"[{run_id}] {outcome.message}")


if __name__ == "__main__":
    main()
