"""exports_etl.shared

Shared pieces used across the append pipeline: the failure taxonomy,
the ImportOutcome result record, and run-report writing.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class AppendError(Exception):
    """Base class for failures converted into an ImportOutcome at the pipeline boundary."""


class InvalidTarget(AppendError):
    """Raised when the table name or CSV path is missing."""


class FileNotFound(AppendError):
    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"CSV file not found: {path}")


class NotAFile(AppendError):
    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Not a file: {path}")


class FileTooLarge(AppendError):
    def __init__(self, path: Path, size: int, limit: int) -> None:
        self.path = path
        self.size = size
        self.limit = limit
        if limit >= 1024 * 1024:
            shown = f"{limit // (1024 * 1024)}MB"
        else:
            shown = f"{limit} bytes"
        super().__init__(
            f"CSV is larger than {shown}; streaming import is not implemented yet."
        )


class SchemaLookupFailure(AppendError):
    """Raised when a table is missing or has no insertable columns."""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"Could not load columns for table: {table}")


class RowWidthExceeded(AppendError):
    """Raised when a CSV row is wider than the target table. Nothing is inserted."""

    def __init__(self, row_index: int, row_width: int, table: str, schema_width: int) -> None:
        self.row_index = row_index
        self.row_width = row_width
        self.table = table
        self.schema_width = schema_width
        super().__init__(
            f"Row {row_index} has {row_width} columns, "
            f"but table {table} has {schema_width}."
        )


class InsertFailure(AppendError):
    """Raised when a batch insert fails; earlier batches remain committed."""

    def __init__(self, batch_number: int, rows_inserted: int, cause: Exception) -> None:
        self.batch_number = batch_number
        self.rows_inserted = rows_inserted
        self.cause = cause
        super().__init__(f"batch {batch_number} insert failed: {cause}")


class MergeRoutineMissing(AppendError):
    def __init__(self, step_name: str) -> None:
        self.step_name = step_name
        super().__init__(f"Required procedure not found: {step_name}")


class MergeStepFailure(AppendError):
    """Raised when an existing merge routine errors during CALL."""

    def __init__(self, step_name: str, cause: Exception) -> None:
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"merge step {step_name} failed: {cause}")


class DestructiveRoutineRefused(AppendError):
    def __init__(self, step_name: str) -> None:
        self.step_name = step_name
        super().__init__(f"refusing to call destructive routine: {step_name}")


class InvalidStateTransition(RuntimeError):
    """Raised on a pipeline state change the state machine does not allow."""


# ---------------------------------------------------------------------------
# ImportOutcome
# ---------------------------------------------------------------------------

@dataclass
class ImportOutcome:
    ok: bool
    message: str
    table: str | None = None
    csv_path: str | None = None
    rows_parsed: int = 0
    rows_inserted: int = 0
    columns_used: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "message": self.message,
            "table": self.table,
            "csv_path": self.csv_path,
            "rows_parsed": self.rows_parsed,
            "rows_inserted": self.rows_inserted,
            "columns_used": self.columns_used,
        }


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    source_paths: dict[str, str],
    outcome: ImportOutcome,
    events: list[dict[str, Any]],
    report_dir: Path,
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        **source_paths,
        "outcome": outcome.to_dict(),
        "events": events,
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
