"""wh40k_etl.shared

Shared pieces used across the pipeline: the exception hierarchy,
RejectWriter for skipped rows, per-table and per-run result records,
and report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class EtlError(Exception):
    """Base class for pipeline failures that should stop a run."""


class ConfigurationError(EtlError):
    """Raised for missing remote location, unknown tables or bad table specs."""


class DownloadError(EtlError):
    """Raised when a single remote file cannot be fetched or validated."""


class DownloadBatchError(EtlError):
    """Raised when one or more files of a batch failed after all retries."""

    def __init__(self, failures: list[DownloadResult], total: int) -> None:
        self.failures = failures
        self.total = total
        names = ", ".join(f"{f.file_name} ({f.error})" for f in failures)
        super().__init__(f"{len(failures)}/{total} downloads failed: {names}")


class PopulationError(EtlError):
    """Raised when a population stage fails; wraps the underlying cause."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"population failed at stage {stage!r}: {cause}")


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for skipped rows.

    Rows from different tables have different columns, so the table name
    and reason are written as leading columns and the row itself is
    serialized to JSON.
    """

    FIELDNAMES = ["_table", "_reject_reason", "row"]

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None
        self.count = 0

    def write(self, table: str, row: dict[str, Any], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            self._writer = csv.DictWriter(self._fh, fieldnames=self.FIELDNAMES)
            self._writer.writeheader()
        self._writer.writerow({
            "_table": table,
            "_reject_reason": reason,
            "row": json.dumps(row, ensure_ascii=False, sort_keys=True, default=str),
        })
        self._fh.flush()
        self.count += 1

    def close(self) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None


# ---------------------------------------------------------------------------
# Result records
# ---------------------------------------------------------------------------

@dataclass
class DownloadResult:
    file_name: str
    url: str
    success: bool
    path: Path | None = None
    error: str | None = None


@dataclass
class SkippedRow:
    row: dict[str, Any]
    reason: str


@dataclass
class TableLoadResult:
    table: str
    rows_read: int = 0
    inserted: int = 0
    skipped_rows: list[SkippedRow] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.skipped_rows)

    def skip(self, row: dict[str, Any], reason: str) -> None:
        self.skipped_rows.append(SkippedRow(row=row, reason=reason))

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "rows_read": self.rows_read,
            "inserted": self.inserted,
            "skipped": self.skipped,
        }


@dataclass
class PopulationReport:
    started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    finished_at: str | None = None
    marker: str | None = None
    files_downloaded: int = 0
    detachments_derived: int = 0
    tables: list[TableLoadResult] = field(default_factory=list)

    def add(self, result: TableLoadResult) -> TableLoadResult:
        self.tables.append(result)
        return result

    def table(self, name: str) -> TableLoadResult | None:
        for result in self.tables:
            if result.table == name:
                return result
        return None

    @property
    def rows_inserted(self) -> int:
        return sum(t.inserted for t in self.tables)

    @property
    def rows_skipped(self) -> int:
        return sum(t.skipped for t in self.tables)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "marker": self.marker,
            "files_downloaded": self.files_downloaded,
            "detachments_derived": self.detachments_derived,
            "rows_inserted": self.rows_inserted,
            "rows_skipped": self.rows_skipped,
            "tables": [t.to_dict() for t in self.tables],
        }


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    mode: str,
    payload: dict[str, Any],
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "written_at": datetime.now(timezone.utc).isoformat(),
        **payload,
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
