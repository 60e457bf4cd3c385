"""lesson_etl.shared

Shared utilities used by the contacts and lesson_content import modes.
Includes the row-rejection type, RejectWriter, RunCounters, error classes,
and report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Row number used for file-level diagnostics (empty file, missing headers)
STRUCTURAL_ROW = 0


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ImportStructureError(Exception):
    """Raised when a CSV cannot be processed at all (empty, missing headers)."""


class AdminRequiredError(Exception):
    """Raised when no user may be attributed as creator of imported content."""


class StudyBookNotFoundError(Exception):
    """Raised when the target study book of a lesson import does not exist."""


class UserNotFoundError(Exception):
    """Raised when the owner of imported contacts does not exist."""


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InvalidRow:
    """A rejected row.  row_number is the 1-based spreadsheet row (header = 1)."""

    row_number: int
    reason: str

    @property
    def is_structural(self) -> bool:
        return self.row_number == STRUCTURAL_ROW


def first_structural_error(invalids: list[InvalidRow]) -> InvalidRow | None:
    return next((inv for inv in invalids if inv.is_structural), None)


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, str], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


def row_as_dict(header_row: list[str], cols: list[str], row_number: int) -> dict[str, str]:
    """Pair raw cells with their header labels for the reject file."""
    out = {"_row_number": str(row_number)}
    for i, label in enumerate(header_row):
        key = label.strip() or f"column_{i + 1}"
        out.setdefault(key, cols[i] if i < len(cols) else "")
    return out


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    rows_read: int = 0
    rows_rejected: int = 0
    rows_skipped_blank: int = 0
    # contacts
    contacts_inserted: int = 0
    # lesson_content
    lessons_created: int = 0
    lessons_patched: int = 0
    messages_created: int = 0
    lessons_affected: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def reject_rate(self) -> float:
        if self.rows_read == 0:
            return 0.0
        return self.rows_rejected / self.rows_read

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["reject_rate"] = round(self.reject_rate, 4)
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: RunCounters,
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
