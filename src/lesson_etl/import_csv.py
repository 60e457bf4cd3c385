"""lesson_etl.import_csv

Unified CLI entrypoint for CSV imports.

Modes (--mode):
  contacts        : validate a contacts CSV and insert the valid rows for
                    one owner user (default)
  lesson_content  : validate a lesson-content CSV and upsert lessons +
                    predefined messages into one study book

Usage (contacts):
    python -m lesson_etl.import_csv \\
        --mode contacts \\
        --db-dsn "$DB_DSN" \\
        --csv-path "uploads/contacts.csv" \\
        --owner-user-id "8c1f..."

Usage (lesson_content):
    python -m lesson_etl.import_csv \\
        --mode lesson_content \\
        --db-dsn "$DB_DSN" \\
        --csv-path "uploads/lessons.csv" \\
        --study-book-id "1b2e..." \\
        --acting-user-id "8c1f..."

Set ALLOW_DEV_IMPORT_BYPASS=true to attribute lesson content to the first
admin (or any) user instead of requiring --acting-user-id (development
databases only).

Validation always runs before any DB work.  A structural error (empty file,
missing headers) or a reject rate above --max-reject-rate fails the run
before connecting.  With --validate-only no DB connection is made.
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import click
import psycopg

from lesson_etl.contacts_csv import ContactImportResult, validate_contacts_csv
from lesson_etl.headers import HEADER_SPECS, AliasFileError, HeaderSpec, load_alias_overrides
from lesson_etl.lesson_csv import LessonCsvResult, validate_lesson_csv
from lesson_etl.lesson_import import import_lesson_content
from lesson_etl.lesson_store import (
    PostgresLessonStore,
    insert_contacts,
    require_user,
    resolve_created_by,
)
from lesson_etl.shared import (
    ImportStructureError,
    InvalidRow,
    RejectWriter,
    RunCounters,
    first_structural_error,
    row_as_dict,
    write_run_report,
)

DEV_BYPASS_ENV = "ALLOW_DEV_IMPORT_BYPASS"


# ---------------------------------------------------------------------------
# Validation phase
# ---------------------------------------------------------------------------

def _record_rejects(
    rows: list[list[str]],
    invalids: list[InvalidRow],
    counters: RunCounters,
    rejects: RejectWriter,
) -> None:
    """Count and write row-level rejects.  Raises on a structural error."""
    structural = first_structural_error(invalids)
    if structural is not None:
        raise ImportStructureError(structural.reason)
    header = rows[0]
    for inv in invalids:
        cols = rows[inv.row_number - 1]
        rejects.write(row_as_dict(header, cols, inv.row_number), inv.reason)
        counters.rows_rejected += 1


def _check_reject_rate(
    counters: RunCounters,
    max_reject_rate: float,
    run_id: str,
) -> None:
    if counters.rows_read > 0 and counters.reject_rate > max_reject_rate:
        click.echo(
            f"[{run_id}] FATAL: reject rate {counters.reject_rate:.2%} exceeds "
            f"threshold {max_reject_rate:.2%}",
            err=True,
        )
        sys.exit(1)


def validate_contacts_file(
    text: str,
    spec: HeaderSpec,
    counters: RunCounters,
    rejects: RejectWriter,
) -> ContactImportResult:
    result = validate_contacts_csv(text, spec)
    _record_rejects(result.rows, result.invalids, counters, rejects)
    counters.rows_read = len(result.valids) + len(result.invalids)
    counters.rows_skipped_blank = result.blank_rows_skipped
    return result


def validate_lesson_file(
    text: str,
    spec: HeaderSpec,
    counters: RunCounters,
    rejects: RejectWriter,
) -> LessonCsvResult:
    result = validate_lesson_csv(text, spec)
    _record_rejects(result.rows, result.invalids, counters, rejects)
    counters.rows_read = len(result.valids) + len(result.invalids)
    counters.rows_skipped_blank = result.blank_rows_skipped
    counters.lessons_affected = result.lessons_affected
    return result


# ---------------------------------------------------------------------------
# DB phase
# ---------------------------------------------------------------------------

def _run_db_phase(
    run_id: str,
    db_dsn: str,
    dry_run: bool,
    work: Callable[[psycopg.Connection], None],
) -> None:
    """Run work(conn) in one transaction; roll back on dry-run or failure."""
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        try:
            work(conn)
        except Exception as exc:
            conn.rollback()
            click.echo(
                f"[{run_id}] FATAL: unexpected error during DB phase: "
                f"{type(exc).__name__}: {exc}",
                err=True,
            )
            sys.exit(1)
        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        else:
            conn.commit()
            click.echo(f"[{run_id}] Committed.")
    finally:
        conn.close()


def run_contacts_import(
    run_id: str,
    db_dsn: str,
    owner_user_id: str,
    result: ContactImportResult,
    counters: RunCounters,
    dry_run: bool,
) -> None:
    def work(conn: psycopg.Connection) -> None:
        require_user(conn, owner_user_id)
        insert_contacts(conn, owner_user_id, result.valids, counters)

    _run_db_phase(run_id, db_dsn, dry_run, work)


def run_lesson_import(
    run_id: str,
    db_dsn: str,
    study_book_id: str,
    acting_user_id: str | None,
    allow_dev_bypass: bool,
    result: LessonCsvResult,
    counters: RunCounters,
    dry_run: bool,
) -> None:
    def work(conn: psycopg.Connection) -> None:
        store = PostgresLessonStore(conn)
        store.require_study_book(study_book_id)
        created_by = resolve_created_by(conn, acting_user_id, allow_dev_bypass)
        outcome = import_lesson_content(store, study_book_id, result.valids, created_by)
        counters.lessons_created = outcome.created_lessons
        counters.lessons_patched = outcome.patched_lessons
        counters.messages_created = outcome.created_messages

    _run_db_phase(run_id, db_dsn, dry_run, work)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _fatal(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


@click.command()
@click.option(
    "--mode",
    default="contacts",
    type=click.Choice(["contacts", "lesson_content"]),
    show_default=True,
    help="Import mode",
)
@click.option("--db-dsn", default=None, help="PostgreSQL DSN (not needed with --validate-only)")
@click.option("--csv-path", required=True, type=click.Path(exists=True, dir_okay=False), help="Input CSV")
@click.option("--owner-user-id", default=None, help="[contacts] User that owns the imported contacts")
@click.option("--study-book-id", default=None, help="[lesson_content] Target study book")
@click.option("--acting-user-id", default=None, help="[lesson_content] Admin user performing the import")
@click.option(
    "--alias-file",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file with extra header spellings per import type",
)
@click.option(
    "--max-reject-rate",
    default=0.05,
    type=float,
    show_default=True,
    help="Fraction of rows that may be rejected before the run fails",
)
@click.option("--validate-only", is_flag=True, default=False, help="Validate the CSV; skip all DB operations")
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/lesson_etl_rejects.csv",
    show_default=True,
)
@click.option(
    "--reports-dir",
    default="./artifacts/reports",
    show_default=True,
    type=click.Path(file_okay=False),
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
def main(
    mode: str,
    db_dsn: str | None,
    csv_path: str,
    owner_user_id: str | None,
    study_book_id: str | None,
    acting_user_id: str | None,
    alias_file: str | None,
    max_reject_rate: float,
    validate_only: bool,
    dry_run: bool,
    rejects_path: str,
    reports_dir: str,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Contacts and lesson-content CSV import CLI."""
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    counters = RunCounters()
    rejects = RejectWriter(Path(rejects_path))

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run}, validate_only={validate_only})")

    if not validate_only:
        if not db_dsn:
            _fatal(run_id, "--db-dsn is required unless --validate-only is set")
        if mode == "contacts" and not owner_user_id:
            _fatal(run_id, "--owner-user-id is required for contacts mode")
        if mode == "lesson_content" and not study_book_id:
            _fatal(run_id, "--study-book-id is required for lesson_content mode")

    specs = HEADER_SPECS
    if alias_file:
        try:
            specs = load_alias_overrides(Path(alias_file))
        except AliasFileError as exc:
            _fatal(run_id, f"invalid alias file {alias_file}: {exc}")

    try:
        text = Path(csv_path).read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as exc:
        _fatal(run_id, f"{Path(csv_path).name}: Failed to read or parse CSV ({exc})")

    try:
        if mode == "contacts":
            contacts = validate_contacts_file(text, specs["contacts"], counters, rejects)
        else:
            lessons = validate_lesson_file(text, specs["lesson_content"], counters, rejects)
    except ImportStructureError as exc:
        _fatal(run_id, f"{Path(csv_path).name}: {exc}")
    finally:
        rejects.close()

    click.echo(
        f"[{run_id}] Validation: {counters.rows_read} rows read, "
        f"{counters.rows_rejected} rejected, "
        f"{counters.rows_skipped_blank} blank skipped"
    )
    if counters.rows_rejected:
        click.echo(f"[{run_id}] Rejects written to {rejects_path}")

    _check_reject_rate(counters, max_reject_rate, run_id)

    if not validate_only:
        if mode == "contacts":
            run_contacts_import(
                run_id, db_dsn, owner_user_id, contacts, counters, dry_run,  # type: ignore[arg-type]
            )
            click.echo(f"[{run_id}] Done: {counters.contacts_inserted} contacts inserted")
        else:
            allow_dev_bypass = os.environ.get(DEV_BYPASS_ENV, "") == "true"
            run_lesson_import(
                run_id, db_dsn, study_book_id, acting_user_id,  # type: ignore[arg-type]
                allow_dev_bypass, lessons, counters, dry_run,
            )
            click.echo(
                f"[{run_id}] Done: {counters.lessons_created} lessons created, "
                f"{counters.lessons_patched} patched, "
                f"{counters.messages_created} messages created"
            )

    report_path = write_run_report(
        run_id,
        started_at,
        mode,
        dry_run or validate_only,
        {"csv_path": csv_path},
        counters,
        reports_dir=Path(reports_dir),
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


if __name__ == "__main__":
    main()
