"""Integration test fixtures.

Applies the migrations under migrations/ against an ephemeral PostgreSQL
database provided by pytest-postgresql before each integration test.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_extensions.sql",
    PROJECT_ROOT / "migrations" / "0002_core_tables.sql",
    PROJECT_ROOT / "migrations" / "0003_contacts.sql",
]

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Yield (conn, dsn) with the schema applied.

    conn is not in autocommit mode; commit any setup rows a CLI run under
    test needs to see through its own connection.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


@pytest.fixture
def admin_id(db_conn) -> str:
    """Committed admin user."""
    conn, _ = db_conn
    row = conn.execute(
        "INSERT INTO app_user (name, is_admin, created_at) "
        "VALUES ('Admin', true, now() - interval '1 day') RETURNING id"
    ).fetchone()
    conn.commit()
    return str(row[0])


@pytest.fixture
def study_book_id(db_conn, admin_id) -> str:
    """Committed study book owned by admin_id."""
    conn, _ = db_conn
    row = conn.execute(
        "INSERT INTO study_book (title, created_by) VALUES ('Romans', %s) RETURNING id",
        (admin_id,),
    ).fetchone()
    conn.commit()
    return str(row[0])
