"""lesson_etl.lesson_store

PostgreSQL persistence for lesson and contact imports.

PostgresLessonStore implements lesson_import.LessonStore on a psycopg
connection.  None of the functions here commit or roll back; the caller
manages the transaction.
"""

from __future__ import annotations

import logging

import psycopg

from lesson_etl.contacts_csv import ValidContact
from lesson_etl.lesson_import import Lesson, LessonPatch
from lesson_etl.shared import (
    AdminRequiredError,
    RunCounters,
    StudyBookNotFoundError,
    UserNotFoundError,
)

log = logging.getLogger(__name__)

_LESSON_COLUMNS = "id, study_book_id, lesson_number, title, description, is_active"

# Columns a LessonPatch may touch; guards the dynamic SET clause
_PATCHABLE_COLUMNS = frozenset({"title", "description"})


def _lesson_from_row(row: tuple) -> Lesson:
    return Lesson(
        id=str(row[0]),
        study_book_id=str(row[1]),
        lesson_number=row[2],
        title=row[3],
        description=row[4],
        is_active=row[5],
    )


class PostgresLessonStore:
    """LessonStore backed by the lesson / predefined_message tables."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def require_study_book(self, study_book_id: str) -> None:
        row = self._conn.execute(
            "SELECT id FROM study_book WHERE id = %s",
            (study_book_id,),
        ).fetchone()
        if row is None:
            raise StudyBookNotFoundError(f"study_book_not_found: id={study_book_id!r}")

    def list_lessons(self, study_book_id: str) -> list[Lesson]:
        rows = self._conn.execute(
            f"""
            SELECT {_LESSON_COLUMNS}
            FROM lesson
            WHERE study_book_id = %s
            ORDER BY lesson_number ASC, created_at ASC, id ASC
            """,
            (study_book_id,),
        ).fetchall()
        # First row wins if a race ever produced two lessons with one number
        by_number: dict[int, Lesson] = {}
        for row in rows:
            lesson = _lesson_from_row(row)
            by_number.setdefault(lesson.lesson_number, lesson)
        return list(by_number.values())

    def insert_lesson(
        self,
        study_book_id: str,
        lesson_number: int,
        title: str,
        description: str | None,
    ) -> str:
        row = self._conn.execute(
            """
            INSERT INTO lesson (study_book_id, lesson_number, title, description, is_active)
            VALUES (%s, %s, %s, %s, true)
            RETURNING id
            """,
            (study_book_id, lesson_number, title, description),
        ).fetchone()
        return str(row[0])

    def get_lesson(self, lesson_id: str) -> Lesson | None:
        row = self._conn.execute(
            f"SELECT {_LESSON_COLUMNS} FROM lesson WHERE id = %s",
            (lesson_id,),
        ).fetchone()
        return _lesson_from_row(row) if row else None

    def patch_lesson(self, lesson_id: str, patch: LessonPatch) -> None:
        fields = patch.present_fields()
        if not fields:
            return
        unknown = set(fields) - _PATCHABLE_COLUMNS
        if unknown:
            raise ValueError(f"unpatchable lesson columns: {sorted(unknown)}")
        assignments = ", ".join(f"{name} = %s" for name in fields)
        self._conn.execute(
            f"UPDATE lesson SET {assignments} WHERE id = %s",
            (*fields.values(), lesson_id),
        )

    def list_display_orders(self, lesson_id: str) -> list[int]:
        rows = self._conn.execute(
            "SELECT display_order FROM predefined_message WHERE lesson_id = %s",
            (lesson_id,),
        ).fetchall()
        return [r[0] for r in rows if r[0] is not None]

    def insert_message(
        self,
        lesson_id: str,
        content: str,
        message_type: str,
        display_order: int,
        created_by: str,
    ) -> str:
        row = self._conn.execute(
            """
            INSERT INTO predefined_message
              (lesson_id, content, message_type, display_order, created_by, is_active)
            VALUES (%s, %s, %s, %s, %s, true)
            RETURNING id
            """,
            (lesson_id, content, message_type, display_order, created_by),
        ).fetchone()
        return str(row[0])


# ---------------------------------------------------------------------------
# Creator attribution
# ---------------------------------------------------------------------------

def resolve_created_by(
    conn: psycopg.Connection,
    acting_user_id: str | None,
    allow_dev_bypass: bool,
) -> str:
    """Return the user id recorded as creator of imported messages.

    Normal path: acting_user_id must name an admin user.
    Dev bypass: first admin user, else any user.

    Raises:
        AdminRequiredError: when no user can be attributed.
    """
    if not allow_dev_bypass:
        if not acting_user_id:
            raise AdminRequiredError("admin_required: no acting user supplied")
        row = conn.execute(
            "SELECT id, is_admin FROM app_user WHERE id = %s",
            (acting_user_id,),
        ).fetchone()
        if row is None or not row[1]:
            raise AdminRequiredError(f"admin_required: user={acting_user_id!r}")
        return str(row[0])

    row = conn.execute(
        "SELECT id FROM app_user WHERE is_admin ORDER BY created_at ASC, id ASC LIMIT 1"
    ).fetchone()
    if row is None:
        row = conn.execute(
            "SELECT id FROM app_user ORDER BY created_at ASC, id ASC LIMIT 1"
        ).fetchone()
        if row is None:
            raise AdminRequiredError(
                "Dev import bypass enabled but no users found to attribute createdBy. "
                "Create a user first."
            )
        log.warning("dev import bypass: no admin user; attributing to user %s", row[0])
    return str(row[0])


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

def insert_contacts(
    conn: psycopg.Connection,
    user_id: str,
    contacts: list[ValidContact],
    counters: RunCounters,
) -> list[str]:
    """Insert validated contacts for user_id; returns the new ids in order."""
    ids: list[str] = []
    for contact in contacts:
        row = conn.execute(
            """
            INSERT INTO contact (user_id, name, phone_number, email, notes)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id
            """,
            (user_id, contact.name, contact.phone_number, contact.email, contact.notes),
        ).fetchone()
        ids.append(str(row[0]))
        counters.contacts_inserted += 1
    return ids


def require_user(conn: psycopg.Connection, user_id: str) -> None:
    row = conn.execute("SELECT id FROM app_user WHERE id = %s", (user_id,)).fetchone()
    if row is None:
        raise UserNotFoundError(f"user_not_found: id={user_id!r}")
