"""lesson_etl.lesson_import

Lesson-content upsert coordinator.

Given typed rows for one study book, ensures one lesson exists per lesson
number, patches lesson title/description where a row supplies a different
value, and appends one predefined message per row.

Ordering:
  1. Load existing lessons for the study book, keyed by lesson_number.
  2. Lesson pass: create missing lessons (title defaults to "Lesson <n>"),
     patch changed title/description on existing ones.
  3. Seed a display-order counter per touched lesson from the max
     persisted display_order.
  4. Message pass: insert messages, using the row's display_order when
     given, else the lesson's counter.

Messages are never deduplicated: running the same import twice appends
every message twice.  Rows are trusted as already validated (see
lesson_csv.validate_lesson_csv).  Persistence goes through the LessonStore
protocol; the caller owns the transaction.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LessonImportRow:
    lesson_number: int
    message_type: str
    content: str
    lesson_title: str | None = None
    lesson_description: str | None = None
    display_order: int | None = None


@dataclass(frozen=True)
class Lesson:
    id: str
    study_book_id: str
    lesson_number: int
    title: str
    description: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class LessonPatch:
    """Partial lesson update.  None means 'leave unchanged'."""

    title: str | None = None
    description: str | None = None

    def present_fields(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if getattr(self, f.name) is not None
        }

    def is_empty(self) -> bool:
        return not self.present_fields()


def apply_patch(lesson: Lesson, patch: LessonPatch) -> Lesson:
    """Return lesson with every present patch field applied."""
    return dataclasses.replace(lesson, **patch.present_fields())


def build_lesson_patch(lesson: Lesson, row: LessonImportRow) -> LessonPatch:
    """Patch only fields the row supplies and that differ from the lesson."""
    title = row.lesson_title if row.lesson_title and row.lesson_title != lesson.title else None
    description = (
        row.lesson_description
        if row.lesson_description and row.lesson_description != lesson.description
        else None
    )
    return LessonPatch(title=title, description=description)


def default_lesson_title(lesson_number: int) -> str:
    return f"Lesson {lesson_number}"


@dataclass
class DisplayOrderCounter:
    """Next display_order per lesson, seeded from persisted messages."""

    _next: dict[str, int] = field(default_factory=dict)

    def seed(self, lesson_id: str, existing_orders: list[int]) -> None:
        self._next[lesson_id] = max([0, *existing_orders]) + 1

    def is_seeded(self, lesson_id: str) -> bool:
        return lesson_id in self._next

    def take(self, lesson_id: str) -> int:
        """Return the current value and advance (post-increment)."""
        value = self._next[lesson_id]
        self._next[lesson_id] = value + 1
        return value

    def peek(self, lesson_id: str) -> int:
        return self._next[lesson_id]


@dataclass(frozen=True)
class LessonImportResult:
    created_lessons: int = 0
    created_messages: int = 0
    patched_lessons: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "createdLessons": self.created_lessons,
            "createdMessages": self.created_messages,
        }


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------

class LessonStore(Protocol):
    def list_lessons(self, study_book_id: str) -> list[Lesson]:
        ...

    def insert_lesson(
        self,
        study_book_id: str,
        lesson_number: int,
        title: str,
        description: str | None,
    ) -> str:
        ...

    def get_lesson(self, lesson_id: str) -> Lesson | None:
        ...

    def patch_lesson(self, lesson_id: str, patch: LessonPatch) -> None:
        ...

    def list_display_orders(self, lesson_id: str) -> list[int]:
        ...

    def insert_message(
        self,
        lesson_id: str,
        content: str,
        message_type: str,
        display_order: int,
        created_by: str,
    ) -> str:
        ...


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

def _ensure_lessons(
    store: LessonStore,
    study_book_id: str,
    rows: list[LessonImportRow],
    lesson_by_number: dict[int, Lesson],
) -> tuple[int, int]:
    """Lesson pass.  Returns (created, patched) and mutates lesson_by_number."""
    created = 0
    patched = 0
    for row in rows:
        lesson = lesson_by_number.get(row.lesson_number)
        if lesson is None:
            title = row.lesson_title or default_lesson_title(row.lesson_number)
            lesson_id = store.insert_lesson(
                study_book_id, row.lesson_number, title, row.lesson_description,
            )
            lesson_by_number[row.lesson_number] = store.get_lesson(lesson_id) or Lesson(
                id=lesson_id,
                study_book_id=study_book_id,
                lesson_number=row.lesson_number,
                title=title,
                description=row.lesson_description,
            )
            created += 1
            log.debug("created lesson %s (number=%s)", lesson_id, row.lesson_number)
            continue

        patch = build_lesson_patch(lesson, row)
        if patch.is_empty():
            continue
        store.patch_lesson(lesson.id, patch)
        lesson_by_number[row.lesson_number] = apply_patch(lesson, patch)
        patched += 1
        log.debug("patched lesson %s: %s", lesson.id, sorted(patch.present_fields()))
    return created, patched


def import_lesson_content(
    store: LessonStore,
    study_book_id: str,
    rows: list[LessonImportRow],
    created_by: str,
) -> LessonImportResult:
    """Upsert lessons and append messages for one study book.

    Any store failure propagates; nothing is retried.
    """
    lesson_by_number = {
        lesson.lesson_number: lesson for lesson in store.list_lessons(study_book_id)
    }

    created_lessons, patched_lessons = _ensure_lessons(
        store, study_book_id, rows, lesson_by_number,
    )

    counter = DisplayOrderCounter()
    for number in dict.fromkeys(row.lesson_number for row in rows):
        lesson_id = lesson_by_number[number].id
        if not counter.is_seeded(lesson_id):
            counter.seed(lesson_id, store.list_display_orders(lesson_id))
            log.debug("lesson %s next display_order=%s", lesson_id, counter.peek(lesson_id))

    created_messages = 0
    for row in rows:
        lesson = lesson_by_number[row.lesson_number]
        display_order = (
            row.display_order if row.display_order is not None else counter.take(lesson.id)
        )
        store.insert_message(
            lesson.id, row.content, row.message_type, display_order, created_by,
        )
        created_messages += 1

    log.info(
        "study_book=%s lessons created=%d patched=%d messages created=%d",
        study_book_id, created_lessons, patched_lessons, created_messages,
    )
    return LessonImportResult(
        created_lessons=created_lessons,
        created_messages=created_messages,
        patched_lessons=patched_lessons,
    )
