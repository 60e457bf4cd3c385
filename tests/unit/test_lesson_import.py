"""Unit tests for the lesson-content upsert coordinator.

Runs against an in-memory LessonStore so the ordering and patch rules can
be checked without a database.
"""

from __future__ import annotations

import dataclasses
import itertools

import pytest

from lesson_etl.lesson_import import (
    DisplayOrderCounter,
    Lesson,
    LessonImportRow,
    LessonPatch,
    apply_patch,
    build_lesson_patch,
    import_lesson_content,
)

BOOK = "book-1"
ADMIN = "user-admin"


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryLessonStore:
    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.lessons: dict[str, Lesson] = {}
        self.messages: list[dict] = []
        self.patches: list[tuple[str, LessonPatch]] = []
        self.fail_on_insert_message = False

    def add_lesson(self, lesson_number: int, title: str, description: str | None = None) -> Lesson:
        lesson_id = self.insert_lesson(BOOK, lesson_number, title, description)
        return self.lessons[lesson_id]

    def add_message(self, lesson_id: str, display_order: int) -> None:
        self.insert_message(lesson_id, "existing", "general", display_order, ADMIN)

    def list_lessons(self, study_book_id):
        return [l for l in self.lessons.values() if l.study_book_id == study_book_id]

    def insert_lesson(self, study_book_id, lesson_number, title, description):
        lesson_id = f"lesson-{next(self._ids)}"
        self.lessons[lesson_id] = Lesson(
            id=lesson_id,
            study_book_id=study_book_id,
            lesson_number=lesson_number,
            title=title,
            description=description,
        )
        return lesson_id

    def get_lesson(self, lesson_id):
        return self.lessons.get(lesson_id)

    def patch_lesson(self, lesson_id, patch):
        self.patches.append((lesson_id, patch))
        self.lessons[lesson_id] = apply_patch(self.lessons[lesson_id], patch)

    def list_display_orders(self, lesson_id):
        return [m["display_order"] for m in self.messages if m["lesson_id"] == lesson_id]

    def insert_message(self, lesson_id, content, message_type, display_order, created_by):
        if self.fail_on_insert_message:
            raise RuntimeError("insert failed")
        msg_id = f"msg-{next(self._ids)}"
        self.messages.append({
            "id": msg_id,
            "lesson_id": lesson_id,
            "content": content,
            "message_type": message_type,
            "display_order": display_order,
            "created_by": created_by,
        })
        return msg_id

    def messages_for(self, lesson_id):
        return [m for m in self.messages if m["lesson_id"] == lesson_id]


def _row(n: int, content: str = "msg", **kwargs) -> LessonImportRow:
    return LessonImportRow(lesson_number=n, message_type="general", content=content, **kwargs)


@pytest.fixture
def store():
    return InMemoryLessonStore()


# ---------------------------------------------------------------------------
# LessonPatch / apply_patch
# ---------------------------------------------------------------------------

class TestLessonPatch:
    def test_empty(self):
        assert LessonPatch().is_empty()
        assert LessonPatch().present_fields() == {}

    def test_present_fields_only(self):
        assert LessonPatch(title="New").present_fields() == {"title": "New"}

    def test_apply_only_present(self):
        lesson = Lesson(id="l1", study_book_id=BOOK, lesson_number=1, title="Old", description="Keep")
        updated = apply_patch(lesson, LessonPatch(title="New"))
        assert updated.title == "New"
        assert updated.description == "Keep"
        assert lesson.title == "Old"


class TestBuildLessonPatch:
    LESSON = Lesson(id="l1", study_book_id=BOOK, lesson_number=1, title="Intro", description="D")

    def test_identical_values_give_empty_patch(self):
        patch = build_lesson_patch(self.LESSON, _row(1, lesson_title="Intro", lesson_description="D"))
        assert patch.is_empty()

    def test_missing_values_give_empty_patch(self):
        assert build_lesson_patch(self.LESSON, _row(1)).is_empty()

    def test_changed_title_only(self):
        patch = build_lesson_patch(self.LESSON, _row(1, lesson_title="Welcome", lesson_description="D"))
        assert patch == LessonPatch(title="Welcome")

    def test_changed_description(self):
        patch = build_lesson_patch(self.LESSON, _row(1, lesson_description="New D"))
        assert patch == LessonPatch(description="New D")

    def test_empty_string_is_not_supplied(self):
        assert build_lesson_patch(self.LESSON, _row(1, lesson_title="")).is_empty()


# ---------------------------------------------------------------------------
# DisplayOrderCounter
# ---------------------------------------------------------------------------

class TestDisplayOrderCounter:
    def test_seed_from_max(self):
        counter = DisplayOrderCounter()
        counter.seed("l1", [1, 3, 2])
        assert counter.take("l1") == 4
        assert counter.take("l1") == 5

    def test_seed_empty_starts_at_one(self):
        counter = DisplayOrderCounter()
        counter.seed("l1", [])
        assert counter.take("l1") == 1

    def test_negative_orders_floor_at_zero(self):
        counter = DisplayOrderCounter()
        counter.seed("l1", [-5, -2])
        assert counter.take("l1") == 1

    def test_independent_per_lesson(self):
        counter = DisplayOrderCounter()
        counter.seed("l1", [7])
        counter.seed("l2", [])
        assert counter.take("l1") == 8
        assert counter.take("l2") == 1
        assert counter.peek("l1") == 9


# ---------------------------------------------------------------------------
# import_lesson_content
# ---------------------------------------------------------------------------

class TestImportLessonContent:
    def test_creates_lessons_with_default_title(self, store):
        result = import_lesson_content(store, BOOK, [_row(1), _row(2, lesson_title="Faith")], ADMIN)
        assert result.created_lessons == 2
        assert result.created_messages == 2
        titles = {l.lesson_number: l.title for l in store.list_lessons(BOOK)}
        assert titles == {1: "Lesson 1", 2: "Faith"}

    def test_no_duplicate_lessons_within_one_call(self, store):
        result = import_lesson_content(store, BOOK, [_row(3), _row(3), _row(3)], ADMIN)
        assert result.created_lessons == 1
        assert len(store.list_lessons(BOOK)) == 1
        assert result.created_messages == 3

    def test_new_lesson_orders_start_at_one(self, store):
        import_lesson_content(store, BOOK, [_row(1, "a"), _row(1, "b"), _row(1, "c")], ADMIN)
        lesson = store.list_lessons(BOOK)[0]
        assert [m["display_order"] for m in store.messages_for(lesson.id)] == [1, 2, 3]

    def test_reimport_identical_title_continues_order(self, store):
        lesson = store.add_lesson(5, "Grace")
        for order in (1, 2, 3):
            store.add_message(lesson.id, order)

        result = import_lesson_content(
            store, BOOK,
            [_row(5, c, lesson_title="Grace") for c in ("x", "y", "z")],
            ADMIN,
        )

        assert result.created_lessons == 0
        assert result.patched_lessons == 0
        assert store.patches == []
        new_orders = [m["display_order"] for m in store.messages_for(lesson.id)][3:]
        assert new_orders == [4, 5, 6]

    def test_explicit_display_order_used_and_counter_not_consumed(self, store):
        import_lesson_content(
            store, BOOK,
            [_row(1, "a"), _row(1, "b", display_order=10), _row(1, "c")],
            ADMIN,
        )
        lesson = store.list_lessons(BOOK)[0]
        assert [m["display_order"] for m in store.messages_for(lesson.id)] == [1, 10, 2]

    def test_counters_independent_per_lesson(self, store):
        l1 = store.add_lesson(1, "One")
        store.add_message(l1.id, 4)
        import_lesson_content(store, BOOK, [_row(1, "a"), _row(2, "b"), _row(1, "c")], ADMIN)
        l2 = next(l for l in store.list_lessons(BOOK) if l.lesson_number == 2)
        assert [m["display_order"] for m in store.messages_for(l1.id)] == [4, 5, 6]
        assert [m["display_order"] for m in store.messages_for(l2.id)] == [1]

    def test_patches_changed_title_once(self, store):
        lesson = store.add_lesson(1, "Old", "Desc")
        result = import_lesson_content(
            store, BOOK,
            [_row(1, "a", lesson_title="New"), _row(1, "b", lesson_title="New")],
            ADMIN,
        )
        assert result.patched_lessons == 1
        assert store.patches == [(lesson.id, LessonPatch(title="New"))]
        assert store.get_lesson(lesson.id).title == "New"
        assert store.get_lesson(lesson.id).description == "Desc"

    def test_later_row_patches_lesson_created_earlier(self, store):
        result = import_lesson_content(
            store, BOOK,
            [_row(1, "a"), _row(1, "b", lesson_description="Added later")],
            ADMIN,
        )
        assert result.created_lessons == 1
        assert result.patched_lessons == 1
        assert store.list_lessons(BOOK)[0].description == "Added later"

    def test_messages_carry_type_content_and_creator(self, store):
        import_lesson_content(
            store, BOOK,
            [LessonImportRow(lesson_number=1, message_type="prayer", content="Pray")],
            ADMIN,
        )
        msg = store.messages[0]
        assert (msg["message_type"], msg["content"], msg["created_by"]) == ("prayer", "Pray", ADMIN)

    def test_other_study_books_untouched(self, store):
        other = store.insert_lesson("book-2", 1, "Elsewhere", None)
        result = import_lesson_content(store, BOOK, [_row(1)], ADMIN)
        assert result.created_lessons == 1
        assert store.messages_for(other) == []

    def test_rerun_duplicates_messages(self, store):
        rows = [_row(1, "a"), _row(1, "b")]
        first = import_lesson_content(store, BOOK, rows, ADMIN)
        second = import_lesson_content(store, BOOK, rows, ADMIN)

        assert first.created_lessons == 1
        assert second.created_lessons == 0
        assert second.created_messages == 2
        lesson = store.list_lessons(BOOK)[0]
        msgs = store.messages_for(lesson.id)
        assert [m["content"] for m in msgs] == ["a", "b", "a", "b"]
        assert [m["display_order"] for m in msgs] == [1, 2, 3, 4]

    def test_empty_rows(self, store):
        result = import_lesson_content(store, BOOK, [], ADMIN)
        assert dataclasses.astuple(result) == (0, 0, 0)

    def test_store_failure_propagates(self, store):
        store.fail_on_insert_message = True
        with pytest.raises(RuntimeError, match="insert failed"):
            import_lesson_content(store, BOOK, [_row(1)], ADMIN)

    def test_result_to_dict(self, store):
        result = import_lesson_content(store, BOOK, [_row(1), _row(2)], ADMIN)
        assert result.to_dict() == {"createdLessons": 2, "createdMessages": 2}
