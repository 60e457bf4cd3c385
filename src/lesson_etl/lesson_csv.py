"""lesson_etl.lesson_csv

Lesson-content CSV validation.

CSV columns: lessonNumber, messageType, content, [lessonTitle],
[lessonDescription], [displayOrder].  Each valid row becomes a
LessonImportRow ready for lesson_import.import_lesson_content.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from lesson_etl.contacts_csv import EMPTY_FILE_REASON, is_blank_row
from lesson_etl.csv_tokenizer import tokenize
from lesson_etl.headers import LESSON_HEADERS, HeaderIndex, HeaderSpec, resolve_headers
from lesson_etl.lesson_import import LessonImportRow
from lesson_etl.normalize import parse_leading_int, trim
from lesson_etl.shared import STRUCTURAL_ROW, InvalidRow

MESSAGE_TYPES = (
    "reminder",
    "scripture",
    "discussion",
    "encouragement",
    "prayer",
    "application",
    "general",
)


@dataclass
class LessonCsvResult:
    valids: list[LessonImportRow] = field(default_factory=list)
    invalids: list[InvalidRow] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    blank_rows_skipped: int = 0

    @property
    def lessons_affected(self) -> int:
        return len({r.lesson_number for r in self.valids})


def validate_lesson_row(
    cols: list[str],
    index: HeaderIndex,
    row_number: int,
) -> LessonImportRow | InvalidRow:
    lesson_number = parse_leading_int(index.cell(cols, "lessonNumber"))
    if lesson_number is None:
        return InvalidRow(row_number, "Invalid lessonNumber")

    content = trim(index.cell(cols, "content"))
    if content is None:
        return InvalidRow(row_number, "Missing content")

    message_type = index.cell(cols, "messageType").strip().lower()
    if message_type not in MESSAGE_TYPES:
        return InvalidRow(row_number, f"Invalid messageType: {message_type}")

    return LessonImportRow(
        lesson_number=lesson_number,
        message_type=message_type,
        content=content,
        lesson_title=trim(index.cell(cols, "lessonTitle")),
        lesson_description=trim(index.cell(cols, "lessonDescription")),
        display_order=parse_leading_int(index.cell(cols, "displayOrder")),
    )


def validate_lesson_csv(
    text: str,
    spec: HeaderSpec = LESSON_HEADERS,
) -> LessonCsvResult:
    """Tokenize, resolve headers, and validate every lesson-content row."""
    rows = tokenize(text)
    result = LessonCsvResult(rows=rows)
    if not rows:
        result.invalids.append(InvalidRow(STRUCTURAL_ROW, EMPTY_FILE_REASON))
        return result

    index = resolve_headers(rows[0], spec)
    if index.missing():
        result.invalids.append(InvalidRow(STRUCTURAL_ROW, index.missing_reason()))
        return result

    for r in range(1, len(rows)):
        cols = rows[r]
        if is_blank_row(cols):
            result.blank_rows_skipped += 1
            continue
        outcome = validate_lesson_row(cols, index, row_number=r + 1)
        if isinstance(outcome, InvalidRow):
            result.invalids.append(outcome)
        else:
            result.valids.append(outcome)
    return result
