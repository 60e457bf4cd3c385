"""lesson_etl.contacts_csv

Contacts CSV validation and normalization.

Input is raw CSV text with a header row.  Accepted headers (any case or
punctuation): name/fullname, phoneNumber/phone/mobile/cell,
email/emailAddress, notes/note.  name and phoneNumber are required.

Output is a ContactImportResult partitioning every data row into valid
contacts (phone reduced to 10 US digits) or rejections with a spreadsheet
row number.  Nothing is written to the database here; see
lesson_store.insert_contacts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from lesson_etl.csv_tokenizer import tokenize
from lesson_etl.headers import CONTACT_HEADERS, HeaderIndex, HeaderSpec, resolve_headers
from lesson_etl.normalize import normalize_us_phone, trim, us_phone_digits
from lesson_etl.shared import STRUCTURAL_ROW, InvalidRow

EMPTY_FILE_REASON = "Empty file"


@dataclass(frozen=True)
class ValidContact:
    row_number: int
    name: str
    phone_number: str
    email: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, str]:
        """camelCase record; optional fields are omitted, not blank."""
        out = {"name": self.name, "phoneNumber": self.phone_number}
        if self.email is not None:
            out["email"] = self.email
        if self.notes is not None:
            out["notes"] = self.notes
        return out


ContactOutcome = Union[ValidContact, InvalidRow]


@dataclass
class ContactImportResult:
    valids: list[ValidContact] = field(default_factory=list)
    invalids: list[InvalidRow] = field(default_factory=list)
    # Raw rows kept for reject-file output; header first
    rows: list[list[str]] = field(default_factory=list)
    blank_rows_skipped: int = 0


def is_blank_row(cols: list[str]) -> bool:
    """A row that tokenizes to one empty field is a blank-line artifact."""
    return len(cols) == 1 and cols[0].strip() == ""


def validate_contact_row(
    cols: list[str],
    index: HeaderIndex,
    row_number: int,
) -> ContactOutcome:
    """Apply the contact rules in order, stopping at the first failure."""
    name = trim(index.cell(cols, "name"))
    if name is None:
        return InvalidRow(row_number, "Missing name")

    phone_raw = trim(index.cell(cols, "phoneNumber"))
    if phone_raw is None:
        return InvalidRow(row_number, "Missing phoneNumber")

    phone = normalize_us_phone(phone_raw)
    if phone is None:
        got = len(us_phone_digits(phone_raw))
        return InvalidRow(
            row_number,
            f"Invalid US phone after normalization: got {got} digits",
        )

    return ValidContact(
        row_number=row_number,
        name=name,
        phone_number=phone,
        email=trim(index.cell(cols, "email")),
        notes=trim(index.cell(cols, "notes")),
    )


def validate_contacts_csv(
    text: str,
    spec: HeaderSpec = CONTACT_HEADERS,
) -> ContactImportResult:
    """Tokenize, resolve headers, and validate every data row.

    Structural failures (empty input, missing required headers) return a
    result with no valid rows and exactly one row-0 rejection.
    """
    rows = tokenize(text)
    result = ContactImportResult(rows=rows)
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
        outcome = validate_contact_row(cols, index, row_number=r + 1)
        if isinstance(outcome, InvalidRow):
            result.invalids.append(outcome)
        else:
            result.valids.append(outcome)
    return result
