"""lesson_etl.headers

Header normalization for CSV imports.

Each import type declares a HeaderSpec: a static mapping from canonical
field name to the set of accepted (already normalized) header spellings,
plus the subset of canonical fields that must be present.  resolve_headers
matches the first tokenized row against a spec once per import.

Extra spellings can be supplied from a YAML file:

    contacts:
      phoneNumber: [telefono, "Cell Phone"]
    lesson_content:
      content: [body]

Usage:
    from lesson_etl.headers import CONTACT_HEADERS, resolve_headers

    index = resolve_headers(rows[0], CONTACT_HEADERS)
    if index.missing():
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from lesson_etl.normalize import normalize_header

NOT_FOUND = -1


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class AliasFileError(ValueError):
    """Raised when a header alias YAML file fails validation."""


# ---------------------------------------------------------------------------
# Header specs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HeaderSpec:
    import_type: str
    aliases: Mapping[str, frozenset[str]]
    required: tuple[str, ...]
    # Human-readable label used in the missing-headers diagnostic
    required_label: str

    def with_aliases(self, extra: Mapping[str, list[str]]) -> HeaderSpec:
        """Return a copy with additional spellings merged in."""
        merged = dict(self.aliases)
        for canonical, spellings in extra.items():
            if canonical not in merged:
                raise AliasFileError(
                    f"unknown field {canonical!r} for {self.import_type}; "
                    f"expected one of {sorted(merged)}"
                )
            merged[canonical] = merged[canonical] | {
                normalize_header(s) for s in spellings
            }
        return HeaderSpec(
            import_type=self.import_type,
            aliases=merged,
            required=self.required,
            required_label=self.required_label,
        )


CONTACT_HEADERS = HeaderSpec(
    import_type="contacts",
    aliases={
        "name": frozenset({"name", "fullname"}),
        "phoneNumber": frozenset({"phonenumber", "phone", "mobile", "cell"}),
        "email": frozenset({"email", "emailaddress"}),
        "notes": frozenset({"notes", "note"}),
    },
    required=("name", "phoneNumber"),
    required_label="name and phoneNumber",
)

LESSON_HEADERS = HeaderSpec(
    import_type="lesson_content",
    aliases={
        "lessonNumber": frozenset({"lessonnumber", "lesson", "lessonno", "number"}),
        "messageType": frozenset({"messagetype", "type"}),
        "content": frozenset({"content", "message", "text"}),
        "lessonTitle": frozenset({"lessontitle", "title"}),
        "lessonDescription": frozenset({"lessondescription", "description", "desc"}),
        "displayOrder": frozenset({"displayorder", "order", "idx", "position"}),
    },
    required=("lessonNumber", "messageType", "content"),
    required_label="lessonNumber, messageType, content",
)

HEADER_SPECS: dict[str, HeaderSpec] = {
    CONTACT_HEADERS.import_type: CONTACT_HEADERS,
    LESSON_HEADERS.import_type: LESSON_HEADERS,
}


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HeaderIndex:
    """Column position per canonical field, NOT_FOUND (-1) when absent."""

    spec: HeaderSpec
    positions: Mapping[str, int] = field(default_factory=dict)

    def __getitem__(self, canonical: str) -> int:
        return self.positions.get(canonical, NOT_FOUND)

    def has(self, canonical: str) -> bool:
        return self[canonical] != NOT_FOUND

    def missing(self) -> list[str]:
        return [c for c in self.spec.required if not self.has(c)]

    def missing_reason(self) -> str:
        return f"Missing required headers: {self.spec.required_label}"

    def cell(self, cols: list[str], canonical: str) -> str:
        """Return the raw cell for a canonical field ('' when absent or short)."""
        pos = self[canonical]
        if pos == NOT_FOUND or pos >= len(cols):
            return ""
        return cols[pos]


def resolve_headers(header_row: list[str], spec: HeaderSpec) -> HeaderIndex:
    """Map each canonical field to the first column whose header matches."""
    normalized = [normalize_header(h) for h in header_row]
    positions: dict[str, int] = {}
    for canonical, accepted in spec.aliases.items():
        positions[canonical] = next(
            (i for i, h in enumerate(normalized) if h in accepted),
            NOT_FOUND,
        )
    return HeaderIndex(spec=spec, positions=positions)


# ---------------------------------------------------------------------------
# YAML overrides
# ---------------------------------------------------------------------------

def validate_alias_overrides(data: Any) -> dict[str, dict[str, list[str]]]:
    """Validate parsed YAML alias overrides.

    Raises:
        AliasFileError: describing the first problem found.
    """
    if not isinstance(data, dict):
        raise AliasFileError("alias file must be a mapping of import type → fields")
    result: dict[str, dict[str, list[str]]] = {}
    for import_type, fields in data.items():
        if import_type not in HEADER_SPECS:
            raise AliasFileError(
                f"unknown import type {import_type!r}; "
                f"expected one of {sorted(HEADER_SPECS)}"
            )
        if not isinstance(fields, dict):
            raise AliasFileError(f"{import_type}: expected a mapping of field → aliases")
        parsed: dict[str, list[str]] = {}
        for canonical, spellings in fields.items():
            if isinstance(spellings, str):
                spellings = [spellings]
            if not isinstance(spellings, list) or not all(
                isinstance(s, str) for s in spellings
            ):
                raise AliasFileError(
                    f"{import_type}.{canonical}: aliases must be a string or list of strings"
                )
            parsed[str(canonical)] = spellings
        result[import_type] = parsed
    return result


def load_alias_overrides(yaml_path: Path) -> dict[str, HeaderSpec]:
    """Load a YAML alias file and return the header specs with overrides applied.

    Import types absent from the file keep their built-in spec.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise AliasFileError(f"not valid YAML: {exc}") from exc
    overrides = validate_alias_overrides(data)
    specs = dict(HEADER_SPECS)
    for import_type, extra in overrides.items():
        specs[import_type] = specs[import_type].with_aliases(extra)
    return specs
