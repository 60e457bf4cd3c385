"""Normalization functions for lesson and contact CSV ingestion.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re

_NON_DIGIT_RE = re.compile(r"[^0-9]")
_NON_HEADER_CHAR_RE = re.compile(r"[^a-z0-9]+")
_LEADING_INT_RE = re.compile(r"^[+-]?[0-9]+")

US_PHONE_DIGITS = 10


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_header
# ---------------------------------------------------------------------------

def normalize_header(value: str | None) -> str:
    """Lowercase a header cell and drop everything outside [a-z0-9].

    'Phone Number' → 'phonenumber', 'E-mail Address' → 'emailaddress'.
    """
    if value is None:
        return ""
    return _NON_HEADER_CHAR_RE.sub("", value.strip().lower())


# ---------------------------------------------------------------------------
# Rule 3: US phone digits
# ---------------------------------------------------------------------------

def us_phone_digits(value: str | None) -> str:
    """Keep digits only; an 11-digit value with a leading '1' loses the '1'.

    The result is not checked for length; see normalize_us_phone.
    """
    if value is None:
        return ""
    digits = _NON_DIGIT_RE.sub("", value)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def normalize_us_phone(value: str | None) -> str | None:
    """Return the 10-digit US phone number or None.

    Digit count is the only criterion, so '123-45-67890' and
    '123.456.7890' are both valid.  International numbers that do not
    reduce to 10 digits are rejected.
    """
    digits = us_phone_digits(value)
    if len(digits) != US_PHONE_DIGITS:
        return None
    return digits


# ---------------------------------------------------------------------------
# Rule 4: parse_leading_int
# ---------------------------------------------------------------------------

def parse_leading_int(value: str | None) -> int | None:
    """Parse the leading base-10 integer of a string, or None.

    Lenient like a spreadsheet import: '3' → 3, ' 12 ' → 12, '4a' → 4,
    'abc' → None.
    """
    v = trim(value)
    if v is None:
        return None
    m = _LEADING_INT_RE.match(v)
    if not m:
        return None
    return int(m.group(0))
