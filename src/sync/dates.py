"""Date handling for values typed into spreadsheets by hand."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

ISO_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
DAY_FIRST_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

ACCEPTED_FORMATS = "YYYY-MM-DD or DD/MM/YYYY"


def parse_sheet_date(value: object) -> Optional[datetime]:
    """Parse a sheet cell into a midnight ``datetime``.

    ``YYYY-MM-DD`` is tried first, then ``DD/MM/YYYY``. A value matching one of
    those shapes but naming an impossible day (``31/02/2024``, ``2024-13-01``)
    is rejected outright rather than handed to the generic parser, which could
    read ``01/02/2024`` month-first. Anything else falls back to
    ``datetime.fromisoformat``. Returns ``None`` when nothing parses.
    """

    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None

    iso_match = ISO_DATE_PATTERN.match(text)
    if iso_match:
        year, month, day = (int(part) for part in iso_match.groups())
        return _build_date(year, month, day)

    day_first_match = DAY_FIRST_PATTERN.match(text)
    if day_first_match:
        day, month, year = (int(part) for part in day_first_match.groups())
        return _build_date(year, month, day)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return normalize_to_midnight(parsed)


def normalize_to_midnight(value: datetime) -> datetime:
    """Drop time-of-day and timezone so only the calendar date is compared."""

    return datetime(value.year, value.month, value.day)


def _build_date(year: int, month: int, day: int) -> Optional[datetime]:
    try:
        return datetime(year, month, day)
    except ValueError:
        return None
