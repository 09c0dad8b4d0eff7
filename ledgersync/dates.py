"""Calendar-date and month-start normalization.

Only two date shapes cross the storage boundary: ``YYYY-MM-DD`` and
``YYYY-MM-01``. Full timestamps (createdAt/updatedAt) are opaque sortable
strings and never pass through here.
"""

import re
from datetime import date, datetime, timezone
from typing import Optional

from dateutil import parser as date_parser

_DATE_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_MONTH_ONLY = re.compile(r"^(\d{4})-(\d{2})$")

# Two unrelated defaults: dateutil fills missing fields from them, so a
# partial input parses differently against each.
_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def _valid_date(year: str, month: str, day: str) -> Optional[date]:
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def _parse_free_form(value: str) -> Optional[date]:
    results = set()
    for default in _DEFAULTS:
        try:
            parsed = date_parser.parse(value, default=default)
        except (ValueError, OverflowError):
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
        results.add(parsed.date())
    # Missing year, month or day: reject rather than borrow them.
    return results.pop() if len(results) == 1 else None


def to_calendar_date(raw: Optional[str]) -> Optional[str]:
    """Normalize ``raw`` to ``YYYY-MM-DD``.

    Accepts an exact date (or anything starting with one), a bare month
    (day defaults to 01) or a free-form date/time string naming a full
    date, truncated to its UTC date. Free-form input missing its year,
    month or day is rejected. Returns None when nothing parses; callers must treat
    that as an input error rather than substitute a default.
    """
    if not raw or not isinstance(raw, str):
        return None
    value = raw.strip()

    match = _DATE_PREFIX.match(value)
    if match and _valid_date(*match.groups()):
        return value[:10]

    match = _MONTH_ONLY.match(value)
    if match:
        year, month = match.groups()
        return f"{year}-{month}-01" if _valid_date(year, month, "01") else None

    parsed = _parse_free_form(value)
    return parsed.isoformat() if parsed else None


def to_month_start(raw: Optional[str]) -> Optional[str]:
    """Normalize ``raw`` to the first day of its month (``YYYY-MM-01``)."""
    calendar_date = to_calendar_date(raw)
    if calendar_date is None:
        return None
    return f"{calendar_date[:7]}-01"
