"""
Date and Time Parsing.

Reduces the date and time formats seen across event sources to two canonical
text forms:

- dates: ISO calendar date, "2025-03-01"
- times: 12-hour clock, "7:00 PM"

Handles:
- ISO date-times ("2025-03-01T19:00:00Z") -> date as written, no timezone shift
- "2025-03-01", date/datetime objects, epoch timestamps
- Free text ("March 1, 2025", "Sat, Mar 1st 2025 at 7pm", "1 March 2025", "3/1/2025")
- Times ("19:00", "19:00:00", "7pm", "7:30 p.m.", "noon")
- Time ranges ("10am-2pm", "7-11pm", "7:30 PM - 9:30 PM")
"""

from __future__ import annotations

import logging
import math
import re
from datetime import UTC, date, datetime, time
from typing import Any

logger = logging.getLogger(__name__)

_MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_MONTH_NAME = (
    r"(?P<month>jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?"
    r"|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?"
)
_DAY = r"(?P<day>\d{1,2})(?:st|nd|rd|th)?"
_YEAR = r"(?P<year>\d{4})"

_ISO_DATE_PREFIX = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:$|[T\s])")
_MONTH_FIRST = re.compile(rf"\b{_MONTH_NAME}\s+{_DAY},?\s+{_YEAR}\b", re.IGNORECASE)
_DAY_FIRST = re.compile(rf"\b{_DAY}\s+{_MONTH_NAME},?\s+{_YEAR}\b", re.IGNORECASE)
_US_NUMERIC = re.compile(r"\b(?P<month>\d{1,2})/(?P<day>\d{1,2})/(?P<year>\d{4}|\d{2})\b")

_TIME_12H = re.compile(
    r"^(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?(?::\d{2})?\s*(?P<meridiem>[ap])\.?\s*m\.?$",
    re.IGNORECASE,
)
_TIME_24H = re.compile(
    r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::\d{2}(?:\.\d+)?)?\s*(?:z|[+-]\d{2}:?\d{2})?$",
    re.IGNORECASE,
)
_MERIDIEM_SUFFIX = re.compile(r"([ap])\.?\s*m\.?\s*$", re.IGNORECASE)
_RANGE_SPLIT = re.compile(r"\s*(?:-|–|—|\bto\b)\s*", re.IGNORECASE)

_KEYWORD_TIMES = {
    "noon": "12:00 PM",
    "midday": "12:00 PM",
    "midnight": "12:00 AM",
}


def normalize_date(value: Any) -> str | None:
    """
    Reduce a date-like value to "YYYY-MM-DD".

    Args:
        value: String, date, datetime or epoch timestamp (seconds or milliseconds)

    Returns:
        ISO calendar date, or None when the value cannot be understood
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return value.date().isoformat()

    if isinstance(value, date):
        return value.isoformat()

    if isinstance(value, (int, float)):
        return _date_from_timestamp(value)

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    iso_match = _ISO_DATE_PREFIX.match(text)
    if iso_match:
        return _build_date(*(int(part) for part in iso_match.groups()))

    for pattern in (_MONTH_FIRST, _DAY_FIRST):
        match = pattern.search(text)
        if match:
            month = _MONTHS[match.group("month").lower()[:3]]
            return _build_date(int(match.group("year")), month, int(match.group("day")))

    match = _US_NUMERIC.search(text)
    if match:
        year = int(match.group("year"))
        if year < 100:
            year += 2000
        return _build_date(year, int(match.group("month")), int(match.group("day")))

    logger.debug(f"Could not parse date: {text!r}")
    return None


def normalize_time(value: Any) -> str | None:
    """
    Reduce a clock time to the "7:00 PM" form.

    Args:
        value: Time string, datetime.time or datetime

    Returns:
        Normalized time text, or None when the value is not a recognizable time
    """
    if isinstance(value, datetime):
        return _format_clock(value.hour, value.minute)

    if isinstance(value, time):
        return _format_clock(value.hour, value.minute)

    if not isinstance(value, str):
        return None

    text = value.strip().lower()
    if not text:
        return None

    if text in _KEYWORD_TIMES:
        return _KEYWORD_TIMES[text]

    match = _TIME_12H.match(text)
    if match:
        hour = int(match.group("hour"))
        minute = int(match.group("minute") or 0)
        if not 1 <= hour <= 12 or minute > 59:
            return None
        hour %= 12
        if match.group("meridiem").lower() == "p":
            hour += 12
        return _format_clock(hour, minute)

    match = _TIME_24H.match(text)
    if match:
        hour = int(match.group("hour"))
        minute = int(match.group("minute"))
        if hour > 23 or minute > 59:
            return None
        return _format_clock(hour, minute)

    logger.debug(f"Could not parse time: {value!r}")
    return None


def parse_time_range(value: Any) -> tuple[str | None, str | None]:
    """
    Split a time or time range into (start_time, end_time).

    A start without its own am/pm inherits the end's ("7-11pm" -> 7:00 PM,
    11:00 PM).

    Args:
        value: Free-text time such as "7pm", "10am-2pm" or "7:30 PM - 9:30 PM"

    Returns:
        Tuple of normalized times; either side may be None
    """
    if not isinstance(value, str) or not value.strip():
        return None, None

    single = normalize_time(value)
    if single is not None:
        return single, None

    parts = _RANGE_SPLIT.split(value.strip(), maxsplit=1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None, None

    start_raw, end_raw = parts
    end_meridiem = _MERIDIEM_SUFFIX.search(end_raw)
    if end_meridiem and not _MERIDIEM_SUFFIX.search(start_raw):
        start_raw = f"{start_raw} {end_meridiem.group(1)}m"

    return normalize_time(start_raw), normalize_time(end_raw)


def split_datetime(value: Any) -> tuple[str | None, str | None]:
    """
    Split a combined "YYYY-MM-DD HH:MM:SS" value into (date, time).

    Used by API payloads that carry a single start/end timestamp string.
    """
    if not isinstance(value, str) or not value.strip():
        return None, None

    parts = re.split(r"[T\s]", value.strip(), maxsplit=1)
    day = normalize_date(parts[0])
    if day is None:
        # Not a "date time" pair, fall back to free-text parsing of the whole value
        return normalize_date(value), None

    clock = normalize_time(parts[1]) if len(parts) > 1 else None
    return day, clock


def _format_clock(hour: int, minute: int) -> str:
    suffix = "AM" if hour < 12 else "PM"
    return f"{hour % 12 or 12}:{minute:02d} {suffix}"


def _build_date(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _date_from_timestamp(value: float) -> str | None:
    if not math.isfinite(value):
        return None
    # Values this large are milliseconds (the JavaScript convention)
    seconds = value / 1000 if abs(value) >= 1e11 else value
    try:
        return datetime.fromtimestamp(seconds, tz=UTC).date().isoformat()
    except (OverflowError, OSError, ValueError):
        return None
