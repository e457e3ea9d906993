"""Turn natural-language time phrases into absolute UTC ranges.

Understood phrases (case-insensitive, surrounding words ignored):

• ``today`` / ``yesterday``
• ``this week`` / ``last week``   (weeks start on Monday)
• ``this month`` / ``last month``
• ``last hour`` / ``past day`` / ``past week`` … (rolling, one unit back from now)
• ``past 3 hours`` / ``last two weeks`` / ``previous 10 minutes``
• ``2 days ago`` / ``an hour ago``   (that whole unit, ending one unit later)

Anything else resolves to ``None`` and the caller keeps its default window.
"""

from __future__ import annotations

import calendar
import logging
import re
from datetime import datetime, timedelta

from collaborator.models import TimeRange, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

_NUMBER_WORDS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11,
    "twelve": 12,
}

_UNIT = r"(minute|min|hour|hr|day|week|month)s?"
_COUNT = r"(\d+|" + "|".join(_NUMBER_WORDS) + r")"

_PAST_N_RE = re.compile(rf"\b(?:past|last|previous)\s+{_COUNT}\s+{_UNIT}\b")
_PAST_ONE_RE = re.compile(rf"\b(?:past|last|previous)\s+{_UNIT}\b")
_AGO_RE = re.compile(rf"\b{_COUNT}\s+{_UNIT}\s+ago\b")


def _start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def _start_of_month(dt: datetime) -> datetime:
    return _start_of_day(dt).replace(day=1)


def _months_back(dt: datetime, months: int) -> datetime:
    """Shift *dt* back by whole calendar months, clamping the day."""
    year, month0 = divmod(dt.year * 12 + (dt.month - 1) - months, 12)
    last_day = calendar.monthrange(year, month0 + 1)[1]
    return dt.replace(year=year, month=month0 + 1, day=min(dt.day, last_day))


def _count(token: str) -> int:
    return int(token) if token.isdigit() else _NUMBER_WORDS[token]


def _unit_delta(unit: str, count: int) -> timedelta | None:
    if unit in ("minute", "min"):
        return timedelta(minutes=count)
    if unit in ("hour", "hr"):
        return timedelta(hours=count)
    if unit == "day":
        return timedelta(days=count)
    if unit == "week":
        return timedelta(weeks=count)
    return None


def _back(now: datetime, unit: str, count: int) -> datetime:
    delta = _unit_delta(unit, count)
    return _months_back(now, count) if delta is None else now - delta


def resolve_time_range(phrase: str, now: datetime | None = None) -> TimeRange | None:
    """Resolve *phrase* relative to *now* (UTC).  ``None`` if not understood."""
    if not phrase or not phrase.strip():
        return None
    now = parse_timestamp(now) if now is not None else utc_now()
    text = " ".join(phrase.lower().split())
    try:
        return _resolve(text, now)
    except (OverflowError, ValueError):
        # Counts so large the start falls outside the datetime range.
        logger.info("Time phrase %r is out of range", phrase)
        return None


def _resolve(text: str, now: datetime) -> TimeRange | None:
    if "yesterday" in text:
        today = _start_of_day(now)
        return TimeRange(start=today - timedelta(days=1), end=today - timedelta(microseconds=1))
    if "today" in text:
        return TimeRange(start=_start_of_day(now), end=now)
    if "this week" in text:
        monday = _start_of_day(now) - timedelta(days=now.weekday())
        return TimeRange(start=monday, end=now)
    if "this month" in text:
        return TimeRange(start=_start_of_month(now), end=now)

    if match := _PAST_N_RE.search(text):
        count, unit = _count(match.group(1)), match.group(2)
        if count <= 0:
            return None
        return TimeRange(start=_back(now, unit, count), end=now)

    # Calendar periods take precedence over the rolling single-unit reading.
    if re.search(r"\b(?:last|previous)\s+week\b", text):
        this_monday = _start_of_day(now) - timedelta(days=now.weekday())
        return TimeRange(
            start=this_monday - timedelta(weeks=1),
            end=this_monday - timedelta(microseconds=1),
        )
    if re.search(r"\b(?:last|previous)\s+month\b", text):
        this_month = _start_of_month(now)
        return TimeRange(
            start=_months_back(this_month, 1),
            end=this_month - timedelta(microseconds=1),
        )

    if match := _PAST_ONE_RE.search(text):
        return TimeRange(start=_back(now, match.group(1), 1), end=now)

    if match := _AGO_RE.search(text):
        count, unit = _count(match.group(1)), match.group(2)
        if count <= 0:
            return None
        start = _back(now, unit, count)
        if unit == "day":
            start = _start_of_day(start)
            return TimeRange(start=start, end=start + timedelta(days=1) - timedelta(microseconds=1))
        return TimeRange(start=start, end=_back(now, unit, count - 1))

    return None
