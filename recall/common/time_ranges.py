"""
Time Ranges

Named and custom date windows used to bound temporal retrieval. All
boundaries are computed from a caller-supplied reference instant so results
are reproducible; weeks start on Monday.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from .errors import InputError

# Named windows expressed as "the last N days"
ROLLING_WINDOWS = {
    "recent": 7,
    "last_week": 7,
    "last_month": 30,
    "last_quarter": 90,
    "all_time": 365,
}

CALENDAR_WINDOWS = ("today", "yesterday", "this_week", "this_month", "this_year")

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class TimeRange:
    """Inclusive created_at window"""
    start: datetime
    end: datetime
    label: str = "custom"

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=999999)


def start_of_week(moment: datetime) -> datetime:
    return start_of_day(moment - timedelta(days=moment.weekday()))


def end_of_week(moment: datetime) -> datetime:
    return end_of_day(start_of_week(moment) + timedelta(days=6))


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment.replace(day=1))


def end_of_month(moment: datetime) -> datetime:
    if moment.month == 12:
        first_of_next = moment.replace(year=moment.year + 1, month=1, day=1)
    else:
        first_of_next = moment.replace(month=moment.month + 1, day=1)
    return end_of_day(first_of_next - timedelta(days=1))


def start_of_year(moment: datetime) -> datetime:
    return start_of_day(moment.replace(month=1, day=1))


def end_of_year(moment: datetime) -> datetime:
    return end_of_day(moment.replace(month=12, day=31))


def named_range(name: str, now: Optional[datetime] = None) -> TimeRange:
    """
    Resolve a named window against the reference instant.

    Unrecognized names fall back to "recent" (the last 7 days).

    Args:
        name: Window name, e.g. "recent", "this_week", "last_quarter"
        now: Reference instant (defaults to the current UTC time)

    Returns:
        TimeRange carrying the resolved label
    """
    now = ensure_utc(now or utc_now())
    key = (name or "").strip().lower()

    if key == "today":
        return TimeRange(start_of_day(now), end_of_day(now), "today")
    if key == "yesterday":
        day = now - timedelta(days=1)
        return TimeRange(start_of_day(day), end_of_day(day), "yesterday")
    if key == "this_week":
        return TimeRange(start_of_week(now), end_of_week(now), "this_week")
    if key == "this_month":
        return TimeRange(start_of_month(now), end_of_month(now), "this_month")
    if key == "this_year":
        return TimeRange(start_of_year(now), end_of_year(now), "this_year")

    if key not in ROLLING_WINDOWS:
        key = "recent"
    return TimeRange(now - timedelta(days=ROLLING_WINDOWS[key]), now, key)


def parse_date(value: Union[str, datetime], end: bool = False) -> datetime:
    """
    Parse an ISO date or datetime string.

    A bare date resolves to the start of that day, or its end when ``end`` is
    set, so custom ranges include the whole final day.

    Raises:
        InputError: If the value is not a parseable date
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise InputError(f"Invalid date: {value!r}")

    text = value.strip()
    try:
        if _DATE_ONLY.match(text):
            parsed = datetime.strptime(text, "%Y-%m-%d").replace(tzinfo=timezone.utc)
            return end_of_day(parsed) if end else parsed
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError as e:
        raise InputError(f"Invalid date {value!r}: {e}") from e


def custom_range(start: Union[str, datetime], end: Union[str, datetime]) -> TimeRange:
    """Build an inclusive custom range; reversed bounds are rejected"""
    start_dt = parse_date(start)
    end_dt = parse_date(end, end=True)
    if start_dt > end_dt:
        raise InputError(f"Start date {start} is after end date {end}")
    return TimeRange(start_dt, end_dt, "custom")


def parse_time_range(value, now: Optional[datetime] = None) -> Optional[TimeRange]:
    """
    Normalize the accepted time-range inputs into a TimeRange.

    Accepts None, a TimeRange, a window name, a (start, end) pair, or a dict
    with "start"/"end" (and optionally "name") keys.

    Raises:
        InputError: For malformed custom bounds or unsupported shapes
    """
    if value is None or isinstance(value, TimeRange):
        return value
    if isinstance(value, str):
        return named_range(value, now)
    if isinstance(value, (tuple, list)):
        if len(value) != 2:
            raise InputError("Custom time range needs exactly a start and an end")
        return custom_range(value[0], value[1])
    if isinstance(value, dict):
        if value.get("start") or value.get("end"):
            if not (value.get("start") and value.get("end")):
                raise InputError("Custom time range needs both start and end")
            return custom_range(value["start"], value["end"])
        return named_range(value.get("name", "recent"), now)
    raise InputError(f"Unsupported time range: {type(value).__name__}")


def range_from_references(references, now: Optional[datetime] = None) -> TimeRange:
    """Derive a window from time-reference phrases found in a query"""
    joined = " ".join(references or []).lower()
    if "today" in joined:
        return named_range("today", now)
    if "yesterday" in joined:
        return named_range("yesterday", now)
    if "week" in joined:
        return named_range("this_week", now)
    if "month" in joined:
        return named_range("this_month", now)
    if "year" in joined:
        return named_range("this_year", now)
    return named_range("recent", now)
