from __future__ import annotations

# Date/time helpers.
#
# Drafts and stored records keep timestamps as ISO-8601 strings (UTC, with a
# trailing "Z"). The wizard works with structured `date`/`time` values and
# only turns them into strings at the edge, so nothing is ever re-parsed from
# a display label.

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

MONTHS = (
    "JANUARY",
    "FEBRUARY",
    "MARCH",
    "APRIL",
    "MAY",
    "JUNE",
    "JULY",
    "AUGUST",
    "SEPTEMBER",
    "OCTOBER",
    "NOVEMBER",
    "DECEMBER",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Serialize an aware datetime as `YYYY-MM-DDTHH:MM:SS.mmmZ`."""
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string into an aware datetime.

    A trailing "Z" is accepted. Values without an offset are read as local
    time. Returns None for empty or malformed input.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt


def coerce_timestamp(value: Any) -> datetime | None:
    """Best-effort conversion of a stored timestamp to an aware datetime.

    Accepts datetimes (Firestore returns datetime subclasses), epoch seconds
    and ISO strings. Anything else yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        return parse_iso(value)
    return None


def format_for_datetime_input(value: str | datetime | None, tz: tzinfo | None = None) -> str:
    """Format a timestamp as `YYYY-MM-DDTHH:MM` in `tz` (local time by default).

    Invalid or empty input gives "".
    """
    dt = value if isinstance(value, datetime) else parse_iso(value)
    if dt is None:
        return ""
    if dt.tzinfo is None:
        dt = dt.astimezone()
    local = dt.astimezone(tz) if tz is not None else dt.astimezone()
    return local.strftime("%Y-%m-%dT%H:%M")


def parse_datetime_input(text: str | None, tz: tzinfo | None = None) -> datetime | None:
    """Inverse of `format_for_datetime_input`."""
    if not text:
        return None
    try:
        naive = datetime.strptime(text.strip(), "%Y-%m-%dT%H:%M")
    except ValueError:
        return None
    if tz is not None:
        return naive.replace(tzinfo=tz)
    return naive.astimezone()


def combine(day: date, at: time, tz: tzinfo | None = None) -> datetime:
    """Join a calendar day and a wall-clock time into an aware datetime."""
    naive = datetime.combine(day, at.replace(second=0, microsecond=0, tzinfo=None))
    if tz is not None:
        return naive.replace(tzinfo=tz)
    return naive.astimezone()


def format_display_date(day: date) -> str:
    """`date(2025, 7, 2)` -> `"JULY 2, 2025"`."""
    return f"{MONTHS[day.month - 1]} {day.day}, {day.year}"


def format_time_label(at: time) -> str:
    """`time(13, 0)` -> `"1:00 PM"`."""
    hour12 = at.hour % 12 or 12
    period = "AM" if at.hour < 12 else "PM"
    return f"{hour12}:{at.minute:02d} {period}"


def time_options(first_hour: int = 1, last_hour: int = 23) -> list[time]:
    """Whole-hour choices offered by the schedule/expiration pickers."""
    if not 0 <= first_hour <= last_hour <= 23:
        raise ValueError("hours must satisfy 0 <= first_hour <= last_hour <= 23")
    return [time(hour=h) for h in range(first_hour, last_hour + 1)]


def date_options(today: date | None = None, days: int = 30) -> list[date]:
    """The next `days` calendar days starting at `today`."""
    if days <= 0:
        raise ValueError("days must be > 0")
    start = today or date.today()
    return [start + timedelta(days=i) for i in range(days)]


def format_when(value: Any) -> str:
    """Short human label used in lists and CSV exports, e.g. `Jul 2, 2025, 08:00 AM`."""
    dt = coerce_timestamp(value)
    if dt is None:
        return ""
    local = dt.astimezone()
    month = MONTHS[local.month - 1][:3].title()
    hour12 = local.hour % 12 or 12
    period = "AM" if local.hour < 12 else "PM"
    return f"{month} {local.day}, {local.year}, {hour12:02d}:{local.minute:02d} {period}"
