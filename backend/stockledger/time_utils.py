from __future__ import annotations

import calendar
from datetime import date, datetime, time, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight of that day
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def normalize_datetime(value: datetime | date) -> datetime:
    """Coerce aware datetimes and plain dates to the canonical UTC-naive form."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime.combine(value, time.min)


def start_of_day(value: datetime | date) -> datetime:
    return datetime.combine(_as_date(value), time.min)


def end_of_day(value: datetime | date) -> datetime:
    return datetime.combine(_as_date(value), time.max)


def month_bounds(as_of: datetime | date) -> tuple[datetime, datetime]:
    """First and last instant of the calendar month containing ``as_of`` (inclusive)."""
    d = _as_date(as_of)
    last_day = calendar.monthrange(d.year, d.month)[1]
    return (
        datetime(d.year, d.month, 1),
        datetime.combine(date(d.year, d.month, last_day), time.max),
    )


def clamp_day_of_month(year: int, month: int, day_of_month: int) -> date:
    """
    Date for ``day_of_month`` in the given month, clamped to the month's last day.

    day_of_month=31 in February resolves to the 28th (29th in leap years).
    """
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last_day))


def month_key(as_of: datetime | date) -> str:
    d = _as_date(as_of)
    return f"{d.year:04d}-{d.month:02d}"


def _as_date(value: datetime | date) -> date:
    if isinstance(value, datetime):
        return normalize_datetime(value).date()
    return value
