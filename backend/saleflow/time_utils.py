from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%G-W%V",
    "month": "%Y-%m",
}


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime string and normalize to UTC-naive.

    - None / "" -> None
    - "YYYY-MM-DD" -> midnight of that day
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    dt = parse_iso_datetime(value)
    return dt.date() if dt else None


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Inclusive start, exclusive end of a UTC day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def period_key(dt: datetime, group_by: str) -> str:
    """Bucket label for a timestamp: day 2026-10-18, week 2026-W42, month 2026-10."""
    try:
        fmt = PERIOD_FORMATS[group_by]
    except KeyError:
        raise ValueError(f"group_by must be one of {', '.join(PERIOD_FORMATS)}")
    return dt.strftime(fmt)


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
