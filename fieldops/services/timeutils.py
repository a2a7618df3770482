from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fieldops.settings import get_settings

DEFAULT_TIMEZONE = "America/Santiago"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return utcnow()
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except ZoneInfoNotFoundError:
        return ZoneInfo(DEFAULT_TIMEZONE)


def local_day_from_utc(ts_utc: datetime) -> date:
    return normalize_ts(ts_utc).astimezone(attendance_timezone()).date()


def local_day_bounds_utc(day: date) -> tuple[datetime, datetime]:
    tz = attendance_timezone()
    local_start = datetime.combine(day, time.min, tzinfo=tz)
    local_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def local_range_bounds_utc(date_from: date, date_to: date) -> tuple[datetime, datetime]:
    start, _ = local_day_bounds_utc(date_from)
    _, end = local_day_bounds_utc(date_to)
    return start, end


def parse_hhmm(value: str | None) -> time | None:
    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) < 2:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return time(hour, minute)


def minutes_of_day(value: datetime) -> int:
    return value.hour * 60 + value.minute


def circular_minutes_diff(a: int, b: int) -> int:
    raw = abs(a - b) % 1440
    return min(raw, 1440 - raw)
