"""Civil-calendar helpers for the single business timezone.

All instants handled by the engine are timezone-aware UTC datetimes. Naive
datetimes are treated as UTC, matching how they are stored in the database.
Calendar questions ("which day is this?", "when does that day start?") are
answered in ``settings.BUSINESS_TIMEZONE``.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from app.config import settings


@dataclass(frozen=True)
class DayBounds:
    day: date
    day_start: datetime
    day_end: datetime


def business_tz() -> ZoneInfo:
    return ZoneInfo(settings.BUSINESS_TIMEZONE)


def business_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def localize_naive(value: datetime) -> datetime:
    """Read client input: a naive value is wall-clock time in the business timezone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=business_tz())
    return value.astimezone(timezone.utc)


def to_utc_naive(value: datetime) -> datetime:
    return ensure_aware(value).replace(tzinfo=None)


def from_utc_naive(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return ensure_aware(value)


def to_civil(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(business_tz())


def civil_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return to_civil(value).date()
    return value


def day_bounds(value: date | datetime) -> DayBounds:
    day = civil_date(value)
    tz = business_tz()
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return DayBounds(
        day=day,
        day_start=start.astimezone(timezone.utc),
        day_end=end.astimezone(timezone.utc),
    )


def start_of_day(value: date | datetime) -> datetime:
    return day_bounds(value).day_start


def horizon_day_diff(target: date | datetime, now: datetime) -> int:
    return (civil_date(target) - civil_date(now)).days


def day_of_week(day: date) -> int:
    """Day index with Sunday as 0, the convention of the hours table."""
    return day.isoweekday() % 7


def parse_hhmm(raw: str) -> time:
    hours, _, minutes = (raw or "").strip().partition(":")
    return time(int(hours), int(minutes or 0))


def at_civil_time(day: date, hhmm: str) -> datetime:
    local = datetime.combine(day, parse_hhmm(hhmm), tzinfo=business_tz())
    return local.astimezone(timezone.utc)
