from datetime import date, datetime, timezone

from app.core.civil_time import (
    at_civil_time,
    civil_date,
    day_bounds,
    day_of_week,
    ensure_aware,
    horizon_day_diff,
    localize_naive,
    to_utc_naive,
)
from conftest import manila


def test_day_bounds_follow_business_timezone():
    bounds = day_bounds(date(2026, 2, 12))
    assert bounds.day_start == datetime(2026, 2, 11, 16, 0, tzinfo=timezone.utc)
    assert bounds.day_end == datetime(2026, 2, 12, 16, 0, tzinfo=timezone.utc)


def test_civil_date_crosses_utc_midnight():
    # 17:00 UTC is already the next day in Manila
    assert civil_date(datetime(2026, 2, 11, 17, 0, tzinfo=timezone.utc)) == date(2026, 2, 12)
    assert civil_date(manila(2026, 2, 12, 0, 30)) == date(2026, 2, 12)


def test_naive_values_are_treated_as_utc():
    naive = datetime(2026, 2, 12, 1, 0)
    assert ensure_aware(naive) == datetime(2026, 2, 12, 1, 0, tzinfo=timezone.utc)
    assert to_utc_naive(manila(2026, 2, 12, 9, 0)) == naive


def test_horizon_day_diff_counts_civil_days():
    now = manila(2026, 2, 12, 23, 30)
    assert horizon_day_diff(manila(2026, 2, 13, 0, 15), now) == 1
    assert horizon_day_diff(date(2026, 2, 11), now) == -1
    assert horizon_day_diff(now, now) == 0


def test_day_of_week_uses_sunday_zero():
    assert day_of_week(date(2026, 2, 15)) == 0
    assert day_of_week(date(2026, 2, 12)) == 4


def test_at_civil_time_returns_utc_instant():
    assert at_civil_time(date(2026, 2, 12), "09:30") == manila(2026, 2, 12, 9, 30)


def test_localize_naive_reads_business_wall_clock():
    assert localize_naive(datetime(2026, 2, 13, 10, 0)) == manila(2026, 2, 13, 10, 0)
    aware = datetime(2026, 2, 13, 2, 0, tzinfo=timezone.utc)
    assert localize_naive(aware) == aware
