from datetime import date, datetime, timedelta, timezone

from lieutime.utils.timezone import (
    parse_week_start,
    start_of_week,
    sunday_based_weekday,
    to_utc_day,
    utc_midnight,
    week_end,
    week_range,
)


def test_start_of_week_is_sunday():
    assert start_of_week(date(2025, 1, 5)) == date(2025, 1, 5)
    assert start_of_week(date(2025, 1, 8)) == date(2025, 1, 5)
    assert start_of_week(date(2025, 1, 11)) == date(2025, 1, 5)
    assert start_of_week(date(2025, 1, 12)) == date(2025, 1, 12)


def test_start_of_week_crosses_month_and_year():
    assert start_of_week(date(2025, 1, 1)) == date(2024, 12, 29)


def test_datetime_is_normalized_to_utc_day():
    # 23:30 on Saturday in UTC-5 is already Sunday in UTC
    local = datetime(2025, 1, 11, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert to_utc_day(local) == date(2025, 1, 12)
    assert start_of_week(local) == date(2025, 1, 12)


def test_naive_datetime_treated_as_utc():
    assert to_utc_day(datetime(2025, 1, 11, 23, 30)) == date(2025, 1, 11)


def test_sunday_based_weekday():
    assert sunday_based_weekday(date(2025, 1, 5)) == 0
    assert sunday_based_weekday(date(2025, 1, 10)) == 5
    assert sunday_based_weekday(date(2025, 1, 11)) == 6


def test_week_range_is_half_open():
    start, end = week_range(date(2025, 1, 5))
    assert start == date(2025, 1, 5)
    assert end == date(2025, 1, 12)
    assert week_end(date(2025, 1, 5)) == date(2025, 1, 11)


def test_utc_midnight():
    assert utc_midnight(date(2025, 1, 5)) == datetime(2025, 1, 5, tzinfo=timezone.utc)


def test_parse_week_start_snaps():
    assert parse_week_start("2025-01-09") == date(2025, 1, 5)
