from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from trivia.scheduler.triggers import MONDAY, SUNDAY, DailyAt, Hourly, Interval, WeeklyAt

UTC = timezone.utc


def test_daily_before_fire_time_fires_today():
    now = datetime(2026, 3, 4, 1, 0, tzinfo=UTC)
    assert DailyAt(2, 0).next_fire(now) == datetime(2026, 3, 4, 2, 0, tzinfo=UTC)


def test_daily_after_fire_time_fires_tomorrow():
    now = datetime(2026, 3, 4, 3, 0, tzinfo=UTC)
    assert DailyAt(2, 0).next_fire(now) == datetime(2026, 3, 5, 2, 0, tzinfo=UTC)


def test_daily_exactly_at_fire_time_schedules_next_day():
    now = datetime(2026, 3, 4, 2, 0, tzinfo=UTC)
    assert DailyAt(2, 0).next_fire(now) == datetime(2026, 3, 5, 2, 0, tzinfo=UTC)


def test_daily_rolls_over_month_end():
    now = datetime(2026, 2, 28, 23, 0, tzinfo=UTC)
    assert DailyAt(1, 30).next_fire(now) == datetime(2026, 3, 1, 1, 30, tzinfo=UTC)


def test_weekly_sunday_after_fire_time_goes_to_next_sunday():
    # 2026-03-01 is a Sunday.
    now = datetime(2026, 3, 1, 4, 0, tzinfo=UTC)
    assert now.weekday() == SUNDAY
    assert WeeklyAt(SUNDAY, 3, 0).next_fire(now) == datetime(2026, 3, 8, 3, 0, tzinfo=UTC)


def test_weekly_sunday_before_fire_time_is_same_day():
    now = datetime(2026, 3, 1, 2, 59, tzinfo=UTC)
    assert WeeklyAt(SUNDAY, 3, 0).next_fire(now) == datetime(2026, 3, 1, 3, 0, tzinfo=UTC)


def test_weekly_midweek_goes_to_coming_sunday():
    now = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)  # Wednesday
    assert WeeklyAt(SUNDAY, 3, 0).next_fire(now) == datetime(2026, 3, 8, 3, 0, tzinfo=UTC)


def test_hourly_runs_an_hour_after_now():
    now = datetime(2026, 3, 4, 12, 17, 5, tzinfo=UTC)
    assert Hourly().next_fire(now) == now + timedelta(hours=1)


def test_hourly_at_minute():
    now = datetime(2026, 3, 4, 12, 17, tzinfo=UTC)
    assert Hourly(minute=15).next_fire(now) == datetime(2026, 3, 4, 13, 15, tzinfo=UTC)
    assert Hourly(minute=30).next_fire(now) == datetime(2026, 3, 4, 12, 30, tzinfo=UTC)


def test_interval():
    now = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)
    assert Interval(timedelta(minutes=5)).next_fire(now) == now + timedelta(minutes=5)


def test_next_fire_keeps_timezone():
    tz = ZoneInfo("Asia/Shanghai")
    now = datetime(2026, 3, 4, 1, 0, tzinfo=tz)
    fire = DailyAt(2, 0).next_fire(now)
    assert fire == datetime(2026, 3, 4, 2, 0, tzinfo=tz)
    assert fire.tzinfo is tz


def test_cron_expressions_use_sunday_as_zero():
    assert DailyAt(2, 0).cron == "0 2 * * *"
    assert WeeklyAt(SUNDAY, 3, 0).cron == "0 3 * * 0"
    assert WeeklyAt(MONDAY, 9, 15).cron == "15 9 * * 1"


def test_daily_across_spring_forward_is_22_real_hours():
    berlin = ZoneInfo("Europe/Berlin")
    # 2026-03-29 02:00 CET jumps to 03:00 CEST.
    now = datetime(2026, 3, 28, 5, 0, tzinfo=berlin)

    fire = DailyAt(4, 0).next_fire(now)

    assert fire.utcoffset() == timedelta(hours=2)
    assert (fire.hour, fire.minute) == (4, 0)
    assert fire.astimezone(UTC) - now.astimezone(UTC) == timedelta(hours=22)


def test_interval_counts_real_time_across_fall_back():
    berlin = ZoneInfo("Europe/Berlin")
    now = datetime(2026, 10, 25, 1, 30, tzinfo=berlin)

    fire = Interval(timedelta(hours=1)).next_fire(now)

    assert fire.astimezone(UTC) - now.astimezone(UTC) == timedelta(hours=1)


def test_naive_now_is_rejected():
    with pytest.raises(ValueError):
        DailyAt(2, 0).next_fire(datetime(2026, 3, 4, 1, 0))


@pytest.mark.parametrize(
    "build",
    [
        lambda: DailyAt(24, 0),
        lambda: DailyAt(2, 60),
        lambda: WeeklyAt(7, 3, 0),
        lambda: Hourly(minute=-1),
        lambda: Interval(timedelta(0)),
    ],
)
def test_invalid_triggers_are_rejected(build):
    with pytest.raises(ValueError):
        build()
