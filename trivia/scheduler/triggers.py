"""Wall-clock triggers for periodic jobs.

``next_fire(now)`` is always strictly after ``now``: a job that finishes at
exactly its fire time is scheduled for the following period, never re-run.
Calendar triggers are cron expressions evaluated by croniter in the timezone
of ``now``; fixed-period triggers add real elapsed time.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from croniter import croniter

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = range(7)


class Trigger(Protocol):
    def next_fire(self, now: datetime) -> datetime:
        ...


def _check_time(hour: int, minute: int) -> None:
    if not 0 <= hour <= 23:
        raise ValueError(f"hour must be in 0..23, got {hour}")
    if not 0 <= minute <= 59:
        raise ValueError(f"minute must be in 0..59, got {minute}")


def cron_next(expression: str, now: datetime) -> datetime:
    """First time matching `expression` strictly after `now`, in now's zone."""

    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    it = croniter(expression, now)
    fire = it.get_next(datetime)
    # Same-zone comparisons are wall-clock; compare instants instead.
    while fire.astimezone(timezone.utc) <= now.astimezone(timezone.utc):
        fire = it.get_next(datetime)
    return fire.astimezone(now.tzinfo)


def _after(now: datetime, period: timedelta) -> datetime:
    # Add elapsed time in UTC so a DST shift inside the period is not counted.
    return (now.astimezone(timezone.utc) + period).astimezone(now.tzinfo)


@dataclass(frozen=True)
class DailyAt:
    hour: int
    minute: int = 0

    def __post_init__(self) -> None:
        _check_time(self.hour, self.minute)

    @property
    def cron(self) -> str:
        return f"{self.minute} {self.hour} * * *"

    def next_fire(self, now: datetime) -> datetime:
        return cron_next(self.cron, now)

    def __str__(self) -> str:
        return f"daily at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class WeeklyAt:
    """Fires once a week; ``weekday`` uses datetime numbering (Monday=0, Sunday=6)."""

    weekday: int
    hour: int
    minute: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.weekday <= 6:
            raise ValueError(f"weekday must be in 0..6, got {self.weekday}")
        _check_time(self.hour, self.minute)

    @property
    def cron(self) -> str:
        # cron counts from Sunday=0
        return f"{self.minute} {self.hour} * * {(self.weekday + 1) % 7}"

    def next_fire(self, now: datetime) -> datetime:
        return cron_next(self.cron, now)

    def __str__(self) -> str:
        return f"weekly on day {self.weekday} at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class Interval:
    every: timedelta

    def __post_init__(self) -> None:
        if self.every <= timedelta(0):
            raise ValueError("interval must be positive")

    def next_fire(self, now: datetime) -> datetime:
        return _after(now, self.every)

    def __str__(self) -> str:
        return f"every {self.every}"


@dataclass(frozen=True)
class Hourly:
    """Once an hour.

    With ``minute`` unset the job runs an hour after the previous firing
    (first run one hour after start); with ``minute`` set it runs at that
    minute past every hour.
    """

    minute: int | None = None

    def __post_init__(self) -> None:
        if self.minute is not None:
            _check_time(0, self.minute)

    def next_fire(self, now: datetime) -> datetime:
        if self.minute is None:
            return _after(now, timedelta(hours=1))
        return cron_next(f"{self.minute} * * * *", now)

    def __str__(self) -> str:
        return "hourly" if self.minute is None else f"hourly at :{self.minute:02d}"
