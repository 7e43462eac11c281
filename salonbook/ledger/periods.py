"""Calendar windows (day, week, month, year) used to bucket activities."""

from __future__ import annotations

import calendar
import datetime as dt
import enum
from dataclasses import dataclass

from .errors import ValidationError

# Weeks start on Monday, as in the French locale the salon works in.
WEEK_START = calendar.MONDAY


class Granularity(str, enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def parse(cls, value: str | "Granularity") -> "Granularity":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown period: {value!r}") from None


class Direction(str, enum.Enum):
    PREV = "prev"
    NEXT = "next"

    @classmethod
    def parse(cls, value: str | "Direction") -> "Direction":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown direction: {value!r}") from None


@dataclass(frozen=True)
class PeriodWindow:
    """Closed interval ``[start, end]`` plus a display label."""

    start: dt.datetime
    end: dt.datetime
    label: str
    granularity: Granularity
    reference: dt.datetime

    def contains(self, moment: dt.date | dt.datetime) -> bool:
        return self.start <= _as_datetime(moment) <= self.end

    def as_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "label": self.label,
            "granularity": self.granularity.value,
            "reference": self.reference.date().isoformat(),
        }


def _as_datetime(moment: dt.date | dt.datetime) -> dt.datetime:
    if isinstance(moment, dt.datetime):
        return moment
    return dt.datetime.combine(moment, dt.time.min)


def _day_label(day: dt.date) -> str:
    return f"{day.day:02d} {calendar.month_name[day.month]} {day.year}"


def _bounds(first: dt.date, last: dt.date) -> tuple[dt.datetime, dt.datetime]:
    return dt.datetime.combine(first, dt.time.min), dt.datetime.combine(last, dt.time.max)


def resolve_window(reference: dt.date | dt.datetime, granularity: Granularity | str) -> PeriodWindow:
    """Return the calendar window of ``granularity`` that contains ``reference``."""

    granularity = Granularity.parse(granularity)
    reference = _as_datetime(reference)
    day = reference.date()
    if granularity is Granularity.DAY:
        first = last = day
        label = _day_label(day)
    elif granularity is Granularity.WEEK:
        first = day - dt.timedelta(days=(day.weekday() - WEEK_START) % 7)
        last = first + dt.timedelta(days=6)
        label = f"Week starting {_day_label(first)}"
    elif granularity is Granularity.MONTH:
        first = day.replace(day=1)
        last = day.replace(day=calendar.monthrange(day.year, day.month)[1])
        label = f"{calendar.month_name[day.month]} {day.year}"
    else:
        first = dt.date(day.year, 1, 1)
        last = dt.date(day.year, 12, 31)
        label = str(day.year)
    start, end = _bounds(first, last)
    return PeriodWindow(start=start, end=end, label=label, granularity=granularity, reference=reference)


def add_months(moment: dt.datetime, months: int) -> dt.datetime:
    """Shift by whole calendar months, clamping the day to the target month."""

    index = moment.year * 12 + (moment.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def step(
    reference: dt.date | dt.datetime,
    granularity: Granularity | str,
    direction: Direction | str,
) -> dt.datetime:
    """Move ``reference`` one ``granularity`` unit backwards or forwards."""

    granularity = Granularity.parse(granularity)
    sign = 1 if Direction.parse(direction) is Direction.NEXT else -1
    reference = _as_datetime(reference)
    if granularity is Granularity.DAY:
        return reference + dt.timedelta(days=sign)
    if granularity is Granularity.WEEK:
        return reference + dt.timedelta(days=7 * sign)
    if granularity is Granularity.MONTH:
        return add_months(reference, sign)
    return add_months(reference, 12 * sign)
