from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta

from timeledger.services.daily import DailySummary

FRIDAY = 5
DEFAULT_WEEKLY_CAP = timedelta(hours=40)
DEFAULT_YEARLY_CAP = timedelta(hours=80)


class WarningLevel(str, enum.Enum):
    NONE = "NONE"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class OvertimeThresholds:
    daily: timedelta
    friday: timedelta | None = None
    days_off: frozenset[int] = field(default_factory=frozenset)
    weekly_cap: timedelta = DEFAULT_WEEKLY_CAP
    yearly_cap: timedelta = DEFAULT_YEARLY_CAP

    def expected_for(self, day: date) -> timedelta:
        weekday = day.isoweekday()
        if weekday in self.days_off:
            return timedelta(0)
        if weekday == FRIDAY and self.friday is not None:
            return self.friday
        return self.daily


@dataclass(frozen=True)
class DailyOvertime:
    day: date
    worked: timedelta
    expected: timedelta
    overtime: timedelta


@dataclass(frozen=True)
class WeeklyOvertime:
    week_start: date
    worked: timedelta
    cap: timedelta
    overtime: timedelta

    @property
    def exceeded(self) -> bool:
        return self.worked > self.cap


@dataclass(frozen=True)
class YearlyOvertime:
    year: int
    overtime: timedelta
    cap: timedelta

    @property
    def exceeded(self) -> bool:
        return self.overtime > self.cap


@dataclass(frozen=True)
class OvertimeAssessment:
    start: date
    end: date
    daily: tuple[DailyOvertime, ...]
    period_overtime: timedelta
    weekly: tuple[WeeklyOvertime, ...]
    yearly: tuple[YearlyOvertime, ...]
    warning_level: WarningLevel

    @property
    def is_over_limit(self) -> bool:
        return self.warning_level == WarningLevel.CRITICAL


def daily_overtime(summary: DailySummary, thresholds: OvertimeThresholds) -> DailyOvertime:
    expected = thresholds.expected_for(summary.day)
    return DailyOvertime(
        day=summary.day,
        worked=summary.total_duration,
        expected=expected,
        overtime=max(timedelta(0), summary.total_duration - expected),
    )


def week_start_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _weeks_touching(start: date, end: date) -> list[date]:
    weeks: list[date] = []
    cursor = week_start_of(start)
    while cursor <= end:
        weeks.append(cursor)
        cursor += timedelta(days=7)
    return weeks


def evaluate_overtime(
    summaries: Sequence[DailySummary],
    thresholds: OvertimeThresholds,
    start: date,
    end: date,
) -> OvertimeAssessment:
    """Assess overtime for ``[start, end]``.

    ``summaries`` may extend beyond the period: whole ISO weeks feed the weekly
    totals and the year-to-date feeds the yearly cap. Only days inside the period
    contribute to ``daily`` and ``period_overtime``.
    """
    if start > end:
        raise ValueError("start must not be after end")

    per_day = {item.day: daily_overtime(item, thresholds) for item in summaries}

    in_period = tuple(per_day[day] for day in sorted(per_day) if start <= day <= end)
    period_total = sum((item.overtime for item in in_period), timedelta(0))

    weekly: list[WeeklyOvertime] = []
    for week_start in _weeks_touching(start, end):
        week_end = week_start + timedelta(days=6)
        worked = sum(
            (item.worked for day, item in per_day.items() if week_start <= day <= week_end),
            timedelta(0),
        )
        weekly.append(
            WeeklyOvertime(
                week_start=week_start,
                worked=worked,
                cap=thresholds.weekly_cap,
                overtime=max(timedelta(0), worked - thresholds.weekly_cap),
            )
        )

    yearly: list[YearlyOvertime] = []
    for year in range(start.year, end.year + 1):
        year_end = min(end, date(year, 12, 31))
        accumulated = sum(
            (item.overtime for day, item in per_day.items() if day.year == year and day <= year_end),
            timedelta(0),
        )
        yearly.append(YearlyOvertime(year=year, overtime=accumulated, cap=thresholds.yearly_cap))

    if any(item.exceeded for item in weekly) or any(item.exceeded for item in yearly):
        level = WarningLevel.CRITICAL
    elif period_total > timedelta(0):
        level = WarningLevel.WARNING
    else:
        level = WarningLevel.NONE

    return OvertimeAssessment(
        start=start,
        end=end,
        daily=in_period,
        period_overtime=period_total,
        weekly=tuple(weekly),
        yearly=tuple(yearly),
        warning_level=level,
    )
