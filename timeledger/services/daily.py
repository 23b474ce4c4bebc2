from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo

from timeledger.services.sessions import WorkSession

DEFAULT_BREAK_BONUS_THRESHOLD = timedelta(hours=6)
DEFAULT_BREAK_BONUS = timedelta(minutes=15)


@dataclass(frozen=True)
class BreakBonusRule:
    threshold: timedelta = DEFAULT_BREAK_BONUS_THRESHOLD
    bonus: timedelta = DEFAULT_BREAK_BONUS

    def bonus_for(self, worked: timedelta) -> timedelta:
        if worked >= self.threshold:
            return self.bonus
        return timedelta(0)


@dataclass(frozen=True)
class DailySummary:
    day: date
    sessions: tuple[WorkSession, ...]
    worked_duration: timedelta
    break_bonus: timedelta
    total_duration: timedelta
    has_open_session: bool

    @property
    def session_count(self) -> int:
        return len(self.sessions)

    @property
    def worked(self) -> bool:
        return self.total_duration > timedelta(0)


@dataclass(frozen=True)
class PeriodStatistics:
    total_duration: timedelta
    days_worked: int
    daily_average: timedelta
    total_hours: float
    overtime_hours: float


def local_day(ts_utc: datetime, tz: tzinfo) -> date:
    return ts_utc.astimezone(tz).date()


def summarize_day(
    day: date,
    sessions: Sequence[WorkSession],
    *,
    rule: BreakBonusRule | None = None,
) -> DailySummary:
    rule = rule or BreakBonusRule()
    ordered = tuple(sorted(sessions, key=lambda item: item.clock_in_at))
    worked = sum((item.duration for item in ordered if item.is_closed), timedelta(0))
    # One bonus per day, never per session.
    bonus = rule.bonus_for(worked)
    return DailySummary(
        day=day,
        sessions=ordered,
        worked_duration=worked,
        break_bonus=bonus,
        total_duration=worked + bonus,
        has_open_session=any(not item.is_closed for item in ordered),
    )


def aggregate_daily(
    sessions: Sequence[WorkSession],
    tz: tzinfo,
    *,
    rule: BreakBonusRule | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[DailySummary]:
    """Group sessions by the local date of their clock-in.

    A session that ends after local midnight stays whole on its start date.
    ``start``/``end`` (inclusive) drop days outside the requested window, which
    lets callers load a look-ahead of events without leaking extra days.
    """
    by_day: dict[date, list[WorkSession]] = {}
    for session in sessions:
        day = local_day(session.clock_in_at, tz)
        if start is not None and day < start:
            continue
        if end is not None and day > end:
            continue
        by_day.setdefault(day, []).append(session)

    return [summarize_day(day, by_day[day], rule=rule) for day in sorted(by_day)]


def format_duration(value: timedelta) -> str:
    total_minutes = int(round(value.total_seconds() / 60))
    hours, minutes = divmod(max(0, total_minutes), 60)
    return f"{hours:02d}:{minutes:02d}"


def hours(value: timedelta) -> float:
    return value.total_seconds() / 3600


def build_period_statistics(
    summaries: Sequence[DailySummary],
    *,
    overtime: timedelta = timedelta(0),
) -> PeriodStatistics:
    total = sum((item.total_duration for item in summaries), timedelta(0))
    days_worked = sum(1 for item in summaries if item.worked)
    average = total / days_worked if days_worked else timedelta(0)
    return PeriodStatistics(
        total_duration=total,
        days_worked=days_worked,
        daily_average=average,
        total_hours=round(hours(total), 2),
        overtime_hours=round(hours(overtime), 2),
    )
