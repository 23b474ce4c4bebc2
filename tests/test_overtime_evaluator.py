from __future__ import annotations

import unittest
from datetime import date, datetime, time, timedelta, timezone

from timeledger.services.daily import DailySummary, aggregate_daily
from timeledger.services.overtime import OvertimeThresholds, WarningLevel, evaluate_overtime, week_start_of
from timeledger.services.sessions import WorkSession


def _summaries(worked_by_day: dict[date, timedelta]) -> list[DailySummary]:
    sessions = []
    for day, worked in worked_by_day.items():
        start = datetime.combine(day, time(7, 0), tzinfo=timezone.utc)
        sessions.append(WorkSession(clock_in_at=start, clock_out_at=start + worked, duration=worked, is_closed=True))
    return aggregate_daily(sessions, timezone.utc)


class OvertimeEvaluatorTests(unittest.TestCase):
    def test_single_long_day_is_a_warning(self) -> None:
        # 08:30 to 17:45 is 9h15 worked plus the 15 minute bonus.
        day = date(2026, 1, 12)
        summaries = _summaries({day: timedelta(hours=9, minutes=15)})

        assessment = evaluate_overtime(summaries, OvertimeThresholds(daily=timedelta(hours=8)), day, day)

        self.assertEqual(assessment.daily[0].worked, timedelta(hours=9, minutes=30))
        self.assertEqual(assessment.period_overtime, timedelta(hours=1, minutes=30))
        self.assertEqual(assessment.warning_level, WarningLevel.WARNING)
        self.assertFalse(assessment.is_over_limit)

    def test_no_overtime_is_none(self) -> None:
        day = date(2026, 1, 12)
        summaries = _summaries({day: timedelta(hours=7)})

        assessment = evaluate_overtime(summaries, OvertimeThresholds(daily=timedelta(hours=8)), day, day)

        self.assertEqual(assessment.period_overtime, timedelta(0))
        self.assertEqual(assessment.warning_level, WarningLevel.NONE)

    def test_friday_uses_its_own_expected_hours(self) -> None:
        friday = date(2026, 1, 16)
        thresholds = OvertimeThresholds(daily=timedelta(hours=8), friday=timedelta(hours=6))
        summaries = _summaries({friday: timedelta(hours=7)})

        assessment = evaluate_overtime(summaries, thresholds, friday, friday)

        self.assertEqual(thresholds.expected_for(friday), timedelta(hours=6))
        self.assertEqual(thresholds.expected_for(date(2026, 1, 15)), timedelta(hours=8))
        self.assertEqual(assessment.period_overtime, timedelta(hours=1, minutes=15))

    def test_work_on_a_day_off_is_all_overtime(self) -> None:
        saturday = date(2026, 1, 17)
        thresholds = OvertimeThresholds(daily=timedelta(hours=8), days_off=frozenset({6, 7}))
        summaries = _summaries({saturday: timedelta(hours=3)})

        assessment = evaluate_overtime(summaries, thresholds, saturday, saturday)

        self.assertEqual(assessment.daily[0].expected, timedelta(0))
        self.assertEqual(assessment.period_overtime, timedelta(hours=3))

    def test_weekly_cap_exceeded_is_critical(self) -> None:
        monday = date(2026, 1, 12)
        # 8h45 worked plus bonus is 9h per day, 45h for the week.
        summaries = _summaries({monday + timedelta(days=offset): timedelta(hours=8, minutes=45) for offset in range(5)})

        assessment = evaluate_overtime(
            summaries,
            OvertimeThresholds(daily=timedelta(hours=8)),
            monday,
            monday + timedelta(days=4),
        )

        self.assertEqual(len(assessment.weekly), 1)
        self.assertEqual(assessment.weekly[0].worked, timedelta(hours=45))
        self.assertEqual(assessment.weekly[0].overtime, timedelta(hours=5))
        self.assertTrue(assessment.weekly[0].exceeded)
        self.assertEqual(assessment.warning_level, WarningLevel.CRITICAL)
        self.assertTrue(assessment.is_over_limit)

    def test_weekly_totals_include_days_outside_the_period(self) -> None:
        monday = date(2026, 1, 12)
        summaries = _summaries({monday + timedelta(days=offset): timedelta(hours=8, minutes=45) for offset in range(5)})

        assessment = evaluate_overtime(
            summaries,
            OvertimeThresholds(daily=timedelta(hours=8)),
            monday + timedelta(days=4),
            monday + timedelta(days=4),
        )

        self.assertEqual(len(assessment.daily), 1)
        self.assertEqual(assessment.period_overtime, timedelta(hours=1))
        self.assertTrue(assessment.weekly[0].exceeded)
        self.assertEqual(assessment.warning_level, WarningLevel.CRITICAL)

    def test_yearly_cap_accumulates_year_to_date(self) -> None:
        thresholds = OvertimeThresholds(daily=timedelta(hours=8), days_off=frozenset({6, 7}))
        saturdays = [date(2026, 1, 3) + timedelta(weeks=index) for index in range(11)]
        summaries = _summaries({day: timedelta(hours=8) for day in saturdays})
        last = saturdays[-1]

        assessment = evaluate_overtime(summaries, thresholds, last, last)

        self.assertFalse(any(item.exceeded for item in assessment.weekly))
        self.assertEqual(assessment.yearly[0].year, 2026)
        self.assertEqual(assessment.yearly[0].overtime, timedelta(hours=8, minutes=15) * 11)
        self.assertTrue(assessment.yearly[0].exceeded)
        self.assertEqual(assessment.warning_level, WarningLevel.CRITICAL)

    def test_reversed_range_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            evaluate_overtime([], OvertimeThresholds(daily=timedelta(hours=8)), date(2026, 1, 2), date(2026, 1, 1))

    def test_week_start_is_monday(self) -> None:
        self.assertEqual(week_start_of(date(2026, 1, 18)), date(2026, 1, 12))
        self.assertEqual(week_start_of(date(2026, 1, 12)), date(2026, 1, 12))


if __name__ == "__main__":
    unittest.main()
