from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta
from unittest.mock import patch

from ledger_support import add_event, add_session, add_user, make_session, utc

from timeledger.errors import ApiError
from timeledger.models import EventKind, TimeEvent, WorkLocation
from timeledger.schemas import SimulatedEventItem
from timeledger.services.overtime import WarningLevel
from timeledger.services.time_events import (
    get_daily_summaries,
    get_overtime_assessment,
    get_today_status,
    list_events,
    list_worker_statuses,
    record_event,
    record_simulated_events,
)


class TimeEventsServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.admin = add_user(self.db, email="admin@example.com", is_admin=True)
        self.worker = add_user(self.db, email="ana@example.com")
        self.other = add_user(self.db, email="luis@example.com")

    def tearDown(self) -> None:
        self.db.close()

    def test_worker_records_own_event(self) -> None:
        event = record_event(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            kind=EventKind.CLOCK_IN,
            ts_utc=utc(2026, 1, 12, 8),
            location=WorkLocation.REMOTE,
        )

        self.assertIsNotNone(event.id)
        self.assertEqual(event.kind, EventKind.CLOCK_IN)
        self.assertEqual(event.location, WorkLocation.REMOTE)
        self.assertFalse(event.is_simulated)
        self.assertFalse(event.is_modified)

    def test_worker_cannot_record_for_someone_else(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            record_event(self.db, actor_id=self.worker.id, user_id=self.other.id, kind=EventKind.CLOCK_IN)

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_admin_records_for_anyone(self) -> None:
        event = record_event(self.db, actor_id=self.admin.id, user_id=self.other.id, kind=EventKind.CLOCK_IN)

        self.assertEqual(event.user_id, self.other.id)

    def test_only_admin_records_simulated_events(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            record_event(
                self.db,
                actor_id=self.worker.id,
                user_id=self.worker.id,
                kind=EventKind.CLOCK_IN,
                simulated=True,
            )

        self.assertEqual(ctx.exception.code, "ADMIN_REQUIRED")

    def test_inactive_user_cannot_record(self) -> None:
        inactive = add_user(self.db, email="gone@example.com", is_active=False)

        with self.assertRaises(ApiError) as ctx:
            record_event(self.db, actor_id=inactive.id, user_id=inactive.id, kind=EventKind.CLOCK_IN)

        self.assertEqual(ctx.exception.code, "USER_INACTIVE")

    def test_unknown_user_is_not_found(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            record_event(self.db, actor_id=self.admin.id, user_id=9999, kind=EventKind.CLOCK_IN)

        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.code, "USER_NOT_FOUND")

    def test_strict_policy_rejects_orphan_clock_out(self) -> None:
        with patch("timeledger.services.time_events.is_strict_clock_sequence", return_value=True):
            with self.assertRaises(ApiError) as ctx:
                record_event(
                    self.db,
                    actor_id=self.worker.id,
                    user_id=self.worker.id,
                    kind=EventKind.CLOCK_OUT,
                    ts_utc=utc(2026, 1, 12, 17),
                )
            self.assertEqual(ctx.exception.status_code, 409)
            self.assertEqual(ctx.exception.code, "INVALID_EVENT_SEQUENCE")

            record_event(
                self.db,
                actor_id=self.worker.id,
                user_id=self.worker.id,
                kind=EventKind.CLOCK_IN,
                ts_utc=utc(2026, 1, 12, 8),
            )
            closing = record_event(
                self.db,
                actor_id=self.worker.id,
                user_id=self.worker.id,
                kind=EventKind.CLOCK_OUT,
                ts_utc=utc(2026, 1, 12, 16),
            )

        self.assertIsNotNone(closing.id)

    def test_strict_policy_rejects_double_clock_in(self) -> None:
        add_event(self.db, self.worker, utc(2026, 1, 12, 8), EventKind.CLOCK_IN)

        with patch("timeledger.services.time_events.is_strict_clock_sequence", return_value=True):
            with self.assertRaises(ApiError) as ctx:
                record_event(
                    self.db,
                    actor_id=self.worker.id,
                    user_id=self.worker.id,
                    kind=EventKind.CLOCK_IN,
                    ts_utc=utc(2026, 1, 12, 9),
                )

        self.assertEqual(ctx.exception.code, "INVALID_EVENT_SEQUENCE")

    def _record_strict(self, kind: EventKind, ts_utc: datetime) -> TimeEvent:
        return record_event(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            kind=kind,
            ts_utc=ts_utc,
        )

    def test_strict_policy_accepts_consecutive_working_days(self) -> None:
        with patch("timeledger.services.time_events.is_strict_clock_sequence", return_value=True):
            self._record_strict(EventKind.CLOCK_IN, utc(2026, 1, 12, 8))
            self._record_strict(EventKind.CLOCK_OUT, utc(2026, 1, 12, 16))
            next_day = self._record_strict(EventKind.CLOCK_IN, utc(2026, 1, 13, 8))
            closing = self._record_strict(EventKind.CLOCK_OUT, utc(2026, 1, 13, 15))

        self.assertIsNotNone(next_day.id)
        self.assertIsNotNone(closing.id)
        summaries = get_daily_summaries(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            start_date=date(2026, 1, 12),
            end_date=date(2026, 1, 13),
        )
        self.assertEqual(len(summaries), 2)

    def test_strict_policy_accepts_second_session_same_day(self) -> None:
        add_session(self.db, self.worker, utc(2026, 1, 12, 8), utc(2026, 1, 12, 12))

        with patch("timeledger.services.time_events.is_strict_clock_sequence", return_value=True):
            self._record_strict(EventKind.CLOCK_IN, utc(2026, 1, 12, 13))
            closing = self._record_strict(EventKind.CLOCK_OUT, utc(2026, 1, 12, 17))

        self.assertIsNotNone(closing.id)

    def test_strict_policy_rejects_backdated_clock_out_inside_session(self) -> None:
        add_session(self.db, self.worker, utc(2026, 1, 12, 8), utc(2026, 1, 12, 16))

        with patch("timeledger.services.time_events.is_strict_clock_sequence", return_value=True):
            with self.assertRaises(ApiError) as ctx:
                self._record_strict(EventKind.CLOCK_OUT, utc(2026, 1, 12, 12))

        self.assertEqual(ctx.exception.code, "INVALID_EVENT_SEQUENCE")
        self.assertIn("ORPHAN_CLOCK_OUT", ctx.exception.message)

    def test_strict_policy_rejects_backdated_clock_in_before_open_session(self) -> None:
        add_event(self.db, self.worker, utc(2026, 1, 12, 9), EventKind.CLOCK_IN)

        with patch("timeledger.services.time_events.is_strict_clock_sequence", return_value=True):
            with self.assertRaises(ApiError) as ctx:
                self._record_strict(EventKind.CLOCK_IN, utc(2026, 1, 12, 8))

        self.assertIn("ABANDONED_CLOCK_IN", ctx.exception.message)

    def test_permissive_policy_stores_orphan_clock_out(self) -> None:
        event = record_event(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            kind=EventKind.CLOCK_OUT,
            ts_utc=utc(2026, 1, 12, 17),
        )

        self.assertEqual(event.kind, EventKind.CLOCK_OUT)

    def test_simulated_batch(self) -> None:
        events = record_simulated_events(
            self.db,
            admin_id=self.admin.id,
            items=[
                SimulatedEventItem(user_id=self.worker.id, ts_utc=utc(2026, 1, 12, 8), kind=EventKind.CLOCK_IN),
                SimulatedEventItem(user_id=self.other.id, ts_utc=utc(2026, 1, 12, 9), kind=EventKind.CLOCK_IN),
            ],
        )

        self.assertEqual(len(events), 2)
        self.assertTrue(all(item.is_simulated for item in events))

    def test_simulated_batch_requires_admin(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            record_simulated_events(
                self.db,
                admin_id=self.worker.id,
                items=[SimulatedEventItem(user_id=self.worker.id, ts_utc=utc(2026, 1, 12, 8), kind=EventKind.CLOCK_IN)],
            )

        self.assertEqual(ctx.exception.code, "ADMIN_REQUIRED")

    def test_list_events_uses_local_day_bounds(self) -> None:
        # 23:30 UTC on the 11th is 00:30 on the 12th in Madrid.
        add_event(self.db, self.worker, utc(2026, 1, 11, 23, 30), EventKind.CLOCK_IN)
        add_event(self.db, self.worker, utc(2026, 1, 12, 12), EventKind.CLOCK_OUT)
        add_event(self.db, self.worker, utc(2026, 1, 12, 23, 30), EventKind.CLOCK_IN)

        events = list_events(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            start_date=date(2026, 1, 12),
            end_date=date(2026, 1, 12),
        )

        self.assertEqual(len(events), 2)
        self.assertEqual([item.kind for item in events], [EventKind.CLOCK_IN, EventKind.CLOCK_OUT])

    def test_reversed_range_is_invalid(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            list_events(
                self.db,
                actor_id=self.worker.id,
                user_id=self.worker.id,
                start_date=date(2026, 1, 12),
                end_date=date(2026, 1, 11),
            )

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.code, "INVALID_RANGE")

    def test_worker_cannot_read_other_summaries(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            get_daily_summaries(
                self.db,
                actor_id=self.worker.id,
                user_id=self.other.id,
                start_date=date(2026, 1, 12),
                end_date=date(2026, 1, 12),
            )

        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_daily_summaries_keep_overnight_session_on_start_day(self) -> None:
        # 22:00 to 02:00 local.
        add_session(self.db, self.worker, utc(2026, 1, 12, 21), utc(2026, 1, 13, 1))

        summaries = get_daily_summaries(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            start_date=date(2026, 1, 12),
            end_date=date(2026, 1, 13),
        )

        self.assertEqual([item.day for item in summaries], [date(2026, 1, 12)])
        self.assertEqual(summaries[0].worked_duration, timedelta(hours=4))

    def test_daily_summaries_see_clock_out_after_range_end(self) -> None:
        add_session(self.db, self.worker, utc(2026, 1, 12, 21), utc(2026, 1, 13, 1))

        summaries = get_daily_summaries(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            start_date=date(2026, 1, 12),
            end_date=date(2026, 1, 12),
        )

        self.assertTrue(summaries[0].sessions[0].is_closed)
        self.assertEqual(summaries[0].worked_duration, timedelta(hours=4))

    def test_overtime_assessment_for_long_day(self) -> None:
        # 08:30 to 17:45 local.
        add_session(self.db, self.worker, utc(2026, 1, 12, 7, 30), utc(2026, 1, 12, 16, 45))

        assessment = get_overtime_assessment(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            start_date=date(2026, 1, 12),
            end_date=date(2026, 1, 12),
        )

        self.assertEqual(assessment.daily[0].worked, timedelta(hours=9, minutes=30))
        self.assertEqual(assessment.period_overtime, timedelta(hours=1, minutes=30))
        self.assertEqual(assessment.warning_level, WarningLevel.WARNING)

    def test_overtime_assessment_uses_friday_hours(self) -> None:
        self.worker.expected_friday_minutes = 6 * 60
        self.db.commit()
        add_session(self.db, self.worker, utc(2026, 1, 16, 7), utc(2026, 1, 16, 14))

        assessment = get_overtime_assessment(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            start_date=date(2026, 1, 16),
            end_date=date(2026, 1, 16),
        )

        self.assertEqual(assessment.daily[0].expected, timedelta(hours=6))
        self.assertEqual(assessment.period_overtime, timedelta(hours=1, minutes=15))

    def test_today_status_reports_open_session(self) -> None:
        add_session(self.db, self.worker, utc(2026, 1, 12, 7), utc(2026, 1, 12, 11))
        add_event(self.db, self.worker, utc(2026, 1, 12, 12), EventKind.CLOCK_IN)

        status = get_today_status(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            now_utc=utc(2026, 1, 12, 14),
        )

        self.assertEqual(status.day, date(2026, 1, 12))
        self.assertTrue(status.is_working)
        self.assertEqual(status.current_session.elapsed_seconds, 2 * 3600)
        self.assertEqual(status.summary.worked_seconds, 4 * 3600)
        self.assertEqual(status.last_event.kind, EventKind.CLOCK_IN)

    def test_today_status_when_idle(self) -> None:
        status = get_today_status(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            now_utc=utc(2026, 1, 12, 14),
        )

        self.assertFalse(status.is_working)
        self.assertIsNone(status.current_session)
        self.assertIsNone(status.summary)
        self.assertIsNone(status.last_event)

    def test_worker_statuses_add_live_time(self) -> None:
        add_session(self.db, self.worker, utc(2026, 1, 12, 7), utc(2026, 1, 12, 11))
        add_event(self.db, self.worker, utc(2026, 1, 12, 12), EventKind.CLOCK_IN)

        statuses = list_worker_statuses(self.db, admin_id=self.admin.id, now_utc=utc(2026, 1, 12, 13))

        by_user = {item.user_id: item for item in statuses}
        self.assertEqual(len(by_user), 3)
        self.assertTrue(by_user[self.worker.id].is_working)
        self.assertEqual(by_user[self.worker.id].worked_today_seconds, 5 * 3600)
        self.assertFalse(by_user[self.other.id].is_working)
        self.assertEqual(by_user[self.other.id].worked_today_seconds, 0)

    def test_worker_statuses_require_admin(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            list_worker_statuses(self.db, admin_id=self.worker.id)

        self.assertEqual(ctx.exception.code, "ADMIN_REQUIRED")


if __name__ == "__main__":
    unittest.main()
