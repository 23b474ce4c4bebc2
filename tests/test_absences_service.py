from __future__ import annotations

import unittest
from datetime import date, time

from ledger_support import add_user, make_session, utc

from timeledger.errors import ApiError
from timeledger.models import AbsenceKind, AbsenceStatus
from timeledger.schemas import AbsenceCreate
from timeledger.services.absences import (
    create_absence,
    get_absence_for_day,
    list_all_absences,
    list_user_absences,
    update_absence_status,
)
from timeledger.services.sessions import normalize_ts


class AbsencesServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.admin = add_user(self.db, email="admin@example.com", is_admin=True)
        self.worker = add_user(self.db, email="ana@example.com")
        self.other = add_user(self.db, email="luis@example.com")

    def tearDown(self) -> None:
        self.db.close()

    def _payload(self, **overrides) -> AbsenceCreate:
        values = {
            "day": date(2026, 1, 14),
            "kind": AbsenceKind.LATE_ARRIVAL,
            "start_time": time(8, 0),
            "end_time": time(9, 15),
            "reason": "Train strike",
        }
        values.update(overrides)
        return AbsenceCreate(**values)

    def test_worker_files_pending_absence(self) -> None:
        absence = create_absence(
            self.db,
            actor_id=self.worker.id,
            payload=self._payload(status=AbsenceStatus.APPROVED, comments="  "),
        )

        self.assertEqual(absence.user_id, self.worker.id)
        self.assertEqual(absence.status, AbsenceStatus.PENDING)
        self.assertEqual(absence.duration_minutes, 75)
        self.assertIsNone(absence.comments)
        self.assertIsNone(absence.reviewed_by_id)
        self.assertEqual(absence.created_by_id, self.worker.id)

    def test_admin_records_approved_absence_for_worker(self) -> None:
        absence = create_absence(
            self.db,
            actor_id=self.admin.id,
            payload=self._payload(user_id=self.worker.id, status=AbsenceStatus.APPROVED),
            now=utc(2026, 1, 14, 10),
        )

        self.assertEqual(absence.user_id, self.worker.id)
        self.assertEqual(absence.status, AbsenceStatus.APPROVED)
        self.assertEqual(absence.reviewed_by_id, self.admin.id)
        self.assertEqual(normalize_ts(absence.reviewed_at), utc(2026, 1, 14, 10))

    def test_end_before_start_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            create_absence(
                self.db,
                actor_id=self.worker.id,
                payload=self._payload(start_time=time(10, 0), end_time=time(10, 0)),
            )

        self.assertEqual(ctx.exception.code, "INVALID_TIME_RANGE")

    def test_blank_reason_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            create_absence(self.db, actor_id=self.worker.id, payload=self._payload(reason="  a "))

        self.assertEqual(ctx.exception.code, "REASON_TOO_SHORT")

    def test_worker_cannot_file_for_someone_else(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            create_absence(
                self.db,
                actor_id=self.worker.id,
                payload=self._payload(user_id=self.other.id, reason="x"),
            )

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_listing_is_newest_first_and_bounded(self) -> None:
        first = create_absence(self.db, actor_id=self.worker.id, payload=self._payload(day=date(2026, 1, 5)))
        second = create_absence(self.db, actor_id=self.worker.id, payload=self._payload(day=date(2026, 1, 20)))
        create_absence(self.db, actor_id=self.worker.id, payload=self._payload(day=date(2026, 2, 2)))

        absences = list_user_absences(
            self.db,
            actor_id=self.worker.id,
            user_id=self.worker.id,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
        )

        self.assertEqual([item.id for item in absences], [second.id, first.id])

    def test_reversed_window_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            list_user_absences(
                self.db,
                actor_id=self.worker.id,
                user_id=self.worker.id,
                start_date=date(2026, 2, 1),
                end_date=date(2026, 1, 1),
            )

        self.assertEqual(ctx.exception.code, "INVALID_RANGE")

    def test_admin_listing_filters_by_status(self) -> None:
        pending = create_absence(self.db, actor_id=self.worker.id, payload=self._payload())
        create_absence(
            self.db,
            actor_id=self.admin.id,
            payload=self._payload(user_id=self.other.id, status=AbsenceStatus.REJECTED),
        )

        absences = list_all_absences(self.db, admin_id=self.admin.id, status=AbsenceStatus.PENDING)

        self.assertEqual([item.id for item in absences], [pending.id])

    def test_admin_listing_requires_admin(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            list_all_absences(self.db, admin_id=self.worker.id)

        self.assertEqual(ctx.exception.code, "ADMIN_REQUIRED")

    def test_status_update_records_reviewer(self) -> None:
        absence = create_absence(self.db, actor_id=self.worker.id, payload=self._payload())

        updated = update_absence_status(
            self.db,
            admin_id=self.admin.id,
            absence_id=absence.id,
            status=AbsenceStatus.REJECTED,
            now=utc(2026, 1, 15, 9),
        )

        self.assertEqual(updated.status, AbsenceStatus.REJECTED)
        self.assertEqual(updated.reviewed_by_id, self.admin.id)
        self.assertEqual(normalize_ts(updated.reviewed_at), utc(2026, 1, 15, 9))

    def test_status_update_on_unknown_absence(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            update_absence_status(self.db, admin_id=self.admin.id, absence_id=9999, status=AbsenceStatus.APPROVED)

        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.code, "ABSENCE_NOT_FOUND")

    def test_absence_for_day(self) -> None:
        absence = create_absence(self.db, actor_id=self.worker.id, payload=self._payload())

        found = get_absence_for_day(self.db, actor_id=self.admin.id, user_id=self.worker.id, day=date(2026, 1, 14))
        missing = get_absence_for_day(self.db, actor_id=self.worker.id, user_id=self.worker.id, day=date(2026, 1, 15))

        self.assertEqual(found.id, absence.id)
        self.assertIsNone(missing)


if __name__ == "__main__":
    unittest.main()
