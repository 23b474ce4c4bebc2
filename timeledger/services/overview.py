from __future__ import annotations

from collections import Counter
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from timeledger.models import Absence, AbsenceStatus, CorrectionStatus, MonthlyReport, TimeCorrection, TimeEvent, User
from timeledger.schemas import EmployeeOverviewRead, EmployeeOverviewResponse, ReportStatisticsRead
from timeledger.services.daily import build_period_statistics
from timeledger.services.sessions import normalize_ts
from timeledger.services.time_events import assess_overtime_for_user, load_period, validate_range
from timeledger.services.users import require_admin_user


def _count_by_user(db: Session, stmt) -> dict[int, int]:
    return {user_id: int(total) for user_id, total in db.execute(stmt).all()}


def _correction_counts(db: Session, user_ids: list[int]) -> tuple[dict[int, int], dict[int, int]]:
    base = (
        select(TimeCorrection.user_id, func.count(TimeCorrection.id))
        .where(TimeCorrection.user_id.in_(user_ids))
        .group_by(TimeCorrection.user_id)
    )
    total = _count_by_user(db, base)
    pending = _count_by_user(db, base.where(TimeCorrection.status == CorrectionStatus.PENDING))
    return total, pending


def _report_counts(db: Session, user_ids: list[int]) -> tuple[Counter[int], Counter[int]]:
    contested: Counter[int] = Counter()
    pending: Counter[int] = Counter()
    rows = db.execute(
        select(MonthlyReport.user_id, MonthlyReport.accepted_at, MonthlyReport.contested_at).where(
            MonthlyReport.user_id.in_(user_ids)
        )
    ).all()
    for user_id, accepted_at, contested_at in rows:
        if contested_at is not None:
            contested[user_id] += 1
        elif accepted_at is None:
            pending[user_id] += 1
    return contested, pending


def _last_event_times(db: Session, user_ids: list[int]) -> dict[int, datetime]:
    rows = db.execute(
        select(TimeEvent.user_id, func.max(TimeEvent.ts_utc))
        .where(TimeEvent.user_id.in_(user_ids))
        .group_by(TimeEvent.user_id)
    ).all()
    return {user_id: normalize_ts(last_ts) for user_id, last_ts in rows if last_ts is not None}


def build_employee_overview(
    db: Session,
    *,
    admin_id: int,
    start_date: date,
    end_date: date,
) -> EmployeeOverviewResponse:
    """Per-employee aggregates over a local date range for the admin console.

    Every figure is recomputed from the current events; nothing is read from
    frozen report snapshots.
    """
    require_admin_user(db, admin_id)
    validate_range(start_date, end_date)

    employees = list(
        db.scalars(
            select(User)
            .where(User.is_admin.is_(False), User.is_active.is_(True))
            .order_by(User.full_name.asc(), User.id.asc())
        ).all()
    )
    if not employees:
        return EmployeeOverviewResponse(start_date=start_date, end_date=end_date, employees=[])

    user_ids = [user.id for user in employees]
    total_corrections, pending_corrections = _correction_counts(db, user_ids)
    contested_reports, pending_reports = _report_counts(db, user_ids)
    last_events = _last_event_times(db, user_ids)
    absences = _count_by_user(
        db,
        select(Absence.user_id, func.count(Absence.id))
        .where(
            Absence.user_id.in_(user_ids),
            Absence.day >= start_date,
            Absence.day <= end_date,
            Absence.status != AbsenceStatus.REJECTED,
        )
        .group_by(Absence.user_id),
    )

    items: list[EmployeeOverviewRead] = []
    for user in employees:
        loaded = load_period(db, user, start_date, end_date)
        assessment = assess_overtime_for_user(db, user, start_date, end_date)
        statistics = build_period_statistics(loaded.summaries, overtime=assessment.period_overtime)
        items.append(
            EmployeeOverviewRead(
                user_id=user.id,
                full_name=user.full_name,
                email=user.email,
                expected_daily_minutes=user.expected_daily_minutes,
                expected_friday_minutes=user.expected_friday_minutes,
                days_off=list(user.days_off or []),
                last_event_at=last_events.get(user.id),
                period=ReportStatisticsRead.from_statistics(statistics),
                period_overtime_seconds=int(assessment.period_overtime.total_seconds()),
                warning_level=assessment.warning_level,
                total_corrections=total_corrections.get(user.id, 0),
                pending_corrections=pending_corrections.get(user.id, 0),
                contested_reports=contested_reports[user.id],
                pending_reports=pending_reports[user.id],
                absences_in_period=absences.get(user.id, 0),
            )
        )
    return EmployeeOverviewResponse(start_date=start_date, end_date=end_date, employees=items)
