from __future__ import annotations

import logging
from calendar import monthrange
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from timeledger.errors import ApiError, conflict, forbidden, invalid_input, not_found
from timeledger.models import MonthlyReport, ReportDisposition, User
from timeledger.schemas import (
    CurrentMonthStatusRead,
    DailySummaryRead,
    MonthlyReportRead,
    MonthlyReportSnapshot,
    OvertimeAssessmentRead,
    ReportStatisticsRead,
    ReportUserRead,
    SequenceAnomalyRead,
    TimeEventRead,
)
from timeledger.services.daily import build_period_statistics
from timeledger.services.sessions import normalize_ts
from timeledger.services.time_events import assess_overtime_for_user, load_period, local_date_from_utc
from timeledger.services.users import ensure_can_access_user, lock_user, require_admin_user, resolve_user
from timeledger.settings import get_settings

logger = logging.getLogger("timeledger.reports")

REPORT_ALREADY_EXISTS = "REPORT_ALREADY_EXISTS"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_period(year: int, month: int) -> None:
    if month < 1 or month > 12 or year < 2000 or year > 2100:
        raise invalid_input("INVALID_PERIOD", "Year must be 2000-2100 and month 1-12.")


def month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def previous_month(day: date) -> tuple[int, int]:
    if day.month == 1:
        return day.year - 1, 12
    return day.year, day.month - 1


def in_review_window(day: date) -> bool:
    return day.day <= get_settings().report_review_window_days


def review_target(day: date) -> tuple[int, int]:
    """Early in a month workers review the month that just closed."""
    if in_review_window(day):
        return previous_month(day)
    return day.year, day.month


def _find_report(db: Session, user_id: int, year: int, month: int) -> MonthlyReport | None:
    return db.scalar(
        select(MonthlyReport).where(
            MonthlyReport.user_id == user_id,
            MonthlyReport.year == year,
            MonthlyReport.month == month,
        )
    )


def build_report_snapshot(db: Session, user: User, year: int, month: int) -> MonthlyReportSnapshot:
    start, end = month_bounds(year, month)
    loaded = load_period(db, user, start, end)
    assessment = assess_overtime_for_user(db, user, start, end)
    statistics = build_period_statistics(loaded.summaries, overtime=assessment.period_overtime)
    return MonthlyReportSnapshot(
        user=ReportUserRead(id=user.id, full_name=user.full_name, email=user.email),
        period=f"{year:04d}-{month:02d}",
        start_date=start,
        end_date=end,
        expected_daily_minutes=user.expected_daily_minutes,
        expected_friday_minutes=user.expected_friday_minutes,
        statistics=ReportStatisticsRead.from_statistics(statistics),
        daily_summaries=[DailySummaryRead.from_summary(item) for item in loaded.summaries],
        overtime=OvertimeAssessmentRead.from_assessment(assessment),
        anomalies=[SequenceAnomalyRead.from_anomaly(item) for item in loaded.reconciliation.anomalies],
        events=[TimeEventRead.model_validate(item) for item in loaded.events],
    )


def generate_report(
    db: Session,
    *,
    user_id: int,
    year: int,
    month: int,
    generated_by_id: int | None = None,
    now: datetime | None = None,
) -> MonthlyReport:
    """Freeze a report for ``user_id``'s month.

    ``generated_by_id`` is the requesting admin, or None when the system
    generates the report on the worker's behalf. Reports are write-once: a
    second call for the same month is a conflict and leaves the first intact.
    """
    _validate_period(year, month)
    if generated_by_id is not None:
        require_admin_user(db, generated_by_id)
    user = lock_user(db, user_id)
    if _find_report(db, user_id, year, month) is not None:
        db.rollback()
        raise conflict(REPORT_ALREADY_EXISTS, f"A report for {year:04d}-{month:02d} already exists.")

    snapshot = build_report_snapshot(db, user, year, month)
    report = MonthlyReport(
        user_id=user_id,
        year=year,
        month=month,
        snapshot=snapshot.model_dump(mode="json"),
        generated_at=normalize_ts(now) if now is not None else _utcnow(),
        generated_by_id=generated_by_id,
    )
    db.add(report)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise conflict(REPORT_ALREADY_EXISTS, f"A report for {year:04d}-{month:02d} already exists.") from exc
    db.refresh(report)
    logger.info(
        "monthly_report_generated",
        extra={
            "report_id": report.id,
            "user_id": user_id,
            "period": snapshot.period,
            "generated_by_id": generated_by_id,
            "days_worked": snapshot.statistics.days_worked,
        },
    )
    return report


def get_current_month_status(
    db: Session,
    *,
    actor_id: int,
    user_id: int,
    now: datetime | None = None,
) -> CurrentMonthStatusRead:
    ensure_can_access_user(db, actor_id, user_id)
    resolve_user(db, user_id)
    year, month = review_target(local_date_from_utc(now or _utcnow()))
    report = _find_report(db, user_id, year, month)
    if report is None:
        return CurrentMonthStatusRead(year=year, month=month, has_report=False, needs_review=False)
    return CurrentMonthStatusRead(
        year=year,
        month=month,
        has_report=True,
        needs_review=report.disposition == ReportDisposition.UNREVIEWED,
        report=MonthlyReportRead.model_validate(report),
    )


def _owned_report(db: Session, report_id: int, user_id: int) -> MonthlyReport:
    report = db.get(MonthlyReport, report_id)
    if report is None:
        raise not_found("REPORT_NOT_FOUND", "Monthly report not found.")
    if report.user_id != user_id:
        raise forbidden("Only the report owner may review it.")
    return report


def _lock_owned_report(db: Session, report_id: int, user_id: int) -> MonthlyReport:
    report = _owned_report(db, report_id, user_id)
    lock_user(db, report.user_id)
    db.refresh(report)
    if report.disposition != ReportDisposition.UNREVIEWED:
        db.rollback()
        raise conflict(
            "REPORT_ALREADY_REVIEWED",
            f"Report is already {report.disposition.value.lower()}.",
        )
    return report


def mark_viewed(db: Session, *, report_id: int, user_id: int, now: datetime | None = None) -> MonthlyReport:
    report = _owned_report(db, report_id, user_id)
    if report.viewed_at is None:
        report.viewed_at = normalize_ts(now) if now is not None else _utcnow()
        db.commit()
        db.refresh(report)
        logger.info("monthly_report_viewed", extra={"report_id": report.id, "user_id": user_id})
    return report


def accept_report(db: Session, *, report_id: int, user_id: int, now: datetime | None = None) -> MonthlyReport:
    report = _lock_owned_report(db, report_id, user_id)
    if report.viewed_at is None:
        db.rollback()
        raise invalid_input("REPORT_NOT_VIEWED", "The report must be viewed before it can be accepted.")
    report.accepted_at = normalize_ts(now) if now is not None else _utcnow()
    db.commit()
    db.refresh(report)
    logger.info("monthly_report_accepted", extra={"report_id": report.id, "user_id": user_id})
    return report


def contest_report(
    db: Session,
    *,
    report_id: int,
    user_id: int,
    reason: str,
    now: datetime | None = None,
) -> MonthlyReport:
    _owned_report(db, report_id, user_id)
    cleaned = (reason or "").strip()
    min_length = get_settings().contest_reason_min_length
    if len(cleaned) < min_length:
        raise invalid_input("REASON_TOO_SHORT", f"Reason must be at least {min_length} characters.")
    report = _lock_owned_report(db, report_id, user_id)
    report.contested_at = normalize_ts(now) if now is not None else _utcnow()
    report.contest_reason = cleaned
    db.commit()
    db.refresh(report)
    logger.info("monthly_report_contested", extra={"report_id": report.id, "user_id": user_id})
    return report


def list_reports(db: Session, *, actor_id: int, user_id: int) -> list[MonthlyReport]:
    ensure_can_access_user(db, actor_id, user_id)
    resolve_user(db, user_id)
    return list(
        db.scalars(
            select(MonthlyReport)
            .where(MonthlyReport.user_id == user_id)
            .order_by(MonthlyReport.year.desc(), MonthlyReport.month.desc())
        ).all()
    )


def get_report(db: Session, *, actor_id: int, report_id: int) -> MonthlyReport:
    report = db.get(MonthlyReport, report_id)
    if report is None:
        raise not_found("REPORT_NOT_FOUND", "Monthly report not found.")
    ensure_can_access_user(db, actor_id, report.user_id)
    return report


def generate_missing_for_user(
    db: Session,
    *,
    actor_id: int,
    user_id: int,
    now: datetime | None = None,
) -> tuple[MonthlyReport | None, bool]:
    """Generate last month's report while the review window is open.

    Returns ``(report, created)``. Outside the window nothing is generated and
    ``(None, False)`` is returned; a report produced concurrently by another
    request is returned as-is.
    """
    ensure_can_access_user(db, actor_id, user_id)
    today = local_date_from_utc(now or _utcnow())
    if not in_review_window(today):
        return None, False

    year, month = previous_month(today)
    existing = _find_report(db, user_id, year, month)
    if existing is not None:
        return existing, False
    try:
        return generate_report(db, user_id=user_id, year=year, month=month, now=now), True
    except ApiError as exc:
        if exc.code != REPORT_ALREADY_EXISTS:
            raise
        logger.info(
            "monthly_report_generated_concurrently",
            extra={"user_id": user_id, "year": year, "month": month},
        )
    return _find_report(db, user_id, year, month), False
