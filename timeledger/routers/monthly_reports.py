from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from timeledger.audit import log_audit
from timeledger.db import get_db
from timeledger.models import MonthlyReport
from timeledger.schemas import (
    CurrentMonthStatusRead,
    GenerateMissingReportRead,
    MonthlyReportContestRequest,
    MonthlyReportRead,
)
from timeledger.security import require_actor
from timeledger.services.monthly_reports import (
    accept_report,
    contest_report,
    generate_missing_for_user,
    get_current_month_status,
    get_report,
    list_reports,
    mark_viewed,
)
from timeledger.services.users import resolve_user

router = APIRouter(prefix="/api", tags=["monthly-reports"])


def _audit_report(db: Session, request: Request, actor_id: int, action: str, report: MonthlyReport) -> None:
    log_audit(
        db,
        request=request,
        actor=resolve_user(db, actor_id),
        action=action,
        entity_type="monthly_report",
        entity_id=report.id,
        details={"user_id": report.user_id, "year": report.year, "month": report.month},
    )


@router.get("/users/{user_id}/monthly-reports", response_model=list[MonthlyReportRead])
def get_monthly_reports(
    user_id: int,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[MonthlyReportRead]:
    return [MonthlyReportRead.model_validate(item) for item in list_reports(db, actor_id=actor_id, user_id=user_id)]


@router.get("/users/{user_id}/monthly-reports/current", response_model=CurrentMonthStatusRead)
def get_current_monthly_report(
    user_id: int,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> CurrentMonthStatusRead:
    return get_current_month_status(db, actor_id=actor_id, user_id=user_id)


@router.post("/users/{user_id}/monthly-reports/generate-missing", response_model=GenerateMissingReportRead)
def generate_missing_monthly_report(
    user_id: int,
    request: Request,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> GenerateMissingReportRead:
    report, created = generate_missing_for_user(db, actor_id=actor_id, user_id=user_id)
    if created and report is not None:
        _audit_report(db, request, actor_id, "MONTHLY_REPORT_GENERATED", report)
    return GenerateMissingReportRead(
        created=created,
        report=MonthlyReportRead.model_validate(report) if report is not None else None,
    )


@router.get("/monthly-reports/{report_id}", response_model=MonthlyReportRead)
def get_monthly_report(
    report_id: int,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> MonthlyReportRead:
    return MonthlyReportRead.model_validate(get_report(db, actor_id=actor_id, report_id=report_id))


@router.post("/monthly-reports/{report_id}/view", response_model=MonthlyReportRead)
def view_monthly_report(
    report_id: int,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> MonthlyReportRead:
    return MonthlyReportRead.model_validate(mark_viewed(db, report_id=report_id, user_id=actor_id))


@router.post("/monthly-reports/{report_id}/accept", response_model=MonthlyReportRead)
def accept_monthly_report(
    report_id: int,
    request: Request,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> MonthlyReportRead:
    report = accept_report(db, report_id=report_id, user_id=actor_id)
    _audit_report(db, request, actor_id, "MONTHLY_REPORT_ACCEPTED", report)
    return MonthlyReportRead.model_validate(report)


@router.post("/monthly-reports/{report_id}/contest", response_model=MonthlyReportRead)
def contest_monthly_report(
    report_id: int,
    payload: MonthlyReportContestRequest,
    request: Request,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> MonthlyReportRead:
    report = contest_report(db, report_id=report_id, user_id=actor_id, reason=payload.reason)
    _audit_report(db, request, actor_id, "MONTHLY_REPORT_CONTESTED", report)
    return MonthlyReportRead.model_validate(report)
