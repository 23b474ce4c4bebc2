from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from timeledger.audit import client_ip, log_audit, user_agent
from timeledger.db import get_db
from timeledger.models import AbsenceStatus
from timeledger.schemas import (
    AbsenceRead,
    AbsenceStatusUpdate,
    CorrectionApplyRequest,
    CorrectionRead,
    CorrectionReviewRequest,
    EmployeeOverviewResponse,
    MonthlyReportGenerateRequest,
    MonthlyReportRead,
    SimulatedEventsCreate,
    TimeEventRead,
    UserCreate,
    UserRead,
    WorkerStatusRead,
    WorkSettingsUpdate,
)
from timeledger.security import require_actor
from timeledger.services.absences import list_all_absences, update_absence_status
from timeledger.services.corrections import (
    apply_correction,
    approve_request,
    list_pending_requests,
    reject_request,
)
from timeledger.services.monthly_reports import generate_report, month_bounds
from timeledger.services.overview import build_employee_overview
from timeledger.services.time_events import list_worker_statuses, local_date_from_utc, record_simulated_events
from timeledger.services.users import create_user, require_admin_user, update_work_settings

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post(
    "/time-events/{event_id}/corrections",
    response_model=list[CorrectionRead],
    status_code=status.HTTP_201_CREATED,
)
def apply_event_correction(
    event_id: int,
    payload: CorrectionApplyRequest,
    request: Request,
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[CorrectionRead]:
    corrections = apply_correction(
        db,
        event_id=event_id,
        admin_id=admin_id,
        changes=payload.changes,
        reason=payload.reason,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
    request.state.event_id = event_id
    log_audit(
        db,
        request=request,
        actor=require_admin_user(db, admin_id),
        action="TIME_EVENT_CORRECTED",
        entity_type="time_event",
        entity_id=event_id,
        details={
            "correction_ids": [item.id for item in corrections],
            "fields": [item.field_changed.value for item in corrections],
        },
    )
    return [CorrectionRead.model_validate(item) for item in corrections]


@router.get("/correction-requests", response_model=list[CorrectionRead])
def get_pending_correction_requests(
    limit: int = Query(default=200, ge=1, le=1000),
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[CorrectionRead]:
    return [CorrectionRead.model_validate(item) for item in list_pending_requests(db, admin_id=admin_id, limit=limit)]


@router.post("/corrections/{correction_id}/approve", response_model=CorrectionRead)
def approve_correction_request(
    correction_id: int,
    payload: CorrectionReviewRequest,
    request: Request,
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> CorrectionRead:
    correction = approve_request(db, correction_id=correction_id, admin_id=admin_id, note=payload.note)
    request.state.event_id = correction.event_id
    log_audit(
        db,
        request=request,
        actor=require_admin_user(db, admin_id),
        action="CORRECTION_APPROVED",
        entity_type="time_correction",
        entity_id=correction.id,
        details={"event_id": correction.event_id, "user_id": correction.user_id},
    )
    return CorrectionRead.model_validate(correction)


@router.post("/corrections/{correction_id}/reject", response_model=CorrectionRead)
def reject_correction_request(
    correction_id: int,
    payload: CorrectionReviewRequest,
    request: Request,
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> CorrectionRead:
    correction = reject_request(db, correction_id=correction_id, admin_id=admin_id, note=payload.note)
    log_audit(
        db,
        request=request,
        actor=require_admin_user(db, admin_id),
        action="CORRECTION_REJECTED",
        entity_type="time_correction",
        entity_id=correction.id,
        details={"event_id": correction.event_id, "user_id": correction.user_id},
    )
    return CorrectionRead.model_validate(correction)


@router.post(
    "/time-events/simulate",
    response_model=list[TimeEventRead],
    status_code=status.HTTP_201_CREATED,
)
def simulate_time_events(
    payload: SimulatedEventsCreate,
    request: Request,
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[TimeEventRead]:
    events = record_simulated_events(db, admin_id=admin_id, items=payload.events)
    log_audit(
        db,
        request=request,
        actor=require_admin_user(db, admin_id),
        action="TIME_EVENTS_SIMULATED",
        entity_type="time_event",
        details={
            "count": len(events),
            "user_ids": sorted({item.user_id for item in events}),
        },
    )
    return [TimeEventRead.model_validate(item) for item in events]


@router.get("/workers/status", response_model=list[WorkerStatusRead])
def get_worker_statuses(
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[WorkerStatusRead]:
    return list_worker_statuses(db, admin_id=admin_id)


@router.post("/monthly-reports", response_model=MonthlyReportRead, status_code=status.HTTP_201_CREATED)
def generate_monthly_report(
    payload: MonthlyReportGenerateRequest,
    request: Request,
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> MonthlyReportRead:
    report = generate_report(
        db,
        user_id=payload.user_id,
        year=payload.year,
        month=payload.month,
        generated_by_id=admin_id,
    )
    log_audit(
        db,
        request=request,
        actor=require_admin_user(db, admin_id),
        action="MONTHLY_REPORT_GENERATED",
        entity_type="monthly_report",
        entity_id=report.id,
        details={"user_id": report.user_id, "year": report.year, "month": report.month},
    )
    return MonthlyReportRead.model_validate(report)


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_worker(
    payload: UserCreate,
    request: Request,
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> UserRead:
    user = create_user(db, admin_id=admin_id, payload=payload)
    log_audit(
        db,
        request=request,
        actor=require_admin_user(db, admin_id),
        action="USER_CREATED",
        entity_type="user",
        entity_id=user.id,
        details={"email": user.email, "is_admin": user.is_admin},
    )
    return UserRead.model_validate(user)


@router.patch("/users/{user_id}/work-settings", response_model=UserRead)
def patch_work_settings(
    user_id: int,
    payload: WorkSettingsUpdate,
    request: Request,
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> UserRead:
    user = update_work_settings(db, admin_id=admin_id, user_id=user_id, payload=payload)
    log_audit(
        db,
        request=request,
        actor=require_admin_user(db, admin_id),
        action="USER_WORK_SETTINGS_UPDATED",
        entity_type="user",
        entity_id=user.id,
        details=payload.model_dump(exclude_unset=True),
    )
    return UserRead.model_validate(user)


@router.get("/employees/overview", response_model=EmployeeOverviewResponse)
def get_employee_overview(
    request: Request,
    start_date: date | None = Query(default=None, alias="from"),
    end_date: date | None = Query(default=None, alias="to"),
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> EmployeeOverviewResponse:
    if start_date is None or end_date is None:
        today = local_date_from_utc(datetime.now(timezone.utc))
        month_start, month_end = month_bounds(today.year, today.month)
        start_date = start_date or month_start
        end_date = end_date or month_end
    overview = build_employee_overview(db, admin_id=admin_id, start_date=start_date, end_date=end_date)
    log_audit(
        db,
        request=request,
        actor=require_admin_user(db, admin_id),
        action="EMPLOYEE_OVERVIEW_VIEWED",
        entity_type="employee_overview",
        details={
            "from": start_date.isoformat(),
            "to": end_date.isoformat(),
            "total_employees": len(overview.employees),
        },
    )
    return overview


@router.get("/absences", response_model=list[AbsenceRead])
def get_absences(
    start_date: date | None = Query(default=None, alias="from"),
    end_date: date | None = Query(default=None, alias="to"),
    absence_status: AbsenceStatus | None = Query(default=None, alias="status"),
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[AbsenceRead]:
    absences = list_all_absences(
        db,
        admin_id=admin_id,
        start_date=start_date,
        end_date=end_date,
        status=absence_status,
    )
    return [AbsenceRead.model_validate(item) for item in absences]


@router.patch("/absences/{absence_id}/status", response_model=AbsenceRead)
def patch_absence_status(
    absence_id: int,
    payload: AbsenceStatusUpdate,
    request: Request,
    admin_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> AbsenceRead:
    absence = update_absence_status(db, admin_id=admin_id, absence_id=absence_id, status=payload.status)
    log_audit(
        db,
        request=request,
        actor=require_admin_user(db, admin_id),
        action="ABSENCE_STATUS_UPDATED",
        entity_type="absence",
        entity_id=absence.id,
        details={"user_id": absence.user_id, "status": absence.status.value},
    )
    return AbsenceRead.model_validate(absence)
