from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from timeledger.audit import client_ip, log_audit, user_agent
from timeledger.db import get_db
from timeledger.models import TimeEvent
from timeledger.schemas import (
    CorrectionRead,
    CorrectionTrailRead,
    CorrectionUserRequestCreate,
    DailySummaryRead,
    OvertimeAssessmentRead,
    TimeEventCreate,
    TimeEventRead,
    TodayStatusRead,
)
from timeledger.security import require_actor
from timeledger.services.corrections import (
    get_corrections_for_events,
    reconstruct_original_values,
    submit_user_request,
)
from timeledger.services.time_events import (
    get_daily_summaries,
    get_overtime_assessment,
    get_today_status,
    list_events,
    record_event,
)
from timeledger.services.users import resolve_user

router = APIRouter(prefix="/api", tags=["attendance"])


@router.post("/time-events", response_model=TimeEventRead, status_code=status.HTTP_201_CREATED)
def create_time_event(
    payload: TimeEventCreate,
    request: Request,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TimeEventRead:
    user_id = payload.user_id if payload.user_id is not None else actor_id
    event = record_event(
        db,
        actor_id=actor_id,
        user_id=user_id,
        kind=payload.kind,
        ts_utc=payload.ts_utc,
        location=payload.location,
    )
    request.state.event_id = event.id
    log_audit(
        db,
        request=request,
        actor=resolve_user(db, actor_id),
        action="TIME_EVENT_RECORDED",
        entity_type="time_event",
        entity_id=event.id,
        details={"user_id": user_id, "kind": event.kind.value},
    )
    return TimeEventRead.model_validate(event)


@router.get("/users/{user_id}/time-events", response_model=list[TimeEventRead])
def get_time_events(
    user_id: int,
    start_date: date = Query(alias="from"),
    end_date: date = Query(alias="to"),
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[TimeEventRead]:
    events = list_events(db, actor_id=actor_id, user_id=user_id, start_date=start_date, end_date=end_date)
    return [TimeEventRead.model_validate(item) for item in events]


@router.get("/users/{user_id}/daily-summaries", response_model=list[DailySummaryRead])
def get_user_daily_summaries(
    user_id: int,
    start_date: date = Query(alias="from"),
    end_date: date = Query(alias="to"),
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[DailySummaryRead]:
    summaries = get_daily_summaries(db, actor_id=actor_id, user_id=user_id, start_date=start_date, end_date=end_date)
    return [DailySummaryRead.from_summary(item) for item in summaries]


@router.get("/users/{user_id}/overtime", response_model=OvertimeAssessmentRead)
def get_user_overtime(
    user_id: int,
    start_date: date = Query(alias="from"),
    end_date: date = Query(alias="to"),
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> OvertimeAssessmentRead:
    assessment = get_overtime_assessment(
        db,
        actor_id=actor_id,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
    )
    return OvertimeAssessmentRead.from_assessment(assessment)


@router.get("/users/{user_id}/today", response_model=TodayStatusRead)
def get_user_today(
    user_id: int,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> TodayStatusRead:
    return get_today_status(db, actor_id=actor_id, user_id=user_id)


@router.post(
    "/time-events/{event_id}/correction-requests",
    response_model=CorrectionRead,
    status_code=status.HTTP_201_CREATED,
)
def create_correction_request(
    event_id: int,
    payload: CorrectionUserRequestCreate,
    request: Request,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> CorrectionRead:
    correction = submit_user_request(
        db,
        event_id=event_id,
        user_id=actor_id,
        changes=payload.changes,
        reason=payload.reason,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
    request.state.event_id = event_id
    log_audit(
        db,
        request=request,
        actor=resolve_user(db, actor_id),
        action="CORRECTION_REQUESTED",
        entity_type="time_correction",
        entity_id=correction.id,
        details={"event_id": event_id, "field_changed": correction.field_changed.value},
    )
    return CorrectionRead.model_validate(correction)


@router.get("/corrections", response_model=list[CorrectionTrailRead])
def get_corrections(
    event_ids: list[int] = Query(),
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[CorrectionTrailRead]:
    history = get_corrections_for_events(db, actor_id=actor_id, event_ids=event_ids)
    trails: list[CorrectionTrailRead] = []
    for event_id, corrections in history.items():
        event = db.get(TimeEvent, event_id)
        if event is None:
            continue
        trails.append(
            CorrectionTrailRead(
                event_id=event_id,
                original_value=reconstruct_original_values(event, corrections),
                corrections=[CorrectionRead.model_validate(item) for item in corrections],
            )
        )
    return trails
