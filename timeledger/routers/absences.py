from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from timeledger.audit import log_audit
from timeledger.db import get_db
from timeledger.schemas import AbsenceCreate, AbsenceRead
from timeledger.security import require_actor
from timeledger.services.absences import create_absence, get_absence_for_day, list_user_absences
from timeledger.services.users import resolve_user

router = APIRouter(prefix="/api", tags=["absences"])


@router.post("/absences", response_model=AbsenceRead, status_code=status.HTTP_201_CREATED)
def post_absence(
    payload: AbsenceCreate,
    request: Request,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> AbsenceRead:
    absence = create_absence(db, actor_id=actor_id, payload=payload)
    log_audit(
        db,
        request=request,
        actor=resolve_user(db, actor_id),
        action="ABSENCE_CREATED",
        entity_type="absence",
        entity_id=absence.id,
        details={
            "user_id": absence.user_id,
            "day": absence.day.isoformat(),
            "kind": absence.kind.value,
            "status": absence.status.value,
        },
    )
    return AbsenceRead.model_validate(absence)


@router.get("/users/{user_id}/absences", response_model=list[AbsenceRead])
def get_user_absences(
    user_id: int,
    start_date: date | None = Query(default=None, alias="from"),
    end_date: date | None = Query(default=None, alias="to"),
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[AbsenceRead]:
    absences = list_user_absences(
        db,
        actor_id=actor_id,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
    )
    return [AbsenceRead.model_validate(item) for item in absences]


@router.get("/users/{user_id}/absences/{day}", response_model=AbsenceRead | None)
def get_user_absence_for_day(
    user_id: int,
    day: date,
    actor_id: int = Depends(require_actor),
    db: Session = Depends(get_db),
) -> AbsenceRead | None:
    absence = get_absence_for_day(db, actor_id=actor_id, user_id=user_id, day=day)
    return AbsenceRead.model_validate(absence) if absence is not None else None
