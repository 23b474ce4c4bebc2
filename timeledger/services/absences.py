from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeledger.errors import invalid_input, not_found
from timeledger.models import Absence, AbsenceStatus
from timeledger.schemas import AbsenceCreate
from timeledger.services.users import ensure_can_access_user, require_admin_user, resolve_user
from timeledger.settings import get_settings

logger = logging.getLogger("timeledger.absences")

_REVIEWED_STATUSES = frozenset({AbsenceStatus.APPROVED, AbsenceStatus.REJECTED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_window(start_date: date | None, end_date: date | None) -> None:
    if start_date is not None and end_date is not None and start_date > end_date:
        raise invalid_input("INVALID_RANGE", "Range start must not be after range end.")


def _duration_minutes(payload: AbsenceCreate) -> int:
    start = payload.start_time.hour * 60 + payload.start_time.minute
    end = payload.end_time.hour * 60 + payload.end_time.minute
    return end - start


def create_absence(
    db: Session,
    *,
    actor_id: int,
    payload: AbsenceCreate,
    now: datetime | None = None,
) -> Absence:
    """Register an absence for the caller, or for anyone when the caller is an admin.

    Workers always file a pending absence; admins may record it directly with
    a final status.
    """
    user_id = payload.user_id if payload.user_id is not None else actor_id
    actor = ensure_can_access_user(db, actor_id, user_id)
    resolve_user(db, user_id)

    if payload.end_time <= payload.start_time:
        raise invalid_input("INVALID_TIME_RANGE", "Absence end time must be after its start time.")
    reason = (payload.reason or "").strip()
    min_length = get_settings().absence_reason_min_length
    if len(reason) < min_length:
        raise invalid_input("REASON_TOO_SHORT", f"Reason must be at least {min_length} characters.")

    status = AbsenceStatus.PENDING
    if actor.is_admin and payload.status is not None:
        status = payload.status
    created_at = now or _utcnow()

    absence = Absence(
        user_id=user_id,
        day=payload.day,
        kind=payload.kind,
        start_time=payload.start_time,
        end_time=payload.end_time,
        duration_minutes=_duration_minutes(payload),
        reason=reason,
        comments=(payload.comments or "").strip() or None,
        status=status,
        created_by_id=actor.id,
        created_at=created_at,
    )
    if status in _REVIEWED_STATUSES:
        absence.reviewed_by_id = actor.id
        absence.reviewed_at = created_at
    db.add(absence)
    db.commit()
    db.refresh(absence)
    logger.info(
        "absence_created",
        extra={
            "absence_id": absence.id,
            "user_id": user_id,
            "kind": absence.kind.value,
            "status": absence.status.value,
        },
    )
    return absence


def list_user_absences(
    db: Session,
    *,
    actor_id: int,
    user_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Absence]:
    ensure_can_access_user(db, actor_id, user_id)
    resolve_user(db, user_id)
    _validate_window(start_date, end_date)
    stmt = select(Absence).where(Absence.user_id == user_id)
    if start_date is not None:
        stmt = stmt.where(Absence.day >= start_date)
    if end_date is not None:
        stmt = stmt.where(Absence.day <= end_date)
    return list(db.scalars(stmt.order_by(Absence.day.desc(), Absence.id.desc())).all())


def list_all_absences(
    db: Session,
    *,
    admin_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    status: AbsenceStatus | None = None,
) -> list[Absence]:
    require_admin_user(db, admin_id)
    _validate_window(start_date, end_date)
    stmt = select(Absence)
    if start_date is not None:
        stmt = stmt.where(Absence.day >= start_date)
    if end_date is not None:
        stmt = stmt.where(Absence.day <= end_date)
    if status is not None:
        stmt = stmt.where(Absence.status == status)
    return list(db.scalars(stmt.order_by(Absence.day.desc(), Absence.id.desc())).all())


def get_absence_for_day(db: Session, *, actor_id: int, user_id: int, day: date) -> Absence | None:
    ensure_can_access_user(db, actor_id, user_id)
    resolve_user(db, user_id)
    return db.scalar(
        select(Absence)
        .where(Absence.user_id == user_id, Absence.day == day)
        .order_by(Absence.id.asc())
        .limit(1)
    )


def update_absence_status(
    db: Session,
    *,
    admin_id: int,
    absence_id: int,
    status: AbsenceStatus,
    now: datetime | None = None,
) -> Absence:
    require_admin_user(db, admin_id)
    absence = db.get(Absence, absence_id)
    if absence is None:
        raise not_found("ABSENCE_NOT_FOUND", "Absence not found.")

    previous = absence.status
    absence.status = status
    absence.reviewed_by_id = admin_id
    absence.reviewed_at = now or _utcnow()
    db.commit()
    db.refresh(absence)
    logger.info(
        "absence_status_updated",
        extra={
            "absence_id": absence.id,
            "admin_id": admin_id,
            "previous_status": previous.value,
            "status": status.value,
        },
    )
    return absence
