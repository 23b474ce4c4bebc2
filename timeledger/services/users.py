from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from timeledger.errors import conflict, forbidden, invalid_input, not_found
from timeledger.models import User
from timeledger.schemas import UserCreate, WorkSettingsUpdate
from timeledger.services.daily import BreakBonusRule
from timeledger.services.overtime import OvertimeThresholds
from timeledger.settings import get_settings

logger = logging.getLogger("timeledger.users")

DEFAULT_TIMEZONE = "Europe/Madrid"


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except Exception:
        logger.warning("attendance_timezone_invalid", extra={"timezone": raw_name})
        return ZoneInfo(DEFAULT_TIMEZONE)


def resolve_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise not_found("USER_NOT_FOUND", "User not found.")
    return user


def lock_user(db: Session, user_id: int) -> User:
    """Take the per-user row lock that serializes corrections and report generation."""
    user = db.scalar(select(User).where(User.id == user_id).with_for_update())
    if user is None:
        raise not_found("USER_NOT_FOUND", "User not found.")
    return user


def require_admin_user(db: Session, admin_id: int) -> User:
    admin = db.get(User, admin_id)
    if admin is None or not admin.is_admin or not admin.is_active:
        raise forbidden("Administrator permissions are required.", code="ADMIN_REQUIRED")
    return admin


def ensure_can_access_user(db: Session, actor_id: int, user_id: int) -> User:
    """Return the actor when it may read ``user_id``'s data: itself, or any admin."""
    actor = resolve_user(db, actor_id)
    if actor.id != user_id and not actor.is_admin:
        raise forbidden("Not allowed to access another user's data.")
    return actor


def thresholds_for_user(user: User) -> OvertimeThresholds:
    settings = get_settings()
    friday = user.expected_friday_minutes
    return OvertimeThresholds(
        daily=timedelta(minutes=user.expected_daily_minutes),
        friday=timedelta(minutes=friday) if friday is not None else None,
        days_off=frozenset(int(item) for item in (user.days_off or [])),
        weekly_cap=timedelta(minutes=settings.weekly_overtime_cap_minutes),
        yearly_cap=timedelta(minutes=settings.yearly_overtime_cap_minutes),
    )


def break_bonus_rule() -> BreakBonusRule:
    settings = get_settings()
    return BreakBonusRule(
        threshold=timedelta(minutes=settings.break_bonus_threshold_minutes),
        bonus=timedelta(minutes=settings.break_bonus_minutes),
    )


def _validate_days_off(days_off: list[int]) -> list[int]:
    cleaned = sorted(set(days_off))
    if any(day < 1 or day > 7 for day in cleaned):
        raise invalid_input("INVALID_DAYS_OFF", "Days off must be ISO weekday numbers between 1 and 7.")
    return cleaned


def create_user(db: Session, *, admin_id: int, payload: UserCreate) -> User:
    require_admin_user(db, admin_id)
    daily_minutes = payload.expected_daily_minutes
    if daily_minutes is None:
        daily_minutes = get_settings().default_daily_minutes
    user = User(
        full_name=payload.full_name.strip(),
        email=payload.email.strip().lower(),
        is_admin=payload.is_admin,
        is_active=True,
        expected_daily_minutes=daily_minutes,
        expected_friday_minutes=payload.expected_friday_minutes,
        days_off=_validate_days_off(payload.days_off),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise conflict("USER_ALREADY_EXISTS", "A user with this email already exists.") from exc
    db.refresh(user)
    return user


def update_work_settings(
    db: Session,
    *,
    admin_id: int,
    user_id: int,
    payload: WorkSettingsUpdate,
) -> User:
    require_admin_user(db, admin_id)
    user = resolve_user(db, user_id)
    changes = payload.model_dump(exclude_unset=True)
    if "expected_daily_minutes" in changes and changes["expected_daily_minutes"] is not None:
        user.expected_daily_minutes = changes["expected_daily_minutes"]
    if "expected_friday_minutes" in changes:
        user.expected_friday_minutes = changes["expected_friday_minutes"]
    if "days_off" in changes and changes["days_off"] is not None:
        user.days_off = _validate_days_off(changes["days_off"])
    if "is_active" in changes and changes["is_active"] is not None:
        user.is_active = changes["is_active"]
    db.commit()
    db.refresh(user)
    return user


def list_active_users(db: Session) -> list[User]:
    return list(
        db.scalars(
            select(User).where(User.is_active.is_(True)).order_by(User.full_name.asc(), User.id.asc())
        ).all()
    )
