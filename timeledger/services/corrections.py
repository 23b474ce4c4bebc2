from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeledger.errors import conflict, forbidden, invalid_input, not_found
from timeledger.models import (
    CorrectionField,
    CorrectionOrigin,
    CorrectionStatus,
    EventKind,
    TimeCorrection,
    TimeEvent,
)
from timeledger.schemas import CorrectionChanges
from timeledger.services.sessions import normalize_ts
from timeledger.services.users import lock_user, require_admin_user, resolve_user
from timeledger.settings import get_settings

logger = logging.getLogger("timeledger.corrections")

FIELD_TIMESTAMP = "timestamp"
FIELD_KIND = "kind"

_FIELD_TYPES = {
    FIELD_TIMESTAMP: CorrectionField.TIMESTAMP,
    FIELD_KIND: CorrectionField.KIND,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_event_values(event: TimeEvent) -> dict[str, str]:
    return {
        FIELD_TIMESTAMP: normalize_ts(event.ts_utc).isoformat(),
        FIELD_KIND: EventKind(event.kind).value,
    }


def _requested_values(changes: CorrectionChanges) -> dict[str, str]:
    requested: dict[str, str] = {}
    if changes.ts_utc is not None:
        requested[FIELD_TIMESTAMP] = normalize_ts(changes.ts_utc).isoformat()
    if changes.kind is not None:
        requested[FIELD_KIND] = changes.kind.value
    return requested


def _effective_changes(event: TimeEvent, changes: CorrectionChanges) -> dict[str, str]:
    requested = _requested_values(changes)
    if not requested:
        raise invalid_input("NO_CHANGES", "At least one of timestamp or kind must be changed.")
    current = serialize_event_values(event)
    effective = {field: value for field, value in requested.items() if current[field] != value}
    if not effective:
        raise invalid_input("NO_EFFECTIVE_CHANGES", "Requested values match the current event.")
    return effective


def _field_changed(fields: Iterable[str]) -> CorrectionField:
    names = list(fields)
    if len(names) > 1:
        return CorrectionField.MULTIPLE
    return _FIELD_TYPES[names[0]]


def _validate_reason(reason: str) -> str:
    cleaned = (reason or "").strip()
    min_length = get_settings().correction_reason_min_length
    if len(cleaned) < min_length:
        raise invalid_input("REASON_TOO_SHORT", f"Reason must be at least {min_length} characters.")
    return cleaned


def _resolve_event(db: Session, event_id: int) -> TimeEvent:
    event = db.get(TimeEvent, event_id)
    if event is None:
        raise not_found("EVENT_NOT_FOUND", "Time event not found.")
    return event


def _resolve_correction(db: Session, correction_id: int) -> TimeCorrection:
    correction = db.get(TimeCorrection, correction_id)
    if correction is None:
        raise not_found("CORRECTION_NOT_FOUND", "Correction not found.")
    return correction


def _lock_event_owner(db: Session, event: TimeEvent) -> TimeEvent:
    lock_user(db, event.user_id)
    # Re-read under the lock; a concurrent writer may have committed meanwhile.
    db.refresh(event)
    return event


def _mutate_event(event: TimeEvent, values: dict[str, str], *, admin_id: int, now: datetime) -> None:
    if FIELD_TIMESTAMP in values:
        event.ts_utc = datetime.fromisoformat(values[FIELD_TIMESTAMP])
    if FIELD_KIND in values:
        event.kind = EventKind(values[FIELD_KIND])
    event.is_modified = True
    event.last_modified_at = now
    event.modified_by_admin_id = admin_id


def apply_correction(
    db: Session,
    *,
    event_id: int,
    admin_id: int,
    changes: CorrectionChanges,
    reason: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> list[TimeCorrection]:
    """Apply an admin correction directly.

    The event mutation and one approved correction per changed field are
    committed together; on any failure the transaction is rolled back and
    nothing is exposed.
    """
    require_admin_user(db, admin_id)
    reason = _validate_reason(reason)
    if changes.ts_utc is None and changes.kind is None:
        raise invalid_input("NO_CHANGES", "At least one of timestamp or kind must be changed.")
    event = _lock_event_owner(db, _resolve_event(db, event_id))
    effective = _effective_changes(event, changes)
    applied_at = normalize_ts(now) if now is not None else _utcnow()
    current = serialize_event_values(event)

    corrections = [
        TimeCorrection(
            event_id=event.id,
            user_id=event.user_id,
            admin_id=admin_id,
            origin=CorrectionOrigin.ADMIN_DIRECT,
            field_changed=_FIELD_TYPES[field],
            previous_value={field: current[field]},
            new_value={field: value},
            reason=reason,
            status=CorrectionStatus.APPROVED,
            reviewed_by_id=admin_id,
            reviewed_at=applied_at,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=applied_at,
        )
        for field, value in effective.items()
    ]
    try:
        _mutate_event(event, effective, admin_id=admin_id, now=applied_at)
        db.add_all(corrections)
        db.flush()
        event.last_correction_id = corrections[-1].id
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("correction_apply_failed", extra={"event_id": event_id, "admin_id": admin_id})
        raise

    for correction in corrections:
        db.refresh(correction)
    logger.info(
        "correction_applied",
        extra={
            "event_id": event.id,
            "user_id": event.user_id,
            "admin_id": admin_id,
            "fields": sorted(effective),
            "correction_ids": [item.id for item in corrections],
        },
    )
    return corrections


def submit_user_request(
    db: Session,
    *,
    event_id: int,
    user_id: int,
    changes: CorrectionChanges,
    reason: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> TimeCorrection:
    resolve_user(db, user_id)
    event = _resolve_event(db, event_id)
    if event.user_id != user_id:
        raise forbidden("Corrections can only be requested for your own events.")
    reason = _validate_reason(reason)
    effective = _effective_changes(event, changes)
    current = serialize_event_values(event)

    correction = TimeCorrection(
        event_id=event.id,
        user_id=event.user_id,
        admin_id=None,
        origin=CorrectionOrigin.USER_REQUEST,
        field_changed=_field_changed(effective),
        previous_value={field: current[field] for field in effective},
        new_value=dict(effective),
        reason=reason,
        status=CorrectionStatus.PENDING,
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=normalize_ts(now) if now is not None else _utcnow(),
    )
    db.add(correction)
    db.commit()
    db.refresh(correction)
    logger.info(
        "correction_requested",
        extra={"event_id": event.id, "user_id": user_id, "correction_id": correction.id},
    )
    return correction


def _ensure_pending(correction: TimeCorrection) -> None:
    if correction.status != CorrectionStatus.PENDING:
        raise conflict(
            "CORRECTION_ALREADY_REVIEWED",
            f"Correction is already {CorrectionStatus(correction.status).value}.",
        )


def _is_stale(event: TimeEvent, correction: TimeCorrection) -> bool:
    if event.last_modified_at is not None and normalize_ts(event.last_modified_at) > normalize_ts(
        correction.created_at
    ):
        return True
    current = serialize_event_values(event)
    return any(current.get(field) != value for field, value in (correction.previous_value or {}).items())


def approve_request(
    db: Session,
    *,
    correction_id: int,
    admin_id: int,
    note: str | None = None,
    now: datetime | None = None,
) -> TimeCorrection:
    require_admin_user(db, admin_id)
    correction = _resolve_correction(db, correction_id)
    event = _lock_event_owner(db, _resolve_event(db, correction.event_id))
    db.refresh(correction)
    _ensure_pending(correction)

    if _is_stale(event, correction):
        logger.warning(
            "correction_request_stale",
            extra={"correction_id": correction.id, "event_id": event.id, "admin_id": admin_id},
        )
        db.rollback()
        raise conflict(
            "CORRECTION_CONFLICT",
            "The event changed after this request was submitted; review it again.",
        )

    approved_at = normalize_ts(now) if now is not None else _utcnow()
    requested = dict(correction.new_value or {})
    current = serialize_event_values(event)
    try:
        correction.previous_value = {field: current[field] for field in requested}
        correction.status = CorrectionStatus.APPROVED
        correction.reviewed_by_id = admin_id
        correction.reviewed_at = approved_at
        correction.review_note = note
        _mutate_event(event, requested, admin_id=admin_id, now=approved_at)
        event.last_correction_id = correction.id
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("correction_approve_failed", extra={"correction_id": correction_id, "admin_id": admin_id})
        raise

    db.refresh(correction)
    logger.info(
        "correction_approved",
        extra={"correction_id": correction.id, "event_id": event.id, "admin_id": admin_id},
    )
    return correction


def reject_request(
    db: Session,
    *,
    correction_id: int,
    admin_id: int,
    note: str | None = None,
    now: datetime | None = None,
) -> TimeCorrection:
    require_admin_user(db, admin_id)
    correction = _resolve_correction(db, correction_id)
    lock_user(db, correction.user_id)
    db.refresh(correction)
    _ensure_pending(correction)

    correction.status = CorrectionStatus.REJECTED
    correction.reviewed_by_id = admin_id
    correction.reviewed_at = normalize_ts(now) if now is not None else _utcnow()
    correction.review_note = note
    db.commit()
    db.refresh(correction)
    logger.info(
        "correction_rejected",
        extra={"correction_id": correction.id, "event_id": correction.event_id, "admin_id": admin_id},
    )
    return correction


def get_corrections_for_events(
    db: Session,
    *,
    actor_id: int,
    event_ids: Sequence[int],
) -> dict[int, list[TimeCorrection]]:
    actor = resolve_user(db, actor_id)
    if not event_ids:
        return {}
    stmt = (
        select(TimeCorrection)
        .where(TimeCorrection.event_id.in_(list(event_ids)))
        .order_by(TimeCorrection.created_at.desc(), TimeCorrection.id.desc())
    )
    if not actor.is_admin:
        stmt = stmt.where(TimeCorrection.user_id == actor.id)

    history: dict[int, list[TimeCorrection]] = {}
    for correction in db.scalars(stmt).all():
        history.setdefault(correction.event_id, []).append(correction)
    return history


def list_pending_requests(db: Session, *, admin_id: int, limit: int = 200) -> list[TimeCorrection]:
    require_admin_user(db, admin_id)
    return list(
        db.scalars(
            select(TimeCorrection)
            .where(TimeCorrection.status == CorrectionStatus.PENDING)
            .order_by(TimeCorrection.created_at.asc(), TimeCorrection.id.asc())
            .limit(limit)
        ).all()
    )


def _applied_chain(corrections: Iterable[TimeCorrection]) -> list[TimeCorrection]:
    approved = [item for item in corrections if item.status == CorrectionStatus.APPROVED]
    return sorted(
        approved,
        key=lambda item: (normalize_ts(item.reviewed_at or item.created_at), item.id or 0),
    )


def reconstruct_original_values(event: TimeEvent, corrections: Iterable[TimeCorrection]) -> dict[str, Any]:
    """Undo the approved corrections newest-first to recover the recorded values."""
    state: dict[str, Any] = serialize_event_values(event)
    for correction in reversed(_applied_chain(corrections)):
        state.update(correction.previous_value or {})
    return state


def verify_correction_chain(event: TimeEvent, corrections: Iterable[TimeCorrection]) -> list[str]:
    """Replay the approved chain from the original values and report mismatches."""
    items = list(corrections)
    issues: list[str] = []
    state = reconstruct_original_values(event, items)
    for correction in _applied_chain(items):
        for field, value in (correction.previous_value or {}).items():
            if state.get(field) != value:
                issues.append(f"correction {correction.id}: {field} expected {value!r}, chain has {state.get(field)!r}")
        state.update(correction.new_value or {})
    current = serialize_event_values(event)
    if state != current:
        issues.append(f"event {event.id}: replayed values {state!r} differ from current {current!r}")
    for correction in items:
        if correction.status == CorrectionStatus.PENDING and correction.reviewed_at is not None:
            issues.append(f"correction {correction.id}: pending but carries a review timestamp")
    return issues
