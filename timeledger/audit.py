from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from timeledger.errors import get_request_id
from timeledger.models import AuditActorType, AuditLog, User

logger = logging.getLogger("timeledger.audit")


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    if request.client is None:
        return None
    return request.client.host


def user_agent(request: Request) -> str | None:
    value = request.headers.get("user-agent")
    return value[:1024] if value else None


def actor_type_for(actor: User | None) -> AuditActorType:
    if actor is None:
        return AuditActorType.SYSTEM
    return AuditActorType.ADMIN if actor.is_admin else AuditActorType.EMPLOYEE


def log_audit(
    db: Session,
    *,
    request: Request,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: int | str | None = None,
    success: bool = True,
    details: dict[str, Any] | None = None,
) -> None:
    """Append an audit row after a state change.

    Audit writes never fail the request: a failed insert is rolled back and
    logged instead.
    """
    actor_type = actor_type_for(actor)
    actor_id = str(actor.id) if actor is not None else "system"
    request_id = get_request_id(request)
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=client_ip(request),
        user_agent=user_agent(request),
        success=success,
        details=details or {},
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": audit.entity_id,
            "success": success,
            "details": details or {},
        },
    )
