from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeledger.errors import conflict, forbidden, invalid_input
from timeledger.models import EventKind, TimeEvent, User, WorkLocation
from timeledger.schemas import (
    CurrentSessionRead,
    DailySummaryRead,
    SimulatedEventItem,
    TimeEventRead,
    TodayStatusRead,
    WorkerStatusRead,
)
from timeledger.services.daily import DailySummary, aggregate_daily
from timeledger.services.overtime import OvertimeAssessment, evaluate_overtime, week_start_of
from timeledger.services.sessions import (
    Reconciliation,
    normalize_ts,
    reconcile_sessions,
)
from timeledger.services.users import (
    attendance_timezone,
    break_bonus_rule,
    ensure_can_access_user,
    list_active_users,
    require_admin_user,
    resolve_user,
    thresholds_for_user,
)
from timeledger.settings import get_settings, is_strict_clock_sequence

logger = logging.getLogger("timeledger.time_events")


@dataclass
class LoadedPeriod:
    user: User
    start: date
    end: date
    events: list[TimeEvent]
    reconciliation: Reconciliation
    summaries: list[DailySummary]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_date_from_utc(ts_utc: datetime) -> date:
    return normalize_ts(ts_utc).astimezone(attendance_timezone()).date()


def local_date_range_to_utc_bounds(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    tz = attendance_timezone()
    start_local = datetime.combine(start_date, datetime.min.time(), tzinfo=tz)
    end_local = datetime.combine(end_date + timedelta(days=1), datetime.min.time(), tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def validate_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise invalid_input("INVALID_RANGE", "Range start must not be after range end.")
    max_days = get_settings().max_range_days
    if (end_date - start_date).days + 1 > max_days:
        raise invalid_input("INVALID_RANGE", f"Range must not exceed {max_days} days.")


def _fetch_events(db: Session, user_id: int, start_utc: datetime, end_utc: datetime) -> list[TimeEvent]:
    return list(
        db.scalars(
            select(TimeEvent)
            .where(
                TimeEvent.user_id == user_id,
                TimeEvent.ts_utc >= start_utc,
                TimeEvent.ts_utc < end_utc,
            )
            .order_by(TimeEvent.ts_utc.asc(), TimeEvent.id.asc())
        ).all()
    )


def _latest_event_at_or_before(db: Session, user_id: int, ts_utc: datetime) -> TimeEvent | None:
    return db.scalar(
        select(TimeEvent)
        .where(TimeEvent.user_id == user_id, TimeEvent.ts_utc <= ts_utc)
        .order_by(TimeEvent.ts_utc.desc(), TimeEvent.id.desc())
        .limit(1)
    )


def _sequence_anomalies(events: Sequence[TimeEvent]) -> set[tuple[str, int | None, datetime]]:
    return {(item.code, item.event_id, item.ts_utc) for item in reconcile_sessions(events).anomalies}


def _check_clock_sequence(db: Session, candidate: TimeEvent) -> None:
    """Reject ``candidate`` when it adds an anomaly to the surrounding sequence.

    Both neighbours count, so a backdated event that strands a later clock-out
    or abandons an earlier clock-in is refused as well.
    """
    lookahead = timedelta(hours=get_settings().session_lookahead_hours)
    ts = normalize_ts(candidate.ts_utc)
    neighbours = _fetch_events(db, candidate.user_id, ts - lookahead, ts + lookahead)
    introduced = _sequence_anomalies([*neighbours, candidate]) - _sequence_anomalies(neighbours)
    if introduced:
        anomaly = min(introduced, key=lambda item: item[2])[0]
        raise conflict(
            "INVALID_EVENT_SEQUENCE",
            f"{candidate.kind.value} would break the clock sequence ({anomaly}).",
        )


def record_event(
    db: Session,
    *,
    actor_id: int,
    user_id: int,
    kind: EventKind,
    ts_utc: datetime | None = None,
    location: WorkLocation | None = None,
    simulated: bool = False,
) -> TimeEvent:
    actor = ensure_can_access_user(db, actor_id, user_id)
    if simulated and not actor.is_admin:
        raise forbidden("Only administrators may record simulated events.", code="ADMIN_REQUIRED")
    user = resolve_user(db, user_id)
    if not user.is_active:
        raise forbidden("Inactive users cannot record events.", code="USER_INACTIVE")

    event = TimeEvent(
        user_id=user_id,
        ts_utc=normalize_ts(ts_utc) if ts_utc is not None else _utcnow(),
        kind=kind,
        location=location,
        is_simulated=simulated,
        is_modified=False,
    )
    if is_strict_clock_sequence():
        _check_clock_sequence(db, event)

    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info(
        "time_event_recorded",
        extra={
            "user_id": user_id,
            "event_id": event.id,
            "kind": kind.value,
            "simulated": simulated,
        },
    )
    return event


def record_simulated_events(
    db: Session,
    *,
    admin_id: int,
    items: Sequence[SimulatedEventItem],
) -> list[TimeEvent]:
    require_admin_user(db, admin_id)
    for user_id in sorted({item.user_id for item in items}):
        resolve_user(db, user_id)

    events = [
        TimeEvent(
            user_id=item.user_id,
            ts_utc=normalize_ts(item.ts_utc),
            kind=item.kind,
            location=item.location,
            is_simulated=True,
            is_modified=False,
        )
        for item in items
    ]
    db.add_all(events)
    db.commit()
    for event in events:
        db.refresh(event)
    logger.info("time_events_simulated", extra={"admin_id": admin_id, "count": len(events)})
    return events


def list_events(
    db: Session,
    *,
    actor_id: int,
    user_id: int,
    start_date: date,
    end_date: date,
) -> list[TimeEvent]:
    validate_range(start_date, end_date)
    ensure_can_access_user(db, actor_id, user_id)
    resolve_user(db, user_id)
    start_utc, end_utc = local_date_range_to_utc_bounds(start_date, end_date)
    return _fetch_events(db, user_id, start_utc, end_utc)


def load_period(db: Session, user: User, start_date: date, end_date: date) -> LoadedPeriod:
    """Reconcile ``user``'s events for a local date range.

    Events are read with a look-around margin so a session crossing midnight at
    either edge of the range is reconstructed whole and attributed to its start
    day. Anomalies are reported only for events inside the range.
    """
    margin = timedelta(hours=get_settings().session_lookahead_hours)
    start_utc, end_utc = local_date_range_to_utc_bounds(start_date, end_date)
    events = _fetch_events(db, user.id, start_utc - margin, end_utc + margin)
    reconciliation = reconcile_sessions(events)
    reconciliation.anomalies = [
        item for item in reconciliation.anomalies if start_utc <= item.ts_utc < end_utc
    ]
    summaries = aggregate_daily(
        reconciliation.sessions,
        attendance_timezone(),
        rule=break_bonus_rule(),
        start=start_date,
        end=end_date,
    )
    return LoadedPeriod(
        user=user,
        start=start_date,
        end=end_date,
        events=events,
        reconciliation=reconciliation,
        summaries=summaries,
    )


def get_daily_summaries(
    db: Session,
    *,
    actor_id: int,
    user_id: int,
    start_date: date,
    end_date: date,
) -> list[DailySummary]:
    validate_range(start_date, end_date)
    ensure_can_access_user(db, actor_id, user_id)
    user = resolve_user(db, user_id)
    return load_period(db, user, start_date, end_date).summaries


def assess_overtime_for_user(db: Session, user: User, start_date: date, end_date: date) -> OvertimeAssessment:
    # Whole ISO weeks for the weekly cap, year-to-date for the yearly cap.
    load_start = min(week_start_of(start_date), date(start_date.year, 1, 1))
    load_end = week_start_of(end_date) + timedelta(days=6)
    loaded = load_period(db, user, load_start, load_end)
    return evaluate_overtime(loaded.summaries, thresholds_for_user(user), start_date, end_date)


def get_overtime_assessment(
    db: Session,
    *,
    actor_id: int,
    user_id: int,
    start_date: date,
    end_date: date,
) -> OvertimeAssessment:
    validate_range(start_date, end_date)
    ensure_can_access_user(db, actor_id, user_id)
    user = resolve_user(db, user_id)
    return assess_overtime_for_user(db, user, start_date, end_date)


def _build_today_status(db: Session, user: User, now_utc: datetime) -> TodayStatusRead:
    today = local_date_from_utc(now_utc)
    loaded = load_period(db, user, today, today)
    summary = next((item for item in loaded.summaries if item.day == today), None)
    current = loaded.reconciliation.current_session
    if current is not None and current.clock_in_at > now_utc:
        current = None
    last_event = _latest_event_at_or_before(db, user.id, now_utc)
    return TodayStatusRead(
        user_id=user.id,
        day=today,
        is_working=current is not None,
        current_session=(
            CurrentSessionRead(
                clock_in_at=current.clock_in_at,
                clock_in_event_id=current.clock_in_event_id,
                elapsed_seconds=int(current.elapsed(now_utc).total_seconds()),
            )
            if current is not None
            else None
        ),
        summary=DailySummaryRead.from_summary(summary) if summary is not None else None,
        last_event=TimeEventRead.model_validate(last_event) if last_event is not None else None,
    )


def get_today_status(
    db: Session,
    *,
    actor_id: int,
    user_id: int,
    now_utc: datetime | None = None,
) -> TodayStatusRead:
    ensure_can_access_user(db, actor_id, user_id)
    user = resolve_user(db, user_id)
    return _build_today_status(db, user, normalize_ts(now_utc or _utcnow()))


def list_worker_statuses(
    db: Session,
    *,
    admin_id: int,
    now_utc: datetime | None = None,
) -> list[WorkerStatusRead]:
    require_admin_user(db, admin_id)
    now = normalize_ts(now_utc or _utcnow())
    items: list[WorkerStatusRead] = []
    for user in list_active_users(db):
        status = _build_today_status(db, user, now)
        worked_today = 0
        if status.summary is not None:
            worked_today = status.summary.total_seconds
        if status.current_session is not None:
            worked_today += status.current_session.elapsed_seconds
        items.append(
            WorkerStatusRead(
                user_id=user.id,
                full_name=user.full_name,
                is_working=status.is_working,
                worked_today_seconds=worked_today,
                current_session_started_at=(
                    status.current_session.clock_in_at if status.current_session is not None else None
                ),
                last_event_kind=status.last_event.kind if status.last_event is not None else None,
                last_event_at=status.last_event.ts_utc if status.last_event is not None else None,
                last_event_location=status.last_event.location if status.last_event is not None else None,
            )
        )
    return items
