from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol

from timeledger.models import EventKind

logger = logging.getLogger("timeledger.reconciler")

ANOMALY_ORPHAN_CLOCK_OUT = "ORPHAN_CLOCK_OUT"
ANOMALY_ABANDONED_CLOCK_IN = "ABANDONED_CLOCK_IN"

_KIND_ORDER = {EventKind.CLOCK_IN: 0, EventKind.CLOCK_OUT: 1}


class ClockEvent(Protocol):
    id: int | None
    user_id: int
    ts_utc: datetime
    kind: EventKind


class ClockSequenceError(ValueError):
    def __init__(self, anomaly: str, event_id: int | None, ts_utc: datetime):
        super().__init__(f"{anomaly} at {ts_utc.isoformat()}")
        self.anomaly = anomaly
        self.event_id = event_id
        self.ts_utc = ts_utc


@dataclass(frozen=True)
class WorkSession:
    clock_in_at: datetime
    clock_out_at: datetime | None
    duration: timedelta
    is_closed: bool
    clock_in_event_id: int | None = None
    clock_out_event_id: int | None = None

    def elapsed(self, now_utc: datetime) -> timedelta:
        """Duration for display: closed sessions report their stored duration,
        open ones the time elapsed up to ``now_utc`` (never negative)."""
        if self.is_closed:
            return self.duration
        return max(timedelta(0), normalize_ts(now_utc) - self.clock_in_at)


@dataclass(frozen=True)
class SequenceAnomaly:
    code: str
    event_id: int | None
    ts_utc: datetime


@dataclass
class Reconciliation:
    sessions: list[WorkSession] = field(default_factory=list)
    anomalies: list[SequenceAnomaly] = field(default_factory=list)
    current_session: WorkSession | None = None

    @property
    def closed_sessions(self) -> list[WorkSession]:
        return [item for item in self.sessions if item.is_closed]

    @property
    def open_sessions(self) -> list[WorkSession]:
        return [item for item in self.sessions if not item.is_closed]


def normalize_ts(ts_utc: datetime) -> datetime:
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


def sort_events(events: Iterable[ClockEvent]) -> list[ClockEvent]:
    return sorted(
        events,
        key=lambda item: (
            normalize_ts(item.ts_utc),
            _KIND_ORDER[EventKind(item.kind)],
            item.id if item.id is not None else 0,
        ),
    )


def reconcile_sessions(events: Sequence[ClockEvent], *, strict: bool = False) -> Reconciliation:
    result = Reconciliation()
    # Index into result.sessions of the open session currently tracked.
    open_index: int | None = None

    for event in sort_events(events):
        ts = normalize_ts(event.ts_utc)
        kind = EventKind(event.kind)

        if kind == EventKind.CLOCK_IN:
            if open_index is not None:
                if strict:
                    raise ClockSequenceError(ANOMALY_ABANDONED_CLOCK_IN, event.id, ts)
                abandoned = result.sessions[open_index]
                result.anomalies.append(
                    SequenceAnomaly(
                        code=ANOMALY_ABANDONED_CLOCK_IN,
                        event_id=abandoned.clock_in_event_id,
                        ts_utc=abandoned.clock_in_at,
                    )
                )
            result.sessions.append(
                WorkSession(
                    clock_in_at=ts,
                    clock_out_at=None,
                    duration=timedelta(0),
                    is_closed=False,
                    clock_in_event_id=event.id,
                )
            )
            open_index = len(result.sessions) - 1
            continue

        if open_index is None:
            if strict:
                raise ClockSequenceError(ANOMALY_ORPHAN_CLOCK_OUT, event.id, ts)
            result.anomalies.append(
                SequenceAnomaly(code=ANOMALY_ORPHAN_CLOCK_OUT, event_id=event.id, ts_utc=ts)
            )
            logger.warning(
                "clock_out_without_open_session",
                extra={"user_id": event.user_id, "event_id": event.id, "ts_utc": ts},
            )
            continue

        opened = result.sessions[open_index]
        result.sessions[open_index] = WorkSession(
            clock_in_at=opened.clock_in_at,
            clock_out_at=ts,
            duration=max(timedelta(0), ts - opened.clock_in_at),
            is_closed=True,
            clock_in_event_id=opened.clock_in_event_id,
            clock_out_event_id=event.id,
        )
        open_index = None

    if open_index is not None:
        result.current_session = result.sessions[open_index]
    return result
