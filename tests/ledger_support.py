from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from timeledger.db import Base
from timeledger.models import EventKind, TimeEvent, User


def make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)()


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


def add_user(
    db: Session,
    *,
    email: str,
    is_admin: bool = False,
    is_active: bool = True,
    expected_daily_minutes: int = 480,
    expected_friday_minutes: int | None = None,
    days_off: list[int] | None = None,
) -> User:
    user = User(
        full_name=email.split("@")[0].title(),
        email=email,
        is_admin=is_admin,
        is_active=is_active,
        expected_daily_minutes=expected_daily_minutes,
        expected_friday_minutes=expected_friday_minutes,
        days_off=days_off or [],
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_event(db: Session, user: User, ts_utc: datetime, kind: EventKind) -> TimeEvent:
    event = TimeEvent(user_id=user.id, ts_utc=ts_utc, kind=kind, is_simulated=False, is_modified=False)
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def add_session(db: Session, user: User, clock_in: datetime, clock_out: datetime) -> tuple[TimeEvent, TimeEvent]:
    return add_event(db, user, clock_in, EventKind.CLOCK_IN), add_event(db, user, clock_out, EventKind.CLOCK_OUT)
