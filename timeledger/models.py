from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeledger.db import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class EventKind(str, enum.Enum):
    CLOCK_IN = "CLOCK_IN"
    CLOCK_OUT = "CLOCK_OUT"


class WorkLocation(str, enum.Enum):
    OFFICE = "OFFICE"
    REMOTE = "REMOTE"


class CorrectionOrigin(str, enum.Enum):
    ADMIN_DIRECT = "ADMIN_DIRECT"
    USER_REQUEST = "USER_REQUEST"


class CorrectionField(str, enum.Enum):
    TIMESTAMP = "TIMESTAMP"
    KIND = "KIND"
    MULTIPLE = "MULTIPLE"


class CorrectionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ReportDisposition(str, enum.Enum):
    UNREVIEWED = "UNREVIEWED"
    ACCEPTED = "ACCEPTED"
    CONTESTED = "CONTESTED"


class AbsenceKind(str, enum.Enum):
    LATE_ARRIVAL = "LATE_ARRIVAL"
    EARLY_DEPARTURE = "EARLY_DEPARTURE"
    PARTIAL_ABSENCE = "PARTIAL_ABSENCE"
    FULL_ABSENCE = "FULL_ABSENCE"
    MEDICAL_LEAVE = "MEDICAL_LEAVE"
    PERSONAL_LEAVE = "PERSONAL_LEAVE"
    DAY_OFF = "DAY_OFF"


class AbsenceStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SCHEDULED = "SCHEDULED"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"
    SYSTEM = "SYSTEM"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    expected_daily_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=480,
        server_default=text("480"),
    )
    expected_friday_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    days_off: Mapped[list[int]] = mapped_column(JSONDocument, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    time_events: Mapped[list[TimeEvent]] = relationship(
        back_populates="user",
        foreign_keys="TimeEvent.user_id",
    )
    monthly_reports: Mapped[list[MonthlyReport]] = relationship(
        back_populates="user",
        foreign_keys="MonthlyReport.user_id",
    )
    absences: Mapped[list[Absence]] = relationship(
        back_populates="user",
        foreign_keys="Absence.user_id",
    )


class TimeEvent(Base):
    __tablename__ = "time_events"
    __table_args__ = (
        Index("ix_time_events_user_ts_kind", "user_id", "ts_utc", "kind"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    kind: Mapped[EventKind] = mapped_column(
        Enum(EventKind, name="time_event_kind"),
        nullable=False,
    )
    is_simulated: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    location: Mapped[WorkLocation | None] = mapped_column(
        Enum(WorkLocation, name="time_event_location"),
        nullable=True,
    )
    is_modified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    last_modified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    modified_by_admin_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Points at the newest approved correction; corrections reference events, not the reverse.
    last_correction_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user: Mapped[User] = relationship(back_populates="time_events", foreign_keys=[user_id])
    corrections: Mapped[list[TimeCorrection]] = relationship(back_populates="event")


class TimeCorrection(Base):
    __tablename__ = "time_corrections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(
        ForeignKey("time_events.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    admin_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    origin: Mapped[CorrectionOrigin] = mapped_column(
        Enum(CorrectionOrigin, name="time_correction_origin"),
        nullable=False,
    )
    field_changed: Mapped[CorrectionField] = mapped_column(
        Enum(CorrectionField, name="time_correction_field"),
        nullable=False,
    )
    previous_value: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    new_value: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    status: Mapped[CorrectionStatus] = mapped_column(
        Enum(CorrectionStatus, name="time_correction_status"),
        nullable=False,
        default=CorrectionStatus.PENDING,
        index=True,
    )
    reviewed_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    event: Mapped[TimeEvent] = relationship(back_populates="corrections")


class MonthlyReport(Base):
    __tablename__ = "monthly_reports"
    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_monthly_reports_user_period"),
        CheckConstraint(
            "accepted_at IS NULL OR contested_at IS NULL",
            name="ck_monthly_reports_single_disposition",
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_monthly_reports_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    generated_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    contested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    contest_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped[User] = relationship(back_populates="monthly_reports", foreign_keys=[user_id])

    @property
    def disposition(self) -> ReportDisposition:
        if self.accepted_at is not None:
            return ReportDisposition.ACCEPTED
        if self.contested_at is not None:
            return ReportDisposition.CONTESTED
        return ReportDisposition.UNREVIEWED

    @property
    def is_viewed(self) -> bool:
        return self.viewed_at is not None


class Absence(Base):
    __tablename__ = "absences"
    __table_args__ = (
        Index("ix_absences_user_day", "user_id", "day"),
        CheckConstraint("end_time > start_time", name="ck_absences_time_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    kind: Mapped[AbsenceKind] = mapped_column(Enum(AbsenceKind, name="absence_kind"), nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[AbsenceStatus] = mapped_column(
        Enum(AbsenceStatus, name="absence_status"),
        nullable=False,
        default=AbsenceStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user: Mapped[User] = relationship(back_populates="absences", foreign_keys=[user_id])


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
