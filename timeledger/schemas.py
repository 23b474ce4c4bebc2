from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from timeledger.models import (
    AbsenceKind,
    AbsenceStatus,
    CorrectionField,
    CorrectionOrigin,
    CorrectionStatus,
    EventKind,
    ReportDisposition,
    WorkLocation,
)
from timeledger.services.daily import DailySummary, PeriodStatistics, format_duration
from timeledger.services.overtime import OvertimeAssessment, WarningLevel
from timeledger.services.sessions import SequenceAnomaly, WorkSession


def _seconds(value: timedelta) -> int:
    return int(value.total_seconds())


class UserCreate(BaseModel):
    full_name: str = Field(min_length=2, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    is_admin: bool = False
    expected_daily_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    expected_friday_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    days_off: list[int] = Field(default_factory=list)


class WorkSettingsUpdate(BaseModel):
    expected_daily_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    expected_friday_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    days_off: list[int] | None = None
    is_active: bool | None = None


class UserRead(BaseModel):
    id: int
    full_name: str
    email: str
    is_admin: bool
    is_active: bool
    expected_daily_minutes: int
    expected_friday_minutes: int | None
    days_off: list[int]

    model_config = ConfigDict(from_attributes=True)


class TimeEventCreate(BaseModel):
    user_id: int | None = Field(default=None, ge=1)
    ts_utc: datetime | None = None
    kind: EventKind
    location: WorkLocation | None = None


class SimulatedEventItem(BaseModel):
    user_id: int = Field(ge=1)
    ts_utc: datetime
    kind: EventKind
    location: WorkLocation | None = None


class SimulatedEventsCreate(BaseModel):
    events: list[SimulatedEventItem] = Field(min_length=1, max_length=1000)


class TimeEventRead(BaseModel):
    id: int
    user_id: int
    ts_utc: datetime
    kind: EventKind
    is_simulated: bool
    location: WorkLocation | None
    is_modified: bool
    last_modified_at: datetime | None
    modified_by_admin_id: int | None
    last_correction_id: int | None

    model_config = ConfigDict(from_attributes=True)


class WorkSessionRead(BaseModel):
    clock_in_at: datetime
    clock_out_at: datetime | None
    duration_seconds: int
    is_closed: bool
    clock_in_event_id: int | None
    clock_out_event_id: int | None

    @classmethod
    def from_session(cls, session: WorkSession) -> WorkSessionRead:
        return cls(
            clock_in_at=session.clock_in_at,
            clock_out_at=session.clock_out_at,
            duration_seconds=_seconds(session.duration),
            is_closed=session.is_closed,
            clock_in_event_id=session.clock_in_event_id,
            clock_out_event_id=session.clock_out_event_id,
        )


class DailySummaryRead(BaseModel):
    day: date
    sessions: list[WorkSessionRead]
    worked_seconds: int
    break_bonus_seconds: int
    total_seconds: int
    total_time: str
    session_count: int
    has_open_session: bool
    worked: bool

    @classmethod
    def from_summary(cls, summary: DailySummary) -> DailySummaryRead:
        return cls(
            day=summary.day,
            sessions=[WorkSessionRead.from_session(item) for item in summary.sessions],
            worked_seconds=_seconds(summary.worked_duration),
            break_bonus_seconds=_seconds(summary.break_bonus),
            total_seconds=_seconds(summary.total_duration),
            total_time=format_duration(summary.total_duration),
            session_count=summary.session_count,
            has_open_session=summary.has_open_session,
            worked=summary.worked,
        )


class DailyOvertimeRead(BaseModel):
    day: date
    worked_seconds: int
    expected_seconds: int
    overtime_seconds: int


class WeeklyOvertimeRead(BaseModel):
    week_start: date
    worked_seconds: int
    cap_seconds: int
    overtime_seconds: int
    exceeded: bool


class YearlyOvertimeRead(BaseModel):
    year: int
    overtime_seconds: int
    cap_seconds: int
    exceeded: bool


class OvertimeAssessmentRead(BaseModel):
    start_date: date
    end_date: date
    daily: list[DailyOvertimeRead]
    period_overtime_seconds: int
    period_overtime_hours: float
    weekly: list[WeeklyOvertimeRead]
    yearly: list[YearlyOvertimeRead]
    warning_level: WarningLevel
    is_over_limit: bool

    @classmethod
    def from_assessment(cls, assessment: OvertimeAssessment) -> OvertimeAssessmentRead:
        return cls(
            start_date=assessment.start,
            end_date=assessment.end,
            daily=[
                DailyOvertimeRead(
                    day=item.day,
                    worked_seconds=_seconds(item.worked),
                    expected_seconds=_seconds(item.expected),
                    overtime_seconds=_seconds(item.overtime),
                )
                for item in assessment.daily
            ],
            period_overtime_seconds=_seconds(assessment.period_overtime),
            period_overtime_hours=round(assessment.period_overtime.total_seconds() / 3600, 2),
            weekly=[
                WeeklyOvertimeRead(
                    week_start=item.week_start,
                    worked_seconds=_seconds(item.worked),
                    cap_seconds=_seconds(item.cap),
                    overtime_seconds=_seconds(item.overtime),
                    exceeded=item.exceeded,
                )
                for item in assessment.weekly
            ],
            yearly=[
                YearlyOvertimeRead(
                    year=item.year,
                    overtime_seconds=_seconds(item.overtime),
                    cap_seconds=_seconds(item.cap),
                    exceeded=item.exceeded,
                )
                for item in assessment.yearly
            ],
            warning_level=assessment.warning_level,
            is_over_limit=assessment.is_over_limit,
        )


class SequenceAnomalyRead(BaseModel):
    code: str
    event_id: int | None
    ts_utc: datetime

    @classmethod
    def from_anomaly(cls, anomaly: SequenceAnomaly) -> SequenceAnomalyRead:
        return cls(code=anomaly.code, event_id=anomaly.event_id, ts_utc=anomaly.ts_utc)


class CurrentSessionRead(BaseModel):
    clock_in_at: datetime
    clock_in_event_id: int | None
    elapsed_seconds: int


class TodayStatusRead(BaseModel):
    user_id: int
    day: date
    is_working: bool
    current_session: CurrentSessionRead | None
    summary: DailySummaryRead | None
    last_event: TimeEventRead | None


class WorkerStatusRead(BaseModel):
    user_id: int
    full_name: str
    is_working: bool
    worked_today_seconds: int
    current_session_started_at: datetime | None
    last_event_kind: EventKind | None
    last_event_at: datetime | None
    last_event_location: WorkLocation | None


class CorrectionChanges(BaseModel):
    ts_utc: datetime | None = None
    kind: EventKind | None = None


class CorrectionApplyRequest(BaseModel):
    changes: CorrectionChanges
    reason: str = Field(max_length=1000)


class CorrectionUserRequestCreate(BaseModel):
    changes: CorrectionChanges
    reason: str = Field(max_length=1000)


class CorrectionReviewRequest(BaseModel):
    note: str | None = Field(default=None, max_length=1000)


class CorrectionRead(BaseModel):
    id: int
    event_id: int
    user_id: int
    admin_id: int | None
    origin: CorrectionOrigin
    field_changed: CorrectionField
    previous_value: dict[str, Any]
    new_value: dict[str, Any]
    reason: str
    status: CorrectionStatus
    reviewed_by_id: int | None
    reviewed_at: datetime | None
    review_note: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CorrectionTrailRead(BaseModel):
    event_id: int
    original_value: dict[str, Any]
    corrections: list[CorrectionRead]


class ReportUserRead(BaseModel):
    id: int
    full_name: str
    email: str


class ReportStatisticsRead(BaseModel):
    total_time: str
    total_seconds: int
    days_worked: int
    daily_average: str
    total_hours: float
    overtime_hours: float

    @classmethod
    def from_statistics(cls, statistics: PeriodStatistics) -> ReportStatisticsRead:
        return cls(
            total_time=format_duration(statistics.total_duration),
            total_seconds=_seconds(statistics.total_duration),
            days_worked=statistics.days_worked,
            daily_average=format_duration(statistics.daily_average),
            total_hours=statistics.total_hours,
            overtime_hours=statistics.overtime_hours,
        )


class MonthlyReportSnapshot(BaseModel):
    user: ReportUserRead
    period: str
    start_date: date
    end_date: date
    expected_daily_minutes: int
    expected_friday_minutes: int | None
    statistics: ReportStatisticsRead
    daily_summaries: list[DailySummaryRead]
    overtime: OvertimeAssessmentRead
    anomalies: list[SequenceAnomalyRead]
    events: list[TimeEventRead]


class MonthlyReportGenerateRequest(BaseModel):
    user_id: int = Field(ge=1)
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)


class MonthlyReportContestRequest(BaseModel):
    reason: str = Field(max_length=4000)


class MonthlyReportRead(BaseModel):
    id: int
    user_id: int
    year: int
    month: int
    snapshot: dict[str, Any]
    generated_at: datetime
    generated_by_id: int | None
    viewed_at: datetime | None
    accepted_at: datetime | None
    contested_at: datetime | None
    contest_reason: str | None
    disposition: ReportDisposition
    is_viewed: bool

    model_config = ConfigDict(from_attributes=True)


class CurrentMonthStatusRead(BaseModel):
    year: int
    month: int
    has_report: bool
    needs_review: bool
    report: MonthlyReportRead | None = None


class GenerateMissingReportRead(BaseModel):
    created: bool
    report: MonthlyReportRead | None = None


class AbsenceCreate(BaseModel):
    user_id: int | None = Field(default=None, ge=1)
    day: date
    kind: AbsenceKind
    start_time: time
    end_time: time
    reason: str = Field(max_length=1000)
    comments: str | None = Field(default=None, max_length=4000)
    status: AbsenceStatus | None = None


class AbsenceStatusUpdate(BaseModel):
    status: AbsenceStatus


class AbsenceRead(BaseModel):
    id: int
    user_id: int
    day: date
    kind: AbsenceKind
    start_time: time
    end_time: time
    duration_minutes: int
    reason: str
    comments: str | None
    status: AbsenceStatus
    created_by_id: int | None
    reviewed_by_id: int | None
    reviewed_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EmployeeOverviewRead(BaseModel):
    user_id: int
    full_name: str
    email: str
    expected_daily_minutes: int
    expected_friday_minutes: int | None
    days_off: list[int]
    last_event_at: datetime | None
    period: ReportStatisticsRead
    period_overtime_seconds: int
    warning_level: WarningLevel
    total_corrections: int
    pending_corrections: int
    contested_reports: int
    pending_reports: int
    absences_in_period: int


class EmployeeOverviewResponse(BaseModel):
    start_date: date
    end_date: date
    employees: list[EmployeeOverviewRead]
