"""Data models for the EduBeacon risk service."""

import math
from datetime import date, datetime, time, timezone
from typing import Optional, Dict, List, Tuple, FrozenSet, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


RiskTier = Literal['low', 'medium', 'high']
OverallRiskLevel = Literal['low', 'medium', 'high', 'critical']
FeeStatus = Literal['paid', 'partial', 'pending', 'overdue']

ALERT_TYPE = 'multi-factor'

# (type, severity)
AlertKey = Tuple[str, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def coerce_datetime(value):
    """Promote a bare date to midnight of that day; leave anything else to pydantic."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    return value


def safe_number(value, lower: float, upper: Optional[float] = None) -> float:
    """
    Coerce a loosely-typed numeric field into range.

    None, NaN, infinities and unparseable values become ``lower``; anything
    else is clamped into ``[lower, upper]``.
    """
    if value is None:
        return lower
    try:
        val = float(value)
    except (ValueError, TypeError):
        return lower
    if math.isnan(val) or math.isinf(val):
        return lower
    if upper is not None:
        val = min(val, upper)
    return max(val, lower)


class StudentSnapshot(BaseModel):
    """Read-only bundle of a student's attendance, academic and fee data."""
    model_config = ConfigDict(frozen=True)

    attendance_percentage: float = 0.0
    gpa: float = 0.0
    recent_test_percentages: Tuple[float, ...] = ()
    fee_payment_status: FeeStatus = 'pending'
    fee_pending_amount: float = 0.0
    fee_due_date: Optional[datetime] = None
    existing_unacknowledged_alerts: FrozenSet[Tuple[str, str]] = frozenset()

    @field_validator('attendance_percentage', mode='before')
    @classmethod
    def _clamp_attendance(cls, v):
        return safe_number(v, 0.0, 100.0)

    @field_validator('gpa', mode='before')
    @classmethod
    def _clamp_gpa(cls, v):
        return safe_number(v, 0.0, 4.0)

    @field_validator('fee_pending_amount', mode='before')
    @classmethod
    def _clamp_pending(cls, v):
        return safe_number(v, 0.0)

    @field_validator('recent_test_percentages', mode='before')
    @classmethod
    def _clamp_tests(cls, v):
        if v is None:
            return ()
        return tuple(safe_number(score, 0.0, 100.0) for score in v)

    @field_validator('fee_due_date', mode='before')
    @classmethod
    def _due_date_as_datetime(cls, v):
        return coerce_datetime(v)

    @field_validator('fee_due_date')
    @classmethod
    def _due_date_utc(cls, v):
        return as_utc(v) if v is not None else None

    @field_validator('existing_unacknowledged_alerts', mode='before')
    @classmethod
    def _alert_keys(cls, v):
        if v is None:
            return frozenset()
        return frozenset(tuple(key) for key in v)


class StudentIdentity(BaseModel):
    """Who an alert is about. Needs a name plus a roll number or an email."""
    name: str = Field(min_length=1)
    roll_number: Optional[str] = None
    email: Optional[str] = None

    @model_validator(mode='after')
    def _require_contact(self):
        if not (self.roll_number or self.email):
            raise ValueError('either roll_number or email is required to identify a student')
        return self

    @property
    def label(self) -> str:
        return self.roll_number or self.email


class Alert(BaseModel):
    """A mentor-facing notification raised by the risk analyzer."""
    id: Optional[str] = None
    type: str = ALERT_TYPE
    severity: OverallRiskLevel
    message: str
    date: datetime = Field(default_factory=utcnow)
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_date: Optional[datetime] = None

    @property
    def key(self) -> AlertKey:
        return (self.type, self.severity)


class RiskAnalysisResult(BaseModel):
    """Outcome of one analysis run. Replaces any previously stored analysis."""
    model_config = ConfigDict(frozen=True)

    attendance_risk: RiskTier
    academic_risk: RiskTier
    financial_risk: RiskTier
    overall_risk_level: OverallRiskLevel
    risk_factors: Tuple[str, ...] = ()
    generated_alert: Optional[Alert] = None


class DashboardView(BaseModel):
    """Analysis as shown on a dashboard, flagged when it could not be refreshed."""
    student_id: str
    analysis: Optional[RiskAnalysisResult] = None
    last_calculated: Optional[datetime] = None
    stale: bool = False


class MentorAnalytics(BaseModel):
    """Aggregate numbers for a mentor's assigned students."""
    total_students: int
    at_risk_students: int
    attendance_rate: float
    risk_counts: Dict[str, int]


class HighRiskAlertItem(BaseModel):
    """Unacknowledged alert joined with the student it belongs to."""
    alert: Alert
    student_id: str
    student_name: str
    roll_number: Optional[str] = None
    email: Optional[str] = None


class AcknowledgeResponse(BaseModel):
    message: str
    alert: Alert


class TipsResponse(BaseModel):
    tips: List[str]


class ImportResponse(BaseModel):
    """Response from roster import endpoint."""
    success: bool
    message: str
    imported: int
    summary: Dict[str, int]


class EmailDraftResponse(BaseModel):
    """Email draft response."""
    subject: str
    body: str
