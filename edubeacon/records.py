"""Student records and the mutations that feed the risk analyzer."""

import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, List, Literal

from pydantic import BaseModel, Field, field_validator

from edubeacon.models import (
    Alert,
    FeeStatus,
    RiskAnalysisResult,
    StudentIdentity,
    StudentSnapshot,
    as_utc,
    coerce_datetime,
    utcnow,
)
from edubeacon.risk import RECENT_TEST_WINDOW, analyze

logger = logging.getLogger(__name__)

AttendanceStatus = Literal['present', 'absent', 'late']
ATTENDED_STATUSES = ('present', 'late')

# Class count a summary attendance percentage stands for until real marks arrive
BASELINE_CLASSES = 100

# Lower bound of each letter band, highest first
GRADE_BANDS = [
    (97, 'A+'), (93, 'A'), (90, 'A-'),
    (87, 'B+'), (83, 'B'), (80, 'B-'),
    (77, 'C+'), (73, 'C'), (70, 'C-'),
    (67, 'D+'), (63, 'D'), (60, 'D-'),
]


class AttendanceEntry(BaseModel):
    date: datetime
    status: AttendanceStatus
    subject: Optional[str] = None

    @field_validator('date', mode='before')
    @classmethod
    def _date_as_datetime(cls, v):
        return coerce_datetime(v)

    @field_validator('date')
    @classmethod
    def _in_utc(cls, v):
        return as_utc(v) if v is not None else v


class AttendanceData(BaseModel):
    percentage: float = 0.0
    total_classes: int = 0
    attended_classes: int = 0
    history: List[AttendanceEntry] = Field(default_factory=list)


class TestResult(BaseModel):
    """A single test or assignment mark. Percentage and grade are derived when omitted."""
    __test__ = False

    subject: str
    test_name: str
    max_marks: float = Field(ge=0)
    obtained_marks: float = Field(ge=0)
    percentage: Optional[float] = None
    date: datetime = Field(default_factory=utcnow)
    grade: Optional[str] = None

    @field_validator('date', mode='before')
    @classmethod
    def _date_as_datetime(cls, v):
        return coerce_datetime(v)

    @field_validator('date')
    @classmethod
    def _in_utc(cls, v):
        return as_utc(v) if v is not None else v


class SubjectPerformance(BaseModel):
    subject: str
    average_percentage: float = 0.0
    total_tests: int = 0
    last_test_date: Optional[datetime] = None


class AcademicData(BaseModel):
    overall_grade: Optional[str] = None
    gpa: float = 0.0
    test_results: List[TestResult] = Field(default_factory=list)
    subject_performance: List[SubjectPerformance] = Field(default_factory=list)


class FeePayment(BaseModel):
    """A payment and/or a change to the fee terms, as submitted by a mentor."""
    amount: float = Field(default=0.0, ge=0)
    payment_date: Optional[datetime] = None
    payment_method: str = 'cash'
    receipt_number: Optional[str] = None
    description: str = ''
    total_fee_amount: Optional[float] = Field(default=None, ge=0)
    due_date: Optional[datetime] = None

    @field_validator('payment_date', 'due_date', mode='before')
    @classmethod
    def _dates_as_datetime(cls, v):
        return coerce_datetime(v)

    @field_validator('payment_date', 'due_date')
    @classmethod
    def _in_utc(cls, v):
        return as_utc(v) if v is not None else v


class PaymentRecord(BaseModel):
    amount: float
    payment_date: datetime
    payment_method: str
    receipt_number: str
    description: str = ''


class FeeData(BaseModel):
    total_fee_amount: float = 0.0
    paid_amount: float = 0.0
    pending_amount: float = 0.0
    payment_status: FeeStatus = 'pending'
    due_date: Optional[datetime] = None
    payment_history: List[PaymentRecord] = Field(default_factory=list)
    last_payment_date: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @field_validator('due_date', 'last_payment_date', mode='before')
    @classmethod
    def _dates_as_datetime(cls, v):
        return coerce_datetime(v)

    @field_validator('due_date', 'last_payment_date')
    @classmethod
    def _in_utc(cls, v):
        return as_utc(v) if v is not None else v


class WellbeingResponse(BaseModel):
    """Student self-report; each scale runs 1 (worst) to 5 (best)."""
    date: datetime = Field(default_factory=utcnow)
    mood: int = Field(ge=1, le=5)
    stress: int = Field(ge=1, le=5)
    sleep: int = Field(ge=1, le=5)
    notes: str = ''


class ParentsContact(BaseModel):
    name: str = ''
    phone: str = ''
    email: str = ''


class StoredRiskAnalysis(BaseModel):
    """The last analysis persisted on a record, plus every alert raised so far."""
    analysis: Optional[RiskAnalysisResult] = None
    last_calculated: Optional[datetime] = None
    alerts: List[Alert] = Field(default_factory=list)


class StudentRecord(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    organization_id: str
    mentor_id: Optional[str] = None
    name: str
    email: str
    roll_number: Optional[str] = None
    attendance: AttendanceData = Field(default_factory=AttendanceData)
    academic: AcademicData = Field(default_factory=AcademicData)
    fees: FeeData = Field(default_factory=FeeData)
    wellbeing_responses: List[WellbeingResponse] = Field(default_factory=list)
    parents_contact: ParentsContact = Field(default_factory=ParentsContact)
    risk_analysis: StoredRiskAnalysis = Field(default_factory=StoredRiskAnalysis)

    @property
    def identity(self) -> StudentIdentity:
        return StudentIdentity(name=self.name, roll_number=self.roll_number, email=self.email)

    @property
    def overall_risk_level(self) -> Optional[str]:
        analysis = self.risk_analysis.analysis
        return analysis.overall_risk_level if analysis else None

    def unacknowledged_alerts(self) -> List[Alert]:
        return [a for a in self.risk_analysis.alerts if not a.acknowledged]


def letter_grade(percentage: float) -> str:
    """Map a percentage onto a letter grade (F below 60)."""
    for lower, grade in GRADE_BANDS:
        if percentage >= lower:
            return grade
    return 'F'


def record_attendance(
    record: StudentRecord,
    date: datetime,
    status: str,
    subject: Optional[str] = None
) -> AttendanceData:
    """
    Append one class to the attendance history and recompute the percentage.

    Late arrivals count as attended.
    """
    entry = AttendanceEntry(date=date, status=status, subject=subject)
    attendance = record.attendance
    attendance.history.append(entry)
    attendance.total_classes += 1
    if entry.status in ATTENDED_STATUSES:
        attendance.attended_classes += 1
    attendance.percentage = round(attendance.attended_classes / attendance.total_classes * 100.0, 2)
    return attendance


def set_attendance_baseline(record: StudentRecord, percentage: float) -> AttendanceData:
    """
    Seed attendance from a summary percentage.

    The percentage is spread over BASELINE_CLASSES so later marks adjust it
    gradually instead of replacing it.
    """
    attendance = record.attendance
    attendance.percentage = round(percentage, 2)
    attendance.total_classes = BASELINE_CLASSES
    attendance.attended_classes = int(round(percentage * BASELINE_CLASSES / 100.0))
    return attendance


def merge_roster_fields(record: StudentRecord, incoming: StudentRecord) -> StudentRecord:
    """
    Copy the fields a roster carries from ``incoming`` onto ``record``.

    Attendance, test and payment histories, wellbeing surveys and alerts on
    ``record`` are left alone.
    """
    record.name = incoming.name
    record.email = incoming.email
    if incoming.roll_number:
        record.roll_number = incoming.roll_number

    record.attendance.percentage = incoming.attendance.percentage
    record.attendance.total_classes = incoming.attendance.total_classes
    record.attendance.attended_classes = incoming.attendance.attended_classes
    record.academic.gpa = incoming.academic.gpa

    fees, new_fees = record.fees, incoming.fees
    fees.total_fee_amount = new_fees.total_fee_amount
    fees.paid_amount = new_fees.paid_amount
    fees.pending_amount = new_fees.pending_amount
    fees.payment_status = new_fees.payment_status
    fees.due_date = new_fees.due_date
    fees.last_updated = new_fees.last_updated
    return record


def add_test_result(record: StudentRecord, test: TestResult) -> TestResult:
    """
    Store a test result and fold it into the subject's running average.

    Args:
        record: Student to update
        test: Result to add; percentage and grade are filled in if missing

    Returns:
        The stored TestResult
    """
    if test.obtained_marks > test.max_marks:
        raise ValueError(
            f"obtained_marks ({test.obtained_marks}) cannot exceed max_marks ({test.max_marks})"
        )

    updates = {}
    if test.percentage is None:
        pct = test.obtained_marks / test.max_marks * 100.0 if test.max_marks > 0 else 0.0
        updates['percentage'] = round(pct, 2)
    if test.grade is None:
        updates['grade'] = letter_grade(updates.get('percentage', test.percentage))
    stored = test.model_copy(update=updates) if updates else test

    academic = record.academic
    academic.test_results.append(stored)

    perf = next((p for p in academic.subject_performance if p.subject == stored.subject), None)
    if perf is None:
        perf = SubjectPerformance(subject=stored.subject)
        academic.subject_performance.append(perf)
    running_total = perf.average_percentage * perf.total_tests + stored.percentage
    perf.total_tests += 1
    perf.average_percentage = round(running_total / perf.total_tests, 2)
    perf.last_test_date = stored.date

    return stored


def apply_fee_payment(
    record: StudentRecord,
    payment: FeePayment,
    as_of: Optional[datetime] = None
) -> FeeData:
    """
    Apply a payment and/or new fee terms, then settle the payment status.

    Status is paid when nothing is pending, partial when something has been
    paid, overdue when the due date has passed, and pending otherwise.
    """
    as_of = as_utc(as_of) if as_of is not None else utcnow()
    fees = record.fees

    if payment.amount > 0:
        fees.payment_history.append(PaymentRecord(
            amount=payment.amount,
            payment_date=payment.payment_date or as_of,
            payment_method=payment.payment_method or 'cash',
            receipt_number=payment.receipt_number or f"RCP{int(as_of.timestamp() * 1000)}",
            description=payment.description or ''
        ))
        fees.paid_amount += payment.amount
        fees.pending_amount = max(0.0, fees.total_fee_amount - fees.paid_amount)
        fees.last_payment_date = as_of

    if payment.total_fee_amount:
        fees.total_fee_amount = payment.total_fee_amount
        fees.pending_amount = max(0.0, payment.total_fee_amount - fees.paid_amount)

    if payment.due_date:
        fees.due_date = as_utc(payment.due_date)

    if fees.pending_amount <= 0:
        fees.payment_status = 'paid'
    elif fees.paid_amount > 0:
        fees.payment_status = 'partial'
    elif fees.due_date and as_of > as_utc(fees.due_date):
        fees.payment_status = 'overdue'
    else:
        fees.payment_status = 'pending'

    fees.last_updated = as_of
    return fees


def add_wellbeing_response(record: StudentRecord, response: WellbeingResponse) -> None:
    record.wellbeing_responses.append(response)


def wellbeing_level(responses: List[WellbeingResponse]) -> Optional[str]:
    """Level implied by the most recent survey, or None without any survey."""
    if not responses:
        return None
    latest = responses[-1]
    avg = (latest.mood + latest.stress + latest.sleep) / 3
    if avg <= 2:
        return 'high'
    elif avg <= 3:
        return 'medium'
    return 'low'


def build_snapshot(record: StudentRecord) -> StudentSnapshot:
    """Gather the analyzer inputs from a record."""
    recent = [t.percentage for t in record.academic.test_results[-RECENT_TEST_WINDOW:]]
    return StudentSnapshot(
        attendance_percentage=record.attendance.percentage,
        gpa=record.academic.gpa,
        recent_test_percentages=recent,
        fee_payment_status=record.fees.payment_status,
        fee_pending_amount=record.fees.pending_amount,
        fee_due_date=record.fees.due_date,
        existing_unacknowledged_alerts={a.key for a in record.unacknowledged_alerts()}
    )


def apply_analysis(
    record: StudentRecord,
    result: RiskAnalysisResult,
    as_of: Optional[datetime] = None
) -> Optional[Alert]:
    """
    Store an analysis on the record, replacing the previous one.

    A generated alert is given an id and appended to the alert history.

    Returns:
        The stored alert, if one was generated
    """
    stored = record.risk_analysis
    stored.last_calculated = as_of or utcnow()

    if result.generated_alert is None:
        stored.analysis = result
        return None

    alert = result.generated_alert.model_copy(update={'id': uuid.uuid4().hex})
    stored.analysis = result.model_copy(update={'generated_alert': alert})
    stored.alerts.append(alert)
    logger.info("Raised %s alert %s for student %s", alert.severity, alert.id, record.id)
    return alert


def find_alert(record: StudentRecord, alert_id: str) -> Optional[Alert]:
    return next((a for a in record.risk_analysis.alerts if a.id == alert_id), None)


def summarize_risk_levels(records: List[StudentRecord]) -> Dict[str, int]:
    counts = {'low': 0, 'medium': 0, 'high': 0, 'critical': 0}
    for record in records:
        level = record.overall_risk_level
        if level in counts:
            counts[level] += 1
    return counts


def refresh_analysis(record: StudentRecord, as_of: Optional[datetime] = None) -> Optional[Alert]:
    """Score the record as it stands now and store the outcome on it."""
    as_of = as_utc(as_of) if as_of is not None else utcnow()
    result = analyze(build_snapshot(record), as_of=as_of, identity=record.identity)
    return apply_analysis(record, result, as_of)
