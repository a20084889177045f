"""Risk scoring logic: fixed threshold rules over a student snapshot."""

import logging
from datetime import datetime
from typing import Tuple, Optional, List, Iterable, Sequence

from edubeacon.models import (
    ALERT_TYPE,
    Alert,
    AlertKey,
    RiskAnalysisResult,
    StudentIdentity,
    StudentSnapshot,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

RECENT_TEST_WINDOW = 3

FACTOR_CRITICAL_ATTENDANCE = "Critical attendance below 60%"
FACTOR_LOW_ATTENDANCE = "Low attendance below 75%"
FACTOR_POOR_ACADEMICS = "Poor academic performance (GPA < 2.0 or recent tests < 50%)"
FACTOR_DECLINING_ACADEMICS = "Declining academic performance"
FACTOR_OVERDUE_FEES = "Overdue fee payments"
FACTOR_PENDING_FEES = "Pending fee payments"
FACTOR_MULTIPLE_HIGH = "Multiple high-risk factors detected"

TIER_ORDER = {'low': 0, 'medium': 1, 'high': 2, 'critical': 3}
ALERT_LEVELS = ('high', 'critical')


def recent_average(test_percentages: Sequence[float]) -> float:
    """
    Mean of the most recent tests.

    Args:
        test_percentages: Test scores in chronological order

    Returns:
        Average of the last three entries, or 0.0 when there are none
    """
    recent = list(test_percentages)[-RECENT_TEST_WINDOW:]
    if not recent:
        return 0.0
    return sum(recent) / len(recent)


def assess_attendance(attendance_pct: float) -> Tuple[str, Optional[str]]:
    """Attendance tier and the factor it contributes, if any."""
    if attendance_pct < 60:
        return 'high', FACTOR_CRITICAL_ATTENDANCE
    elif attendance_pct < 75:
        return 'medium', FACTOR_LOW_ATTENDANCE
    return 'low', None


def assess_academics(gpa: float, test_percentages: Sequence[float]) -> Tuple[str, Optional[str]]:
    """
    Academic tier from GPA and recent tests.

    Either signal on its own is enough to reach a tier.
    """
    average = recent_average(test_percentages)
    if gpa < 2.0 or average < 50:
        return 'high', FACTOR_POOR_ACADEMICS
    elif gpa < 2.5 or average < 65:
        return 'medium', FACTOR_DECLINING_ACADEMICS
    return 'low', None


def assess_finances(
    payment_status: str,
    pending_amount: float,
    due_date: Optional[datetime],
    as_of: datetime
) -> Tuple[str, Optional[str]]:
    """Financial tier from fee status, outstanding balance and due date."""
    past_due = due_date is not None and as_of > due_date and pending_amount > 0
    if payment_status == 'overdue' or past_due:
        return 'high', FACTOR_OVERDUE_FEES
    elif payment_status == 'partial' or pending_amount > 0:
        return 'medium', FACTOR_PENDING_FEES
    return 'low', None


def aggregate_overall(tiers: Iterable[str]) -> Tuple[str, Optional[str]]:
    """
    Combine the per-factor tiers into an overall level.

    Two medium tiers escalate to high, never to critical; only two or more
    high tiers reach critical.
    """
    tiers = list(tiers)
    high_count = tiers.count('high')
    medium_count = tiers.count('medium')

    if high_count >= 2:
        return 'critical', FACTOR_MULTIPLE_HIGH
    elif high_count >= 1:
        return 'high', None
    elif medium_count >= 2:
        return 'high', None
    elif medium_count >= 1:
        return 'medium', None
    return 'low', None


def analyze(
    snapshot: StudentSnapshot,
    as_of: Optional[datetime] = None,
    identity: Optional[StudentIdentity] = None
) -> RiskAnalysisResult:
    """
    Compute the three-factor risk breakdown for a student.

    Factors are evaluated attendance, academic, financial, then aggregate, and
    appear in that order in ``risk_factors``. Nothing is persisted here.

    Args:
        snapshot: Student data to score
        as_of: Reference time for due-date checks (defaults to now, UTC)
        identity: When given, a deduplicated alert is attached for high and
            critical results

    Returns:
        RiskAnalysisResult
    """
    as_of = as_utc(as_of) if as_of is not None else utcnow()
    factors: List[str] = []

    attendance_risk, factor = assess_attendance(snapshot.attendance_percentage)
    if factor:
        factors.append(factor)

    academic_risk, factor = assess_academics(snapshot.gpa, snapshot.recent_test_percentages)
    if factor:
        factors.append(factor)

    financial_risk, factor = assess_finances(
        snapshot.fee_payment_status,
        snapshot.fee_pending_amount,
        snapshot.fee_due_date,
        as_of
    )
    if factor:
        factors.append(factor)

    overall, factor = aggregate_overall([attendance_risk, academic_risk, financial_risk])
    if factor:
        factors.append(factor)

    result = RiskAnalysisResult(
        attendance_risk=attendance_risk,
        academic_risk=academic_risk,
        financial_risk=financial_risk,
        overall_risk_level=overall,
        risk_factors=tuple(factors)
    )

    if identity is not None:
        alert = generate_alert(result, identity, snapshot.existing_unacknowledged_alerts, as_of=as_of)
        if alert is not None:
            result = result.model_copy(update={'generated_alert': alert})

    return result


def generate_alert(
    result: RiskAnalysisResult,
    identity: StudentIdentity,
    existing_unacknowledged_alerts: Iterable[AlertKey] = (),
    as_of: Optional[datetime] = None
) -> Optional[Alert]:
    """
    Build a multi-factor alert for a high or critical result.

    An alert is suppressed while an unacknowledged one with the same
    ``(type, severity)`` exists for the student; the message plays no part in
    that check.

    Returns:
        New unacknowledged Alert, or None
    """
    severity = result.overall_risk_level
    if severity not in ALERT_LEVELS:
        return None

    key = (ALERT_TYPE, severity)
    if key in set(existing_unacknowledged_alerts):
        logger.debug("Suppressed %s alert for %s: unacknowledged alert exists", severity, identity.label)
        return None

    message = (
        f"Student {identity.name} ({identity.label}) requires immediate attention: "
        + ", ".join(result.risk_factors)
    )
    return Alert(
        type=ALERT_TYPE,
        severity=severity,
        message=message,
        date=as_of if as_of is not None else utcnow()
    )
