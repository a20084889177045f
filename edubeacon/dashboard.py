"""Read-side views for mentor and student dashboards."""

import logging
from datetime import datetime
from typing import List, Optional

import numpy as np
from pydantic import BaseModel

from edubeacon.models import DashboardView, HighRiskAlertItem, MentorAnalytics
from edubeacon.records import StudentRecord, summarize_risk_levels, wellbeing_level
from edubeacon.risk import ALERT_LEVELS, TIER_ORDER
from edubeacon.store import StorageError, StudentStore

logger = logging.getLogger(__name__)


class StudentOverview(BaseModel):
    """A student as listed on the mentor overview."""
    student: StudentRecord
    wellbeing_level: Optional[str] = None
    stale: bool = False


def refresh_view(store: StudentStore, student_id: str, as_of: Optional[datetime] = None) -> DashboardView:
    """
    Recompute a student's analysis for display.

    If the fresh result cannot be saved, the last stored analysis is shown
    instead and marked stale.
    """
    try:
        record = store.recompute(student_id, as_of=as_of)
        stale = False
    except StorageError as e:
        logger.warning("Showing last-known analysis for student %s: %s", student_id, e)
        record = store.get(student_id)
        stale = True

    return DashboardView(
        student_id=record.id,
        analysis=record.risk_analysis.analysis,
        last_calculated=record.risk_analysis.last_calculated,
        stale=stale
    )


def students_overview(
    store: StudentStore,
    organization_id: str,
    mentor_id: str,
    as_of: Optional[datetime] = None
) -> List[StudentOverview]:
    """Rescore every student assigned to a mentor."""
    return [
        student_profile(store, student.id, as_of=as_of)
        for student in store.list_for_mentor(organization_id, mentor_id)
    ]


def mentor_analytics(records: List[StudentRecord]) -> MentorAnalytics:
    """
    Aggregate attendance and risk numbers across a set of students.

    Args:
        records: Students with a stored analysis

    Returns:
        MentorAnalytics with the mean attendance rounded to one decimal
    """
    counts = summarize_risk_levels(records)
    attendance = [r.attendance.percentage for r in records]
    attendance_rate = round(float(np.mean(attendance)), 1) if attendance else 0.0

    return MentorAnalytics(
        total_students=len(records),
        at_risk_students=counts['high'] + counts['critical'],
        attendance_rate=attendance_rate,
        risk_counts=counts
    )


def high_risk_alerts(records: List[StudentRecord]) -> List[HighRiskAlertItem]:
    """Unacknowledged high and critical alerts, most severe first, newest first within a level."""
    items = []
    for record in records:
        for alert in record.unacknowledged_alerts():
            if alert.severity not in ALERT_LEVELS:
                continue
            items.append(HighRiskAlertItem(
                alert=alert,
                student_id=record.id,
                student_name=record.name,
                roll_number=record.roll_number,
                email=record.email
            ))

    items.sort(key=lambda i: i.alert.date, reverse=True)
    items.sort(key=lambda i: TIER_ORDER[i.alert.severity], reverse=True)
    return items


def student_tips(record: Optional[StudentRecord]) -> List[str]:
    """Short study and wellbeing suggestions for the student dashboard."""
    tips = []
    if record is None:
        tips.append('Set achievable goals for the week and review your progress daily.')
    else:
        if record.attendance.percentage < 75:
            tips.append('Try to maintain consistent attendance. Plan commute and set reminders.')
        else:
            tips.append('Great attendance! Keep up the consistency.')

        level = record.overall_risk_level
        if level in ('high', 'critical'):
            tips.append('Reach out to your mentor if you feel overwhelmed.')
        elif level == 'medium':
            tips.append('Create a weekly study plan and stick to short, focused sessions.')
        else:
            tips.append('Challenge yourself with practice problems to stay sharp.')

    tips.append('Take short breaks, stay hydrated, and get enough sleep to improve focus.')
    return tips


def student_profile(store: StudentStore, student_id: str, as_of: Optional[datetime] = None) -> StudentOverview:
    """One student, freshly scored when possible."""
    try:
        record = store.recompute(student_id, as_of=as_of)
        stale = False
    except StorageError as e:
        logger.warning("Profile falling back to stored analysis for %s: %s", student_id, e)
        record = store.get(student_id)
        stale = True
    return StudentOverview(
        student=record,
        wellbeing_level=wellbeing_level(record.wellbeing_responses),
        stale=stale
    )
