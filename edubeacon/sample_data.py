"""Demo students for seeding a development store."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from edubeacon.records import (
    AcademicData,
    AttendanceData,
    AttendanceEntry,
    FeeData,
    PaymentRecord,
    StudentRecord,
    TestResult,
    add_test_result,
    refresh_analysis,
)
from edubeacon.store import StudentStore

logger = logging.getLogger(__name__)

SUBJECTS = ['Mathematics', 'Physics', 'Chemistry', 'Computer Science', 'English']
TESTS = [
    ('Mathematics', 'Mid-term Exam', 100, '2024-01-10'),
    ('Physics', 'Quiz 1', 50, '2024-01-12'),
    ('Chemistry', 'Lab Test', 75, '2024-01-14'),
    ('Computer Science', 'Programming Assignment', 100, '2024-01-16'),
]

# name, email, roll number, attendance %, week of statuses, gpa, overall grade,
# test percentages, (total, paid, status, due date)
SAMPLE_STUDENTS = [
    ('Alice Johnson', 'alice.johnson@student.edu', 'CS2023001', 85,
     ['present', 'present', 'absent', 'late', 'present'], 3.2, 'B+',
     [78, 84, 77, 92], (50000, 30000, 'partial', '2024-03-31')),
    ('Bob Smith', 'bob.smith@student.edu', 'CS2023002', 65,
     ['absent', 'present', 'absent', 'late', 'absent'], 2.1, 'C',
     [45, 56, 51, 62], (50000, 0, 'overdue', '2024-01-31')),
    ('Carol Davis', 'carol.davis@student.edu', 'CS2023003', 95,
     ['present', 'present', 'present', 'present', 'late'], 3.8, 'A',
     [95, 96, 93, 98], (50000, 50000, 'paid', '2024-03-31')),
    ('David Wilson', 'david.wilson@student.edu', 'CS2023004', 55,
     ['absent', 'absent', 'present', 'absent', 'late'], 1.8, 'D+',
     [35, 44, 40, 48], (50000, 10000, 'overdue', '2024-01-15')),
]


def _date(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def build_sample_students(organization_id: str, mentor_id: Optional[str] = None) -> List[StudentRecord]:
    """The four demo students, with histories but no analysis yet."""
    students = []
    for name, email, roll, attendance_pct, week, gpa, grade, tests, fees in SAMPLE_STUDENTS:
        total, paid, status, due = fees
        record = StudentRecord(
            organization_id=organization_id,
            mentor_id=mentor_id,
            name=name,
            email=email,
            roll_number=roll,
            attendance=AttendanceData(
                percentage=attendance_pct,
                total_classes=100,
                attended_classes=attendance_pct,
                history=[
                    AttendanceEntry(date=_date(f'2024-01-{15 + i}'), status=status, subject=subject)
                    for i, (status, subject) in enumerate(zip(week, SUBJECTS))
                ]
            ),
            academic=AcademicData(overall_grade=grade, gpa=gpa),
            fees=FeeData(
                total_fee_amount=total,
                paid_amount=paid,
                pending_amount=total - paid,
                payment_status=status,
                due_date=_date(due),
                payment_history=[
                    PaymentRecord(
                        amount=paid,
                        payment_date=_date('2024-01-01'),
                        payment_method='online',
                        receipt_number=f'RCP{roll[-3:]}'
                    )
                ] if paid else [],
                last_payment_date=_date('2024-01-01') if paid else None
            )
        )
        for (subject, test_name, max_marks, when), pct in zip(TESTS, tests):
            add_test_result(record, TestResult(
                subject=subject,
                test_name=test_name,
                max_marks=max_marks,
                obtained_marks=round(max_marks * pct / 100.0, 2),
                percentage=pct,
                date=_date(when)
            ))
        students.append(record)
    return students


def seed_store(
    store: StudentStore,
    organization_id: str,
    mentor_id: Optional[str] = None,
    as_of: Optional[datetime] = None
) -> List[StudentRecord]:
    """Insert the demo students, scored as of ``as_of``."""
    students = build_sample_students(organization_id, mentor_id)
    for record in students:
        alert = refresh_analysis(record, as_of)
        store.upsert(record)
        logger.info(
            "Seeded %s (%s) with risk level %s%s",
            record.name, record.roll_number, record.overall_risk_level,
            f", raised {alert.severity} alert" if alert else ""
        )
    return students
