"""Shared fixtures for the EduBeacon tests."""

from datetime import datetime, timezone

import pytest

from edubeacon.records import StudentRecord
from edubeacon.sample_data import build_sample_students
from edubeacon.store import StudentStore

ORG = 'org-1'
MENTOR = 'mentor-1'

# Before any sample due date has passed
AS_OF = datetime(2024, 1, 20, tzinfo=timezone.utc)


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def store():
    return StudentStore(retry_attempts=3, retry_backoff_seconds=0)


@pytest.fixture
def sample_students():
    """Alice, Bob, Carol and David, unscored."""
    return {s.name.split()[0].lower(): s for s in build_sample_students(ORG, MENTOR)}


@pytest.fixture
def blank_student():
    return StudentRecord(
        organization_id=ORG,
        mentor_id=MENTOR,
        name='Erin Blake',
        email='erin.blake@student.edu',
        roll_number='CS2023005'
    )
