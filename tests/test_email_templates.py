"""Tests for outreach email drafts and settings."""

from edubeacon.config import Settings
from edubeacon.email_templates import generate_email_draft, get_advisor_info

ADVISOR = {'name': 'Jordan Reyes', 'email': 'jordan.reyes@college.edu'}


def test_draft_per_level():
    subjects = {
        level: generate_email_draft('Bob Smith', level, [], 65.0, 2.1, advisor=ADVISOR)['subject']
        for level in ('low', 'medium', 'high', 'critical')
    }
    assert subjects['low'].startswith('Great Work')
    assert subjects['medium'].startswith('Checking In')
    assert subjects['high'].startswith("Let's Talk")
    assert subjects['critical'].startswith('Urgent')
    assert all('Bob Smith' in s for s in subjects.values())


def test_draft_lists_factors_and_numbers():
    draft = generate_email_draft(
        'David Wilson',
        'critical',
        ['Critical attendance below 60%', 'Overdue fee payments'],
        55.0,
        1.8,
        advisor=ADVISOR
    )
    body = draft['body']
    assert '  - Critical attendance below 60%' in body
    assert '  - Overdue fee payments' in body
    assert '55.0%' in body
    assert '1.80' in body
    assert body.endswith('Jordan Reyes\njordan.reyes@college.edu')


def test_level_is_case_insensitive():
    draft = generate_email_draft('Carol Davis', 'LOW', [], 95.0, 3.8, advisor=ADVISOR)
    assert draft['subject'].startswith('Great Work')


def test_advisor_from_settings(monkeypatch):
    monkeypatch.setattr('edubeacon.email_templates.settings', Settings(advisor_name='Sam Lee'))
    assert get_advisor_info()['name'] == 'Sam Lee'


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv('ALLOW_ORIGINS', 'http://a.test, http://b.test')
    monkeypatch.setenv('DEBUG', 'yes')
    monkeypatch.setenv('MAX_UPLOAD_SIZE_MB', '2')
    monkeypatch.setenv('STORE_RETRY_ATTEMPTS', '5')

    s = Settings()
    assert s.allow_origins == ['http://a.test', 'http://b.test']
    assert s.debug is True
    assert s.max_upload_size == 2 * 1024 * 1024
    assert s.store_retry_attempts == 5
