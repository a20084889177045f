"""Outreach email drafts for each overall risk level."""

from typing import Dict, Optional, Sequence

from edubeacon.config import settings


def get_advisor_info() -> Dict[str, str]:
    """Get the signing mentor's name and email from settings."""
    return {
        'name': settings.advisor_name,
        'email': settings.advisor_email
    }


def generate_email_draft(
    student_name: str,
    overall_risk_level: str,
    risk_factors: Sequence[str],
    attendance_pct: float,
    gpa: float,
    advisor: Optional[Dict[str, str]] = None
) -> Dict[str, str]:
    """Generate an email draft tailored to the student's overall risk level."""
    advisor = advisor or get_advisor_info()
    attendance_str = f"{attendance_pct:.1f}"
    gpa_str = f"{gpa:.2f}"
    concerns = "\n".join(f"  - {factor}" for factor in risk_factors)

    level = overall_risk_level.lower()
    if level == "low":
        return _low_risk_email(student_name, attendance_str, gpa_str, advisor)
    if level == "medium":
        return _medium_risk_email(student_name, attendance_str, gpa_str, concerns, advisor)
    if level == "high":
        return _high_risk_email(student_name, attendance_str, gpa_str, concerns, advisor)
    return _critical_risk_email(student_name, attendance_str, gpa_str, concerns, advisor)


def _signature(advisor: Dict[str, str]) -> str:
    return f"{advisor['name']}\n{advisor['email']}"


def _low_risk_email(student_name: str, attendance_pct: str, gpa: str, advisor: Dict[str, str]) -> Dict[str, str]:
    subject = f"Great Work, {student_name}, Keep It Up!"
    body = f"""Hi {student_name},

You're doing well this term: your attendance is at {attendance_pct}% and your GPA is {gpa}, and your fee account is in good standing.

Keep up the consistency. If you'd like ideas for stretching yourself further, I'm happy to talk.

{_signature(advisor)}"""
    return {'subject': subject, 'body': body}


def _medium_risk_email(student_name: str, attendance_pct: str, gpa: str, concerns: str, advisor: Dict[str, str]) -> Dict[str, str]:
    subject = f"Checking In, {student_name}"
    body = f"""Hi {student_name},

I wanted to check in on how the term is going. Your attendance is at {attendance_pct}% and your GPA is {gpa}. One area could use some attention:

{concerns}

Small adjustments now make a big difference later. Let me know if there's anything I can help with.

{_signature(advisor)}"""
    return {'subject': subject, 'body': body}


def _high_risk_email(student_name: str, attendance_pct: str, gpa: str, concerns: str, advisor: Dict[str, str]) -> Dict[str, str]:
    subject = f"Let's Talk About Your Progress, {student_name}"
    body = f"""Hi {student_name},

I'm reaching out because a few things in your record suggest you could use some support right now. Your attendance is at {attendance_pct}% and your GPA is {gpa}.

What we're seeing:
{concerns}

Please book a time with me this week so we can put a plan together. Tutoring, flexible fee arrangements and counselling are all available.

{_signature(advisor)}"""
    return {'subject': subject, 'body': body}


def _critical_risk_email(student_name: str, attendance_pct: str, gpa: str, concerns: str, advisor: Dict[str, str]) -> Dict[str, str]:
    subject = f"Urgent: Let's Get You Back on Track, {student_name}"
    body = f"""Hi {student_name},

I need to speak with you as soon as possible. Your attendance is at {attendance_pct}% and your GPA is {gpa}, and several areas need attention at once:

{concerns}

Please contact me or the Student Success Office within the next two days. You're not alone in this, and we'll work through it together.

{_signature(advisor)}"""
    return {'subject': subject, 'body': body}
