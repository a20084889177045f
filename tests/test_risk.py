"""Unit tests for risk scoring module."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from edubeacon.models import ALERT_TYPE, StudentIdentity, StudentSnapshot
from edubeacon.risk import (
    TIER_ORDER,
    aggregate_overall,
    analyze,
    assess_academics,
    assess_attendance,
    assess_finances,
    generate_alert,
    recent_average,
)

AS_OF = datetime(2024, 1, 20, tzinfo=timezone.utc)


def snapshot(**overrides):
    fields = dict(
        attendance_percentage=95,
        gpa=3.8,
        recent_test_percentages=[95, 96, 93, 98],
        fee_payment_status='paid',
        fee_pending_amount=0,
    )
    fields.update(overrides)
    return StudentSnapshot(**fields)


def test_recent_average():
    """Only the last three tests count."""
    assert recent_average([78, 84, 77, 92]) == pytest.approx(84.333, abs=1e-3)
    assert recent_average([35, 44, 40, 48]) == pytest.approx(44.0)
    assert recent_average([60]) == 60.0
    assert recent_average([]) == 0.0


def test_assess_attendance_boundaries():
    assert assess_attendance(59.9) == ('high', "Critical attendance below 60%")
    assert assess_attendance(60.0) == ('medium', "Low attendance below 75%")
    assert assess_attendance(74.9) == ('medium', "Low attendance below 75%")
    assert assess_attendance(75.0) == ('low', None)


def test_assess_academics_single_weak_signal():
    """Either a low GPA or a low recent average is enough on its own."""
    assert assess_academics(1.9, [90, 90, 90])[0] == 'high'
    assert assess_academics(3.9, [40, 45, 50])[0] == 'high'
    assert assess_academics(2.4, [90, 90, 90])[0] == 'medium'
    assert assess_academics(3.9, [60, 60, 60])[0] == 'medium'
    assert assess_academics(2.5, [65, 65, 65]) == ('low', None)


def test_assess_academics_no_tests_is_high():
    assert assess_academics(3.9, [])[0] == 'high'


def test_assess_finances():
    due = datetime(2024, 1, 15, tzinfo=timezone.utc)

    assert assess_finances('overdue', 0, None, AS_OF) == ('high', "Overdue fee payments")
    assert assess_finances('pending', 100, due, AS_OF) == ('high', "Overdue fee payments")
    assert assess_finances('partial', 100, None, AS_OF) == ('medium', "Pending fee payments")
    assert assess_finances('pending', 100, None, AS_OF) == ('medium', "Pending fee payments")
    assert assess_finances('partial', 0, None, AS_OF) == ('medium', "Pending fee payments")
    # Past due date with nothing outstanding
    assert assess_finances('pending', 0, due, AS_OF) == ('low', None)
    assert assess_finances('paid', 0, due, AS_OF) == ('low', None)


def test_aggregate_overall():
    assert aggregate_overall(['high', 'high', 'low']) == ('critical', "Multiple high-risk factors detected")
    assert aggregate_overall(['high', 'high', 'high']) == ('critical', "Multiple high-risk factors detected")
    assert aggregate_overall(['high', 'medium', 'medium']) == ('high', None)
    assert aggregate_overall(['low', 'low', 'high']) == ('high', None)
    assert aggregate_overall(['low', 'low', 'medium']) == ('medium', None)
    assert aggregate_overall(['low', 'low', 'low']) == ('low', None)


def test_two_mediums_escalate_to_high_not_critical():
    result = analyze(snapshot(
        attendance_percentage=70,
        fee_payment_status='partial',
        fee_pending_amount=500
    ), as_of=AS_OF)

    assert (result.attendance_risk, result.academic_risk, result.financial_risk) == ('medium', 'low', 'medium')
    assert result.overall_risk_level == 'high'
    assert "Multiple high-risk factors detected" not in result.risk_factors


def test_scenario_partial_fees_only():
    result = analyze(snapshot(
        attendance_percentage=85,
        gpa=3.2,
        recent_test_percentages=[78, 84, 77, 92],
        fee_payment_status='partial',
        fee_pending_amount=20000,
        fee_due_date=datetime(2024, 3, 31, tzinfo=timezone.utc)
    ), as_of=AS_OF)

    assert result.attendance_risk == 'low'
    assert result.academic_risk == 'low'
    assert result.financial_risk == 'medium'
    assert result.overall_risk_level == 'medium'
    assert result.risk_factors == ("Pending fee payments",)


def test_scenario_one_high_two_medium():
    result = analyze(snapshot(
        attendance_percentage=65,
        gpa=2.1,
        recent_test_percentages=[45, 56, 51, 62],
        fee_payment_status='overdue',
        fee_pending_amount=50000
    ), as_of=AS_OF)

    assert result.attendance_risk == 'medium'
    assert result.academic_risk == 'medium'
    assert result.financial_risk == 'high'
    assert result.overall_risk_level == 'high'
    assert result.risk_factors == (
        "Low attendance below 75%",
        "Declining academic performance",
        "Overdue fee payments",
    )


def test_scenario_all_high_is_critical():
    result = analyze(snapshot(
        attendance_percentage=55,
        gpa=1.8,
        recent_test_percentages=[35, 44, 40, 48],
        fee_payment_status='overdue',
        fee_pending_amount=40000
    ), as_of=AS_OF)

    assert (result.attendance_risk, result.academic_risk, result.financial_risk) == ('high', 'high', 'high')
    assert result.overall_risk_level == 'critical'
    assert result.risk_factors == (
        "Critical attendance below 60%",
        "Poor academic performance (GPA < 2.0 or recent tests < 50%)",
        "Overdue fee payments",
        "Multiple high-risk factors detected",
    )


def test_scenario_all_low_raises_no_alert():
    identity = StudentIdentity(name='Carol Davis', roll_number='CS2023003')
    result = analyze(snapshot(), as_of=AS_OF, identity=identity)

    assert result.overall_risk_level == 'low'
    assert result.risk_factors == ()
    assert result.generated_alert is None
    assert generate_alert(result, identity, set()) is None


def test_analyze_is_deterministic():
    s = snapshot(attendance_percentage=55, gpa=1.8, fee_payment_status='overdue', fee_pending_amount=10)
    identity = StudentIdentity(name='David Wilson', email='david.wilson@student.edu')

    first = analyze(s, as_of=AS_OF, identity=identity)
    for _ in range(5):
        assert analyze(s, as_of=AS_OF, identity=identity) == first
    assert analyze(s, as_of=AS_OF).risk_factors == first.risk_factors


def test_attendance_risk_is_monotonic():
    """Lower attendance never lowers the attendance tier."""
    previous = TIER_ORDER['low']
    for pct in range(100, -1, -1):
        tier = TIER_ORDER[analyze(snapshot(attendance_percentage=pct), as_of=AS_OF).attendance_risk]
        assert tier >= previous
        previous = tier


def test_missing_numbers_default_to_zero():
    s = StudentSnapshot(attendance_percentage=None, gpa=None, recent_test_percentages=None,
                        fee_payment_status='paid')
    assert s.attendance_percentage == 0.0
    assert s.gpa == 0.0
    assert s.recent_test_percentages == ()

    result = analyze(s, as_of=AS_OF)
    assert result.attendance_risk == 'high'
    assert result.academic_risk == 'high'
    assert result.overall_risk_level == 'critical'


def test_out_of_range_numbers_are_clamped():
    s = StudentSnapshot(attendance_percentage=140, gpa=5.2, recent_test_percentages=[120, -5],
                        fee_payment_status='paid', fee_pending_amount=-30)
    assert s.attendance_percentage == 100.0
    assert s.gpa == 4.0
    assert s.recent_test_percentages == (100.0, 0.0)
    assert s.fee_pending_amount == 0.0


def test_invalid_fee_status_rejected():
    with pytest.raises(ValidationError):
        StudentSnapshot(fee_payment_status='waived')


def test_identity_requires_roll_number_or_email():
    with pytest.raises(ValidationError):
        StudentIdentity(name='Nobody')
    assert StudentIdentity(name='A', email='a@x.edu').label == 'a@x.edu'
    assert StudentIdentity(name='A', roll_number='R1', email='a@x.edu').label == 'R1'


def test_generate_alert_message_and_dedup():
    identity = StudentIdentity(name='Bob Smith', roll_number='CS2023002', email='bob.smith@student.edu')
    result = analyze(snapshot(
        attendance_percentage=65,
        gpa=2.1,
        recent_test_percentages=[45, 56, 51],
        fee_payment_status='overdue',
        fee_pending_amount=50000
    ), as_of=AS_OF)

    alert = generate_alert(result, identity, set(), as_of=AS_OF)
    assert alert is not None
    assert alert.type == ALERT_TYPE
    assert alert.severity == 'high'
    assert alert.acknowledged is False
    assert alert.message == (
        "Student Bob Smith (CS2023002) requires immediate attention: "
        "Low attendance below 75%, Declining academic performance, Overdue fee payments"
    )

    # Same level, first alert still unacknowledged
    assert generate_alert(result, identity, {alert.key}) is None
    # A different severity is a different key
    assert generate_alert(result, identity, {(ALERT_TYPE, 'critical')}) is not None


def test_medium_result_never_alerts():
    identity = StudentIdentity(name='Alice Johnson', roll_number='CS2023001')
    result = analyze(snapshot(fee_payment_status='partial', fee_pending_amount=1), as_of=AS_OF)
    assert result.overall_risk_level == 'medium'
    assert generate_alert(result, identity, set()) is None


def test_dedup_ignores_message_content():
    """Two students at the same level get their own messages; the key is only (type, severity)."""
    first = analyze(snapshot(attendance_percentage=50), as_of=AS_OF)
    second = analyze(snapshot(fee_payment_status='overdue', fee_pending_amount=10), as_of=AS_OF)
    assert first.overall_risk_level == second.overall_risk_level == 'high'
    assert first.risk_factors != second.risk_factors

    a = generate_alert(first, StudentIdentity(name='Ann', roll_number='R1'), set())
    b = generate_alert(second, StudentIdentity(name='Ben', roll_number='R2'), set())
    assert a.message != b.message
    assert a.key == b.key

    assert generate_alert(second, StudentIdentity(name='Ben', roll_number='R2'), {a.key}) is None


def test_analyze_attaches_alert_when_identity_given():
    identity = StudentIdentity(name='David Wilson', roll_number='CS2023004')
    s = snapshot(attendance_percentage=55, gpa=1.8, fee_payment_status='overdue', fee_pending_amount=1)

    result = analyze(s, as_of=AS_OF, identity=identity)
    assert result.generated_alert is not None
    assert result.generated_alert.severity == 'critical'
    assert result.generated_alert.date == AS_OF

    suppressed = analyze(
        s.model_copy(update={'existing_unacknowledged_alerts': frozenset({(ALERT_TYPE, 'critical')})}),
        as_of=AS_OF,
        identity=identity
    )
    assert suppressed.generated_alert is None
    assert suppressed.overall_risk_level == 'critical'


def test_naive_due_date_treated_as_utc():
    s = snapshot(fee_payment_status='pending', fee_pending_amount=10, fee_due_date='2024-01-10')
    assert s.fee_due_date.tzinfo is not None
    assert analyze(s, as_of=AS_OF).financial_risk == 'high'
