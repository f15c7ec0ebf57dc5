import pytest
from datetime import date, datetime

from app.core.exceptions import (
    AccessDeniedError,
    InvalidTransitionError,
    LockedSummaryError,
    NotFoundError,
    ValidationError,
)
from app.core.policy import PolicyBundle
from app.models.attendance_summary import AttendanceSummary, LeaveReconciliationFlag
from app.models.audit_log import AuditLog
from app.models.leave_request import LeaveRequest, LeaveRequestDay, LeaveStatus
from app.schemas.auth import UserRole
from app.services import attendance_service, leave_service, payroll_service
from app.services.leave_service import LeaveDay
from app.services.payroll_service import calculate_attendance_pay

PERIOD_START, PERIOD_END = date(2026, 1, 12), date(2026, 1, 16)
WEEK = [date(2026, 1, d) for d in range(12, 17)]


def _clock(db, org, emp, day, start_hour=9, end_hour=17):
    attendance_service.record_time_entry(
        db, org.id, emp.id, day,
        clock_in=datetime(day.year, day.month, day.day, start_hour),
        clock_out=datetime(day.year, day.month, day.day, end_hour),
    )


def _summary(db, org, emp, policy, days=WEEK):
    for day in days:
        _clock(db, org, emp, day)
    return attendance_service.aggregate(db, org.id, emp.id, PERIOD_START, PERIOD_END, policy)


def _approved_leave(db, org, emp, leave_type, day, day_type="full"):
    req = LeaveRequest(
        organization_id=org.id,
        employee_id=emp.id,
        leave_type_id=leave_type.id,
        start_date=day,
        end_date=day,
        total_days=1.0 if day_type == "full" else 0.5,
        status=LeaveStatus.APPROVED.value,
    )
    req.days = [LeaveRequestDay(organization_id=org.id, date=day, day_type=day_type)]
    db.add(req)
    db.commit()
    return req


@pytest.fixture
def hr_ctx(hr_admin, ctx_for):
    return ctx_for(hr_admin, UserRole.HR_ADMIN)


def _processing_run(db, ctx, employee_ids):
    run = payroll_service.create_payroll_run(db, ctx, "January W3", PERIOD_START, PERIOD_END, employee_ids)
    return payroll_service.process_payroll_run(db, ctx, run.id)


# ---------------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------------

def test_create_run_defaults_to_payable_employees(db_session, employee, hr_admin, make_employee, hr_ctx):
    make_employee("Former Staff", status="terminated")

    run = payroll_service.create_payroll_run(db_session, hr_ctx, "January", PERIOD_START, PERIOD_END)

    assert run.status == "draft"
    assert hr_admin.id in run.employee_ids
    assert employee.id in run.employee_ids
    assert len(run.employee_ids) == 3  # manager, employee, hr admin


def test_create_run_rejects_unknown_employee(db_session, employee, hr_ctx):
    with pytest.raises(NotFoundError):
        payroll_service.create_payroll_run(db_session, hr_ctx, "January", PERIOD_START, PERIOD_END, [employee.id, 999])


def test_complete_from_draft_is_invalid(db_session, employee, hr_ctx, policy):
    run = payroll_service.create_payroll_run(db_session, hr_ctx, "January", PERIOD_START, PERIOD_END, [employee.id])

    with pytest.raises(InvalidTransitionError) as exc:
        payroll_service.complete_payroll_run(db_session, hr_ctx, run.id, policy)
    assert exc.value.status_code == 409

    db_session.refresh(run)
    assert run.status == "draft"


def test_processing_twice_is_invalid(db_session, employee, hr_ctx):
    run = _processing_run(db_session, hr_ctx, [employee.id])
    with pytest.raises(InvalidTransitionError):
        payroll_service.process_payroll_run(db_session, hr_ctx, run.id)


def test_failed_run_locks_nothing(db_session, org, employee, hr_ctx, policy):
    summary = _summary(db_session, org, employee, policy)
    run = _processing_run(db_session, hr_ctx, [employee.id])

    failed = payroll_service.fail_payroll_run(db_session, hr_ctx, run.id)
    assert failed.status == "failed"

    with pytest.raises(InvalidTransitionError):
        payroll_service.complete_payroll_run(db_session, hr_ctx, run.id, policy)

    db_session.refresh(summary)
    assert summary.is_locked is False


# ---------------------------------------------------------------------------
# Reconciliation gate
# ---------------------------------------------------------------------------

def test_completion_locks_consumed_summaries(db_session, org, employee, hr_admin, hr_ctx, policy):
    summary = _summary(db_session, org, employee, policy)
    run = _processing_run(db_session, hr_ctx, [employee.id])

    report = payroll_service.complete_payroll_run(db_session, hr_ctx, run.id, policy)

    assert report.status == "completed"
    assert report.locked == [employee.id]
    assert report.failures == []
    db_session.refresh(summary)
    assert summary.is_locked is True
    assert summary.payroll_run_id == run.id
    assert summary.locked_by == hr_admin.id
    assert summary.locked_at is not None
    assert db_session.query(AuditLog).filter(AuditLog.action == "lock").count() == 1

    frozen = summary.computed_values()
    with pytest.raises(LockedSummaryError):
        attendance_service.aggregate(db_session, org.id, employee.id, PERIOD_START, PERIOD_END, policy)
    db_session.refresh(summary)
    assert summary.computed_values() == frozen


def test_missing_summary_is_a_warning_not_a_failure(db_session, org, employee, teammate, hr_ctx, policy):
    _summary(db_session, org, employee, policy)
    run = _processing_run(db_session, hr_ctx, [employee.id, teammate.id])

    report = payroll_service.complete_payroll_run(db_session, hr_ctx, run.id, policy)

    assert report.locked == [employee.id]
    assert report.failures == []
    assert [w.code for w in report.warnings] == ["MISSING_ATTENDANCE_DATA"]
    assert report.warnings[0].details["employee_id"] == teammate.id
    assert attendance_service.get_summary_for_period(db_session, org.id, teammate.id, PERIOD_START, PERIOD_END) is None


def test_missing_summary_can_be_aggregated_on_completion(db_session, org, employee, teammate, hr_ctx):
    policy = PolicyBundle(aggregate_missing_on_complete=True)
    _summary(db_session, org, employee, policy)
    run = _processing_run(db_session, hr_ctx, [employee.id, teammate.id])

    report = payroll_service.complete_payroll_run(db_session, hr_ctx, run.id, policy)

    assert report.locked == [employee.id, teammate.id]
    assert report.warnings == []
    built = attendance_service.get_summary_for_period(db_session, org.id, teammate.id, PERIOD_START, PERIOD_END)
    assert built.is_locked is True
    assert built.full_day_absents == 5


def test_unpaid_leave_raises_advisory(db_session, org, employee, unpaid_leave, hr_ctx, policy):
    _approved_leave(db_session, org, employee, unpaid_leave, WEEK[3], "first_half")
    _summary(db_session, org, employee, policy)
    run = _processing_run(db_session, hr_ctx, [employee.id])

    report = payroll_service.complete_payroll_run(db_session, hr_ctx, run.id, policy)

    assert report.locked == [employee.id]
    assert [w.code for w in report.warnings] == ["UNPAID_LEAVE"]
    assert report.warnings[0].details["unpaid_leave_days"] == 0.5


def test_second_run_reports_already_locked(db_session, org, employee, hr_ctx, policy):
    summary = _summary(db_session, org, employee, policy)
    first = _processing_run(db_session, hr_ctx, [employee.id])
    payroll_service.complete_payroll_run(db_session, hr_ctx, first.id, policy)

    second = _processing_run(db_session, hr_ctx, [employee.id])
    report = payroll_service.complete_payroll_run(db_session, hr_ctx, second.id, policy)

    assert report.locked == []
    assert report.already_locked == [employee.id]
    db_session.refresh(summary)
    assert summary.payroll_run_id == first.id


def test_one_failing_employee_does_not_block_the_run(monkeypatch, db_session, org, employee, teammate, hr_ctx, policy):
    _summary(db_session, org, employee, policy)
    _summary(db_session, org, teammate, policy)
    run = _processing_run(db_session, hr_ctx, [employee.id, teammate.id])

    original = payroll_service._lock_summary

    def flaky_lock(db, summary, run, actor_id):
        if summary.employee_id == employee.id:
            raise RuntimeError("connection reset")
        return original(db, summary, run, actor_id)

    monkeypatch.setattr(payroll_service, "_lock_summary", flaky_lock)

    report = payroll_service.complete_payroll_run(db_session, hr_ctx, run.id, policy)

    assert report.status == "completed"
    assert report.locked == [teammate.id]
    assert report.failures == [{"employee_id": employee.id, "error": "connection reset"}]

    locked = {
        s.employee_id: s.is_locked
        for s in db_session.query(AttendanceSummary).all()
    }
    assert locked == {employee.id: False, teammate.id: True}


def test_run_attendance_lists_locked_summaries(db_session, org, employee, teammate, hr_ctx, policy):
    _summary(db_session, org, employee, policy)
    _summary(db_session, org, teammate, policy)
    run = _processing_run(db_session, hr_ctx, [employee.id, teammate.id])
    payroll_service.complete_payroll_run(db_session, hr_ctx, run.id, policy)

    summaries = payroll_service.list_run_summaries(db_session, org.id, run.id)
    assert [s.employee_id for s in summaries] == sorted([employee.id, teammate.id])


# ---------------------------------------------------------------------------
# Reconciliation flags
# ---------------------------------------------------------------------------

@pytest.fixture
def open_flag(db_session, org, employee, manager, annual_leave, hr_ctx, policy, ctx_for):
    _summary(db_session, org, employee, policy)
    run = _processing_run(db_session, hr_ctx, [employee.id])
    payroll_service.complete_payroll_run(db_session, hr_ctx, run.id, policy)

    submitted = leave_service.submit_leave_request(
        db_session, ctx_for(employee), annual_leave.id, [LeaveDay(WEEK[2])], policy
    )
    decided = leave_service.decide_leave_request(
        db_session, ctx_for(manager, UserRole.MANAGER), submitted.request.id, "approve", policy
    )
    assert [w.code for w in decided.warnings] == ["STALE_SUMMARY"]
    return db_session.query(LeaveReconciliationFlag).one()


def test_late_approval_after_payroll_is_flagged(db_session, org, open_flag):
    flags = payroll_service.list_reconciliation_flags(db_session, org.id)
    assert [f.id for f in flags] == [open_flag.id]

    summary = db_session.get(AttendanceSummary, open_flag.summary_id)
    assert summary.is_locked is True
    assert summary.paid_leave_days == 0


def test_resolve_flag(db_session, org, open_flag, hr_ctx):
    resolved = payroll_service.resolve_reconciliation_flag(db_session, hr_ctx, open_flag.id, "Adjusted in February run")

    assert resolved.status == "resolved"
    assert resolved.resolution_note == "Adjusted in February run"
    assert payroll_service.list_reconciliation_flags(db_session, org.id) == []
    assert len(payroll_service.list_reconciliation_flags(db_session, org.id, status=None)) == 1

    with pytest.raises(InvalidTransitionError):
        payroll_service.resolve_reconciliation_flag(db_session, hr_ctx, open_flag.id)


def test_only_hr_resolves_flags(db_session, open_flag, manager, ctx_for):
    with pytest.raises(AccessDeniedError):
        payroll_service.resolve_reconciliation_flag(db_session, ctx_for(manager, UserRole.MANAGER), open_flag.id)


# ---------------------------------------------------------------------------
# Pay from attendance
# ---------------------------------------------------------------------------

def test_calculate_attendance_pay():
    pay = calculate_attendance_pay(
        salary=6000, working_days=5, unpaid_leave_days=0.5, overtime_hours=2, hours_per_day=8, overtime_rate=1.5
    )
    assert pay == {"daily_rate": 1200.0, "overtime_pay": 450.0, "deductions": 600.0, "prorated_salary": 5850.0}


def test_calculate_attendance_pay_without_working_days():
    pay = calculate_attendance_pay(6000, 0, 0, 0, 8, 1.5)
    assert pay["daily_rate"] == 0
    assert pay["prorated_salary"] == 6000


@pytest.fixture
def week_with_overtime_and_unpaid_leave(db_session, org, employee, unpaid_leave, policy):
    _approved_leave(db_session, org, employee, unpaid_leave, WEEK[3], "first_half")
    _clock(db_session, org, employee, WEEK[0], 9, 19)
    for day in (WEEK[1], WEEK[2], WEEK[4]):
        _clock(db_session, org, employee, day)
    _clock(db_session, org, employee, WEEK[3], 13, 17)
    return attendance_service.aggregate(db_session, org.id, employee.id, PERIOD_START, PERIOD_END, policy)


def test_pay_from_attendance_summary(db_session, org, employee, policy, week_with_overtime_and_unpaid_leave):
    summary = week_with_overtime_and_unpaid_leave
    assert summary.overtime_hours == 2
    assert summary.unpaid_leave_days == 0.5

    pay = payroll_service.calculate_pay_from_attendance(
        db_session, org.id, employee.id, PERIOD_START, PERIOD_END, policy
    )

    assert pay["base_salary"] == 6000
    assert pay["days_worked"] == 5
    assert pay["days_absent"] == 0
    assert pay["deductions"] == 600
    assert pay["overtime_pay"] == 450
    assert pay["prorated_salary"] == 5850


def test_pay_requires_salary_and_summary(db_session, org, employee, make_employee, policy):
    unpaid = make_employee("Vera Volunteer", salary=0)
    with pytest.raises(ValidationError):
        payroll_service.calculate_pay_from_attendance(db_session, org.id, unpaid.id, PERIOD_START, PERIOD_END, policy)

    with pytest.raises(NotFoundError):
        payroll_service.calculate_pay_from_attendance(db_session, org.id, employee.id, PERIOD_START, PERIOD_END, policy)


# ---------------------------------------------------------------------------
# HTTP surface
# ---------------------------------------------------------------------------

def test_payroll_run_over_http(client, db_session, org, employee, hr_admin, policy, headers_for):
    _summary(db_session, org, employee, policy)
    hr = headers_for(hr_admin, "HR_ADMIN")

    created = client.post("/api/payroll/runs", headers=hr, json={
        "name": "January W3",
        "period_start": "2026-01-12",
        "period_end": "2026-01-16",
        "employee_ids": [employee.id],
    })
    assert created.status_code == 201
    run_id = created.json()["id"]
    assert created.json()["employee_ids"] == [employee.id]

    early = client.post(f"/api/payroll/runs/{run_id}/complete", headers=hr)
    assert early.status_code == 409
    assert early.json()["errors"][0]["code"] == "INVALID_TRANSITION"

    assert client.post(f"/api/payroll/runs/{run_id}/process", headers=hr).json()["status"] == "processing"

    completed = client.post(f"/api/payroll/runs/{run_id}/complete", headers=hr)
    assert completed.status_code == 200
    assert completed.json()["locked"] == [employee.id]

    attendance = client.get(f"/api/payroll/runs/{run_id}/attendance", headers=hr)
    assert attendance.json()[0]["is_locked"] is True

    recompute = client.post("/api/attendance/summaries/aggregate", headers=hr, json={
        "employee_id": employee.id, "period_start": "2026-01-12", "period_end": "2026-01-16",
    })
    assert recompute.status_code == 423


def test_attendance_pay_over_http(client, employee, hr_admin, headers_for, week_with_overtime_and_unpaid_leave):
    response = client.get(
        f"/api/payroll/attendance-pay/{employee.id}",
        params={"period_start": "2026-01-12", "period_end": "2026-01-16"},
        headers=headers_for(hr_admin, "HR_MANAGER"),
    )
    assert response.status_code == 200
    assert response.json()["prorated_salary"] == 5850


def test_payroll_is_hr_only(client, employee, headers_for):
    response = client.post("/api/payroll/runs", headers=headers_for(employee), json={
        "name": "Sneaky", "period_start": "2026-01-12", "period_end": "2026-01-16",
    })
    assert response.status_code == 403
