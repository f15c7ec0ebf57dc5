import pytest
from datetime import date

from app.core.exceptions import NotFoundError
from app.core.policy import BalancePeriod
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.services.leave_balance import calculate_balance, compute_balance, list_balances

FY_2026 = BalancePeriod(start=date(2026, 1, 1), end=date(2026, 12, 31))


def _add_request(db, org, emp, leave_type, start, end, total, status):
    req = LeaveRequest(
        organization_id=org.id,
        employee_id=emp.id,
        leave_type_id=leave_type.id,
        start_date=start,
        end_date=end,
        total_days=total,
        status=status,
    )
    db.add(req)
    db.commit()
    return req


def test_calculate_balance_is_pure_arithmetic():
    used, pending, remaining = calculate_balance(20, [("approved", 5), ("pending", 3), ("rejected", 4)])
    assert (used, pending, remaining) == (5, 3, 12)


def test_balance_counts_approved_and_pending(db_session, org, employee, annual_leave):
    """Annual leave of 20 days, 5 approved and 3 pending leaves 12 remaining."""
    _add_request(db_session, org, employee, annual_leave, date(2026, 3, 2), date(2026, 3, 6), 5.0, LeaveStatus.APPROVED.value)
    _add_request(db_session, org, employee, annual_leave, date(2026, 4, 6), date(2026, 4, 8), 3.0, LeaveStatus.PENDING.value)

    balance = compute_balance(db_session, employee.id, annual_leave.id, FY_2026)

    assert balance.allocated == 20
    assert balance.used == 5
    assert balance.pending == 3
    assert balance.remaining == 12
    assert not balance.overdrawn


def test_balance_without_requests_equals_allocation(db_session, employee, annual_leave):
    balance = compute_balance(db_session, employee.id, annual_leave.id, FY_2026)
    assert balance.used == 0
    assert balance.pending == 0
    assert balance.remaining == balance.allocated == 20


def test_rejected_and_out_of_period_requests_are_ignored(db_session, org, employee, annual_leave):
    _add_request(db_session, org, employee, annual_leave, date(2026, 5, 4), date(2026, 5, 5), 2.0, LeaveStatus.REJECTED.value)
    _add_request(db_session, org, employee, annual_leave, date(2025, 12, 29), date(2025, 12, 30), 2.0, LeaveStatus.APPROVED.value)

    balance = compute_balance(db_session, employee.id, annual_leave.id, FY_2026)
    assert balance.remaining == 20


def test_balance_is_recomputed_on_every_read(db_session, org, employee, annual_leave):
    first = compute_balance(db_session, employee.id, annual_leave.id, FY_2026)
    req = _add_request(db_session, org, employee, annual_leave, date(2026, 6, 1), date(2026, 6, 2), 2.0, LeaveStatus.PENDING.value)
    second = compute_balance(db_session, employee.id, annual_leave.id, FY_2026)

    req.status = LeaveStatus.APPROVED.value
    db_session.commit()
    third = compute_balance(db_session, employee.id, annual_leave.id, FY_2026)

    assert first.remaining == 20
    assert (second.pending, second.used) == (2, 0)
    assert (third.pending, third.used) == (0, 2)
    for b in (first, second, third):
        assert b.remaining == b.allocated - b.used - b.pending


def test_exclude_request_id_leaves_one_request_out(db_session, org, employee, annual_leave):
    req = _add_request(db_session, org, employee, annual_leave, date(2026, 6, 1), date(2026, 6, 3), 3.0, LeaveStatus.PENDING.value)
    balance = compute_balance(db_session, employee.id, annual_leave.id, FY_2026, exclude_request_id=req.id)
    assert balance.pending == 0


def test_overdrawn_balance_reports_negative_remaining(db_session, org, employee, annual_leave):
    _add_request(db_session, org, employee, annual_leave, date(2026, 2, 2), date(2026, 2, 27), 20.0, LeaveStatus.APPROVED.value)
    _add_request(db_session, org, employee, annual_leave, date(2026, 3, 2), date(2026, 3, 3), 2.0, LeaveStatus.PENDING.value)

    balance = compute_balance(db_session, employee.id, annual_leave.id, FY_2026)
    assert balance.remaining == -2
    assert balance.overdrawn


def test_unknown_leave_type_raises_not_found(db_session, employee):
    with pytest.raises(NotFoundError):
        compute_balance(db_session, employee.id, 9999, FY_2026)


def test_list_balances_covers_active_leave_types(db_session, org, employee, annual_leave, unpaid_leave):
    unpaid_leave.is_active = False
    db_session.commit()

    balances = list_balances(db_session, org.id, employee.id, FY_2026)
    assert [b.leave_type_name for b in balances] == ["Annual Leave"]


def test_balance_endpoint(client, db_session, org, employee, annual_leave, headers_for):
    _add_request(db_session, org, employee, annual_leave, date(2026, 3, 2), date(2026, 3, 6), 5.0, LeaveStatus.APPROVED.value)

    response = client.get(
        f"/api/leave/balance/{employee.id}",
        params={"leave_type_id": annual_leave.id, "year": 2026},
        headers=headers_for(employee),
    )
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["allocated"] == 20
    assert data[0]["used"] == 5
    assert data[0]["remaining"] == 15
    assert data[0]["period_start"] == "2026-01-01"


def test_balance_endpoint_hides_other_employees_from_employees(client, employee, teammate, annual_leave, headers_for):
    response = client.get(f"/api/leave/balance/{teammate.id}", headers=headers_for(employee))
    assert response.status_code == 403
