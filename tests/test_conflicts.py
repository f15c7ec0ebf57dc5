import pytest
from datetime import date

from app.core.exceptions import NotFoundError, ValidationError
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.services.conflict_service import conflict_warning, find_conflicts


def _approved_leave(db, org, emp, leave_type, start, end, status=LeaveStatus.APPROVED.value):
    req = LeaveRequest(
        organization_id=org.id,
        employee_id=emp.id,
        leave_type_id=leave_type.id,
        start_date=start,
        end_date=end,
        total_days=float((end - start).days + 1),
        status=status,
    )
    db.add(req)
    db.commit()
    return req


def test_overlap_in_same_department(db_session, org, employee, teammate, annual_leave):
    leave = _approved_leave(db_session, org, teammate, annual_leave, date(2026, 2, 1), date(2026, 2, 5))

    conflicts = find_conflicts(db_session, org.id, employee.id, date(2026, 2, 3), date(2026, 2, 10))

    assert [c.leave_request_id for c in conflicts] == [leave.id]
    assert conflicts[0].employee_name == "Tara Teammate"
    assert conflicts[0].leave_type_name == "Annual Leave"


@pytest.mark.parametrize("start,end", [
    (date(2026, 2, 5), date(2026, 2, 9)),   # shares the last day
    (date(2026, 1, 26), date(2026, 2, 1)),  # shares the first day
    (date(2026, 2, 2), date(2026, 2, 2)),   # single day inside
])
def test_shared_endpoints_are_conflicts(db_session, org, employee, teammate, annual_leave, start, end):
    _approved_leave(db_session, org, teammate, annual_leave, date(2026, 2, 1), date(2026, 2, 5))
    assert len(find_conflicts(db_session, org.id, employee.id, start, end)) == 1


def test_adjacent_ranges_do_not_conflict(db_session, org, employee, teammate, annual_leave):
    _approved_leave(db_session, org, teammate, annual_leave, date(2026, 2, 1), date(2026, 2, 5))
    assert find_conflicts(db_session, org.id, employee.id, date(2026, 2, 6), date(2026, 2, 9)) == []


def test_pending_and_own_leave_are_ignored(db_session, org, employee, teammate, annual_leave):
    _approved_leave(db_session, org, teammate, annual_leave, date(2026, 2, 1), date(2026, 2, 5), status=LeaveStatus.PENDING.value)
    _approved_leave(db_session, org, employee, annual_leave, date(2026, 2, 1), date(2026, 2, 5))
    assert find_conflicts(db_session, org.id, employee.id, date(2026, 2, 1), date(2026, 2, 5)) == []


def test_other_department_is_out_of_scope(db_session, org, employee, make_employee, other_department, annual_leave):
    outsider = make_employee("Omar Outsider", department=other_department)
    _approved_leave(db_session, org, outsider, annual_leave, date(2026, 2, 1), date(2026, 2, 5))
    assert find_conflicts(db_session, org.id, employee.id, date(2026, 2, 1), date(2026, 2, 5)) == []


def test_same_manager_across_departments_is_in_scope(db_session, org, employee, manager, make_employee, other_department, annual_leave):
    remote = make_employee("Rita Remote", department=other_department, manager=manager)
    _approved_leave(db_session, org, remote, annual_leave, date(2026, 2, 1), date(2026, 2, 5))
    assert len(find_conflicts(db_session, org.id, employee.id, date(2026, 2, 1), date(2026, 2, 5))) == 1


def test_terminated_colleagues_are_excluded(db_session, org, employee, department, make_employee, annual_leave):
    former = make_employee("Fred Former", department=department, status="terminated")
    _approved_leave(db_session, org, former, annual_leave, date(2026, 2, 1), date(2026, 2, 5))
    assert find_conflicts(db_session, org.id, employee.id, date(2026, 2, 1), date(2026, 2, 5)) == []


def test_employee_without_team_has_no_conflicts(db_session, org, make_employee):
    loner = make_employee("Lone Wolf")
    assert find_conflicts(db_session, org.id, loner.id, date(2026, 2, 1), date(2026, 2, 5)) == []


def test_inverted_range_is_rejected(db_session, org, employee):
    with pytest.raises(ValidationError):
        find_conflicts(db_session, org.id, employee.id, date(2026, 2, 5), date(2026, 2, 1))


def test_unknown_employee(db_session, org):
    with pytest.raises(NotFoundError):
        find_conflicts(db_session, org.id, 4242, date(2026, 2, 1), date(2026, 2, 5))


def test_conflict_warning_names_colleagues(db_session, org, employee, teammate, annual_leave):
    _approved_leave(db_session, org, teammate, annual_leave, date(2026, 2, 1), date(2026, 2, 5))
    warning = conflict_warning(find_conflicts(db_session, org.id, employee.id, date(2026, 2, 1), date(2026, 2, 5)))
    assert warning.code == "TEAM_CONFLICT"
    assert "Tara Teammate" in warning.message


def test_conflicts_endpoint(client, db_session, org, employee, teammate, annual_leave, headers_for):
    _approved_leave(db_session, org, teammate, annual_leave, date(2026, 2, 1), date(2026, 2, 5))
    response = client.get(
        "/api/leave/conflicts",
        params={"start_date": "2026-02-03", "end_date": "2026-02-10"},
        headers=headers_for(employee),
    )
    assert response.status_code == 200
    assert response.json()[0]["employee_id"] == teammate.id
