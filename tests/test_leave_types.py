import pytest
from datetime import date

from app.core.exceptions import NotFoundError, ValidationError
from app.models.audit_log import AuditLog
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.schemas.auth import UserRole
from app.services import leave_type_service


def _request(db, org, emp, leave_type, start, status=LeaveStatus.PENDING.value):
    db.add(LeaveRequest(
        organization_id=org.id,
        employee_id=emp.id,
        leave_type_id=leave_type.id,
        start_date=start,
        end_date=start,
        total_days=1.0,
        status=status,
    ))
    db.commit()


def test_create_leave_type_normalises_code(db_session, hr_admin, ctx_for):
    leave_type = leave_type_service.create_leave_type(
        db_session, ctx_for(hr_admin, UserRole.HR_ADMIN),
        {"name": "Sick Leave", "code": " sick ", "default_days": 10.0, "is_paid": True},
    )
    assert leave_type.code == "SICK"
    assert leave_type.is_active is True
    assert db_session.query(AuditLog).filter(AuditLog.entity_type == "leave_types").count() == 1


def test_duplicate_code_is_rejected(db_session, hr_admin, annual_leave, ctx_for):
    with pytest.raises(ValidationError):
        leave_type_service.create_leave_type(
            db_session, ctx_for(hr_admin, UserRole.HR_ADMIN), {"name": "Annual 2", "code": "annual"}
        )


def test_allocation_frozen_while_requests_exist(db_session, org, employee, hr_admin, annual_leave, policy, ctx_for):
    _request(db_session, org, employee, annual_leave, date(2026, 3, 2))

    with pytest.raises(ValidationError) as exc:
        leave_type_service.update_leave_type(
            db_session, ctx_for(hr_admin, UserRole.HR_ADMIN), annual_leave.id,
            {"default_days": 25.0}, policy, today=date(2026, 6, 1),
        )
    assert exc.value.details["fields"] == ["default_days"]


def test_non_allocation_fields_stay_editable(db_session, org, employee, hr_admin, annual_leave, policy, ctx_for):
    _request(db_session, org, employee, annual_leave, date(2026, 3, 2))

    updated = leave_type_service.update_leave_type(
        db_session, ctx_for(hr_admin, UserRole.HR_ADMIN), annual_leave.id,
        {"name": "Annual Holiday", "approval_levels": 2}, policy, today=date(2026, 6, 1),
    )
    assert updated.name == "Annual Holiday"
    assert updated.approval_levels == 2


def test_rejected_and_previous_year_requests_do_not_freeze(db_session, org, employee, hr_admin, annual_leave, policy, ctx_for):
    _request(db_session, org, employee, annual_leave, date(2026, 3, 2), status=LeaveStatus.REJECTED.value)
    _request(db_session, org, employee, annual_leave, date(2025, 11, 3), status=LeaveStatus.APPROVED.value)

    updated = leave_type_service.update_leave_type(
        db_session, ctx_for(hr_admin, UserRole.HR_ADMIN), annual_leave.id,
        {"default_days": 25.0}, policy, today=date(2026, 6, 1),
    )
    assert updated.default_days == 25.0


def test_unknown_leave_type(db_session, org, hr_admin, policy, ctx_for):
    with pytest.raises(NotFoundError):
        leave_type_service.update_leave_type(db_session, ctx_for(hr_admin, UserRole.HR_ADMIN), 404, {"name": "x"}, policy)


def test_leave_type_endpoints(client, employee, hr_admin, headers_for):
    created = client.post("/api/leave/types", headers=headers_for(hr_admin, "HR_ADMIN"), json={
        "name": "Study Leave", "code": "study", "default_days": 5,
    })
    assert created.status_code == 201
    assert created.json()["code"] == "STUDY"

    listed = client.get("/api/leave/types", headers=headers_for(employee))
    assert [t["code"] for t in listed.json()] == ["STUDY"]

    forbidden = client.post("/api/leave/types", headers=headers_for(employee), json={"name": "Free", "code": "FREE"})
    assert forbidden.status_code == 403

    deactivated = client.patch(
        f"/api/leave/types/{created.json()['id']}",
        headers=headers_for(hr_admin, "HR_ADMIN"),
        json={"is_active": False},
    )
    assert deactivated.json()["is_active"] is False
    assert client.get("/api/leave/types", headers=headers_for(employee)).json() == []
