from datetime import date
from typing import List

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.models.employee import Employee, EmploymentStatus
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.models.leave_type import LeaveType
from app.schemas.advisory import ConflictingLeave, TeamConflictWarning


def find_conflicts(
    db: Session,
    organization_id: int,
    employee_id: int,
    start_date: date,
    end_date: date
) -> List[ConflictingLeave]:
    """
    Approved leave of teammates that overlaps [start_date, end_date].

    Teammates are colleagues in the same department or reporting to the
    same manager. Ranges are compared inclusively, so a single shared day
    (including a shared endpoint) is a conflict. Advisory only.
    """
    if end_date < start_date:
        raise ValidationError("end_date must not be earlier than start_date")

    employee = db.query(Employee).filter(
        Employee.id == employee_id,
        Employee.organization_id == organization_id
    ).first()
    if not employee:
        raise NotFoundError("Employee", employee_id)

    scopes = []
    if employee.department_id is not None:
        scopes.append(Employee.department_id == employee.department_id)
    if employee.manager_id is not None:
        scopes.append(Employee.manager_id == employee.manager_id)
    if not scopes:
        return []

    rows = (
        db.query(LeaveRequest, Employee, LeaveType)
        .join(Employee, LeaveRequest.employee_id == Employee.id)
        .outerjoin(LeaveType, LeaveRequest.leave_type_id == LeaveType.id)
        .filter(
            LeaveRequest.organization_id == organization_id,
            LeaveRequest.status == LeaveStatus.APPROVED.value,
            LeaveRequest.employee_id != employee_id,
            LeaveRequest.start_date <= end_date,
            LeaveRequest.end_date >= start_date,
            Employee.employment_status != EmploymentStatus.TERMINATED.value,
            or_(*scopes),
        )
        .order_by(LeaveRequest.start_date, LeaveRequest.id)
        .all()
    )

    return [
        ConflictingLeave(
            leave_request_id=leave.id,
            employee_id=colleague.id,
            employee_name=colleague.full_name,
            leave_type_name=leave_type.name if leave_type else None,
            start_date=leave.start_date,
            end_date=leave.end_date,
        )
        for leave, colleague, leave_type in rows
    ]


def conflict_warning(conflicts: List[ConflictingLeave]) -> TeamConflictWarning:
    names = sorted({c.employee_name for c in conflicts})
    return TeamConflictWarning(
        message=f"Team members on leave during this period: {', '.join(names)}",
        details={"conflicts": [c.model_dump(mode="json") for c in conflicts]},
    )
