"""
Leave Balance Calculator

Balances are derived, never stored: every call reads the current requests
and recomputes. No row-level lock is taken: two submissions racing on the
same balance can both succeed and overdraw it, and the negative
`remaining` then shows up on the next read.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.core.policy import BalancePeriod, PolicyBundle
from app.models.employee import Employee
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.models.leave_type import LeaveType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaveBalance:
    employee_id: int
    leave_type_id: int
    period: BalancePeriod
    allocated: float
    used: float
    pending: float
    leave_type_name: Optional[str] = None

    @property
    def remaining(self) -> float:
        return self.allocated - self.used - self.pending

    @property
    def overdrawn(self) -> bool:
        return self.remaining < 0

    def to_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "leave_type_id": self.leave_type_id,
            "leave_type_name": self.leave_type_name,
            "period_start": self.period.start,
            "period_end": self.period.end,
            "allocated": self.allocated,
            "used": self.used,
            "pending": self.pending,
            "remaining": self.remaining,
            "overdrawn": self.overdrawn,
        }


def calculate_balance(allocated: float, requests: Iterable[Tuple[str, float]]) -> Tuple[float, float, float]:
    """
    Pure balance arithmetic.

    Args:
        allocated: Days allocated for the period
        requests: (status, total_days) pairs for the employee/leave type/period

    Returns:
        (used, pending, remaining)
    """
    used = 0.0
    pending = 0.0
    for status, total_days in requests:
        if status == LeaveStatus.APPROVED.value:
            used += total_days
        elif status == LeaveStatus.PENDING.value:
            pending += total_days
    return used, pending, allocated - used - pending


def _load_request_totals(
    db: Session,
    employee_id: int,
    leave_type_id: int,
    period: BalancePeriod,
    exclude_request_id: Optional[int] = None,
) -> List[Tuple[str, float]]:
    query = db.query(LeaveRequest.status, LeaveRequest.total_days).filter(
        LeaveRequest.employee_id == employee_id,
        LeaveRequest.leave_type_id == leave_type_id,
        LeaveRequest.start_date >= period.start,
        LeaveRequest.start_date <= period.end,
        LeaveRequest.status.in_([LeaveStatus.APPROVED.value, LeaveStatus.PENDING.value]),
    )
    if exclude_request_id is not None:
        query = query.filter(LeaveRequest.id != exclude_request_id)
    return [(status, float(total or 0)) for status, total in query.all()]


def compute_balance(
    db: Session,
    employee_id: int,
    leave_type_id: int,
    period: BalancePeriod,
    exclude_request_id: Optional[int] = None,
) -> LeaveBalance:
    """
    Compute the balance for one employee and leave type over a period.

    `exclude_request_id` leaves one request out of the sums; the approval
    path uses it to re-check the balance without counting the request
    being decided as its own pending usage.
    """
    leave_type = db.get(LeaveType, leave_type_id)
    if not leave_type:
        raise NotFoundError("Leave type", leave_type_id)

    rows = _load_request_totals(db, employee_id, leave_type_id, period, exclude_request_id)
    used, pending, _ = calculate_balance(float(leave_type.default_days or 0), rows)
    return LeaveBalance(
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        period=period,
        allocated=float(leave_type.default_days or 0),
        used=used,
        pending=pending,
        leave_type_name=leave_type.name,
    )


def list_balances(
    db: Session,
    organization_id: int,
    employee_id: int,
    period: BalancePeriod,
) -> List[LeaveBalance]:
    """One balance per active leave type of the employee's organization."""
    employee = db.query(Employee).filter(
        Employee.id == employee_id,
        Employee.organization_id == organization_id
    ).first()
    if not employee:
        raise NotFoundError("Employee", employee_id)

    leave_types = db.query(LeaveType).filter(
        LeaveType.organization_id == organization_id,
        LeaveType.is_active.is_(True)
    ).order_by(LeaveType.name).all()
    return [compute_balance(db, employee_id, lt.id, period) for lt in leave_types]


def resolve_period(policy: PolicyBundle, year: Optional[int], on) -> BalancePeriod:
    """Fiscal year starting in `year`, or the one containing `on`."""
    if year is not None:
        return policy.fiscal_year_starting(year)
    return policy.fiscal_year(on)
