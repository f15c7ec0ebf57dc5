"""
Leave Request Service Layer

Owns the leave request lifecycle: submission with per-day breakdown and the
pending -> approved | rejected state machine.

Architecture:
- Router -> Service (this module) -> Models
- Balance checks delegate to leave_balance, overlap checks to conflict_service
- Audit and notification writes are best-effort side effects
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session, selectinload

from app.core.exceptions import (
    AccessDeniedError,
    AlreadyDecidedError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from app.core.policy import PolicyBundle
from app.models.attendance_summary import AttendanceSummary, LeaveReconciliationFlag
from app.models.employee import Employee, EmploymentStatus
from app.models.leave_request import (
    DayType,
    LeaveApprovalHistory,
    LeaveRequest,
    LeaveRequestDay,
    LeaveStatus,
)
from app.models.leave_type import LeaveType
from app.schemas.advisory import EngineWarning, OverdrawWarning, StaleSummaryWarning
from app.schemas.auth import TenantContext
from app.services.audit import AuditService
from app.services.conflict_service import conflict_warning, find_conflicts
from app.services.leave_balance import compute_balance
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"


@dataclass
class LeaveDay:
    date: date
    day_type: DayType = DayType.FULL


@dataclass
class SubmissionResult:
    request: LeaveRequest
    warnings: List[EngineWarning] = field(default_factory=list)


@dataclass
class DecisionResult:
    request: LeaveRequest
    warnings: List[EngineWarning] = field(default_factory=list)


def total_days_for(days: Iterable[LeaveDay]) -> float:
    return sum(DayType(d.day_type).fraction for d in days)


def validate_days(days: Sequence[LeaveDay], policy: PolicyBundle) -> None:
    """
    Reject malformed day sets. Dates need not be contiguous.

    Raises:
        ValidationError: empty set, unknown day type, duplicate date, or a non-working day
    """
    if not days:
        raise ValidationError("At least one leave day is required")

    seen = set()
    for day in days:
        try:
            DayType(day.day_type)
        except ValueError:
            raise ValidationError(f"Unknown day type: {day.day_type}", details={"date": day.date.isoformat()})
        if day.date in seen:
            raise ValidationError(f"Duplicate leave date: {day.date.isoformat()}", details={"date": day.date.isoformat()})
        seen.add(day.date)
        if policy.is_weekend(day.date):
            raise ValidationError(f"Leave date falls on a weekend: {day.date.isoformat()}", details={"date": day.date.isoformat()})
        if day.date in policy.holidays:
            raise ValidationError(f"Leave date falls on a holiday: {day.date.isoformat()}", details={"date": day.date.isoformat()})


def check_overlapping_days(db: Session, employee_id: int, days: Sequence[LeaveDay]) -> None:
    """A date may belong to at most one pending or approved request of the employee."""
    taken = db.query(LeaveRequestDay.date).join(
        LeaveRequest, LeaveRequestDay.leave_request_id == LeaveRequest.id
    ).filter(
        LeaveRequest.employee_id == employee_id,
        LeaveRequest.status.in_([LeaveStatus.PENDING.value, LeaveStatus.APPROVED.value]),
        LeaveRequestDay.date.in_([d.date for d in days]),
    ).order_by(LeaveRequestDay.date).all()
    if taken:
        dates = [d.isoformat() for (d,) in taken]
        raise ValidationError(
            f"Leave already requested for: {', '.join(dates)}",
            details={"dates": dates},
            error_code="OVERLAPPING_LEAVE",
        )


def _request_snapshot(req: LeaveRequest) -> dict:
    return {
        "status": req.status,
        "approval_level": req.approval_level,
        "reviewed_by": req.reviewed_by,
        "rejection_reason": req.rejection_reason,
    }


def _get_employee(db: Session, organization_id: int, employee_id: int) -> Employee:
    employee = db.query(Employee).filter(
        Employee.id == employee_id,
        Employee.organization_id == organization_id
    ).first()
    if not employee:
        raise NotFoundError("Employee", employee_id)
    return employee


def get_request(db: Session, organization_id: int, request_id: int) -> LeaveRequest:
    req = db.query(LeaveRequest).options(selectinload(LeaveRequest.days)).filter(
        LeaveRequest.id == request_id,
        LeaveRequest.organization_id == organization_id
    ).first()
    if not req:
        raise NotFoundError("Leave request", request_id)
    return req


def list_requests(
    db: Session,
    organization_id: int,
    employee_id: Optional[int] = None,
    status: Optional[str] = None
) -> List[LeaveRequest]:
    query = db.query(LeaveRequest).options(selectinload(LeaveRequest.days)).filter(
        LeaveRequest.organization_id == organization_id
    )
    if employee_id:
        query = query.filter(LeaveRequest.employee_id == employee_id)
    if status:
        query = query.filter(LeaveRequest.status == status)
    return query.order_by(LeaveRequest.start_date.desc(), LeaveRequest.id.desc()).all()


def submit_leave_request(
    db: Session,
    ctx: TenantContext,
    leave_type_id: int,
    days: Sequence[LeaveDay],
    policy: PolicyBundle,
    employee_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> SubmissionResult:
    """
    Record a multi-day leave request in state `pending`.

    An overdraw of the current balance is returned as a warning, or raised
    as InsufficientBalanceError when the tenant policy is 'block'. Team
    conflicts are returned as warnings and never block.
    """
    employee_id = employee_id or ctx.employee_id
    if employee_id is None:
        raise ValidationError("employee_id is required")
    if employee_id != ctx.employee_id and not ctx.is_hr:
        raise AccessDeniedError("Only HR can submit leave on behalf of another employee")

    employee = _get_employee(db, ctx.organization_id, employee_id)
    if employee.employment_status == EmploymentStatus.TERMINATED.value:
        raise ValidationError("Cannot submit leave for a terminated employee")

    leave_type = db.query(LeaveType).filter(
        LeaveType.id == leave_type_id,
        LeaveType.organization_id == ctx.organization_id,
        LeaveType.is_active.is_(True)
    ).first()
    if not leave_type:
        raise NotFoundError("Leave type", leave_type_id)

    validate_days(days, policy)
    check_overlapping_days(db, employee_id, days)

    ordered = sorted(days, key=lambda d: d.date)
    total_days = total_days_for(ordered)
    start_date, end_date = ordered[0].date, ordered[-1].date

    warnings: List[EngineWarning] = []

    # 1. Balance (fresh read, no lock)
    balance = compute_balance(db, employee_id, leave_type_id, policy.fiscal_year(start_date))
    if total_days > balance.remaining:
        if policy.overdraw_policy == "block":
            raise InsufficientBalanceError(total_days, balance.remaining)
        warnings.append(OverdrawWarning.build(total_days, balance.remaining, leave_type_id))
        logger.warning(
            f"Leave overdraw on submission: employee {employee_id}, "
            f"requested {total_days}, remaining {balance.remaining}"
        )

    # 2. Team conflicts (advisory)
    conflicts = find_conflicts(db, ctx.organization_id, employee_id, start_date, end_date)
    if conflicts:
        warnings.append(conflict_warning(conflicts))

    # 3. Create Record
    new_leave = LeaveRequest(
        organization_id=ctx.organization_id,
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        start_date=start_date,
        end_date=end_date,
        total_days=total_days,
        reason=(reason or "").strip() or None,
        status=LeaveStatus.PENDING.value,
        approval_level=0,
        required_levels=max(1, leave_type.approval_levels or 1),
    )
    new_leave.days = [
        LeaveRequestDay(
            organization_id=ctx.organization_id,
            date=d.date,
            day_type=DayType(d.day_type).value,
        )
        for d in ordered
    ]
    db.add(new_leave)
    try:
        db.flush()
    except Exception:
        db.rollback()
        raise

    AuditService.log(
        db,
        action="create",
        entity_type="leave_requests",
        entity_id=new_leave.id,
        user_id=ctx.employee_id,
        user_role=ctx.role.value,
        details={"warnings": [w.code for w in warnings]},
        organization_id=ctx.organization_id,
        after_state={
            "employee_id": employee_id,
            "leave_type_id": leave_type_id,
            "start_date": start_date,
            "end_date": end_date,
            "total_days": total_days,
            "status": new_leave.status,
        },
    )

    NotificationService.notify_user(
        db,
        employee.manager_id,
        "Leave Request Submitted",
        f"{employee.full_name} requested {total_days} days of {leave_type.name} "
        f"({start_date.isoformat()} to {end_date.isoformat()}).",
        "info",
        organization_id=ctx.organization_id,
    )

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(new_leave)

    logger.info(f"Leave request {new_leave.id} submitted for employee {employee_id} ({total_days} days)")
    return SubmissionResult(request=new_leave, warnings=warnings)


def _flag_locked_summaries(db: Session, req: LeaveRequest) -> List[EngineWarning]:
    """
    A late approval must not rewrite locked attendance data. Each locked
    summary covering one of the request's days gets a reconciliation flag.
    """
    locked = db.query(AttendanceSummary).filter(
        AttendanceSummary.employee_id == req.employee_id,
        AttendanceSummary.is_locked.is_(True),
        AttendanceSummary.period_start <= req.end_date,
        AttendanceSummary.period_end >= req.start_date,
    ).all()

    warnings: List[EngineWarning] = []
    for summary in locked:
        affected = [d.date for d in req.days if summary.period_start <= d.date <= summary.period_end]
        if not affected:
            continue
        existing = db.query(LeaveReconciliationFlag).filter(
            LeaveReconciliationFlag.summary_id == summary.id,
            LeaveReconciliationFlag.leave_request_id == req.id
        ).first()
        if not existing:
            db.add(LeaveReconciliationFlag(
                organization_id=req.organization_id,
                summary_id=summary.id,
                leave_request_id=req.id,
                reason=(
                    f"Leave request {req.id} approved after the attendance summary for "
                    f"{summary.period_start.isoformat()} to {summary.period_end.isoformat()} was locked; "
                    f"{len(affected)} day(s) not reflected"
                ),
            ))
        warnings.append(StaleSummaryWarning(
            message=(
                f"Attendance summary {summary.id} is locked and now stale relative to this leave; "
                f"flagged for manual reconciliation"
            ),
            details={
                "summary_id": summary.id,
                "period_start": summary.period_start.isoformat(),
                "period_end": summary.period_end.isoformat(),
                "dates": [d.isoformat() for d in affected],
            },
        ))
        logger.warning(f"Stale locked summary {summary.id} flagged by late approval of leave request {req.id}")
    return warnings


def decide_leave_request(
    db: Session,
    ctx: TenantContext,
    request_id: int,
    decision: str,
    policy: PolicyBundle,
    reviewer_id: Optional[int] = None,
    rejection_reason: Optional[str] = None,
    comment: Optional[str] = None,
) -> DecisionResult:
    """
    Approve or reject a pending request.

    The status change is a compare-and-swap on (status='pending',
    approval_level=<level seen>): of two concurrent deciders only one
    succeeds, the other gets AlreadyDecidedError.
    """
    if decision not in (APPROVE, REJECT):
        raise ValidationError(f"Unknown decision '{decision}'")
    reviewer_id = reviewer_id or ctx.employee_id

    req = get_request(db, ctx.organization_id, request_id)
    if req.status != LeaveStatus.PENDING.value:
        raise AlreadyDecidedError(request_id, req.status)

    if reviewer_id is not None and reviewer_id == req.employee_id:
        raise AccessDeniedError("Employees cannot decide their own leave requests")

    rejection_reason = (rejection_reason or "").strip() or None
    if decision == REJECT and not rejection_reason:
        raise ValidationError("A rejection reason is required")

    seen_level = req.approval_level or 0
    required = max(1, req.required_levels or 1)
    before_state = _request_snapshot(req)
    warnings: List[EngineWarning] = []

    if decision == APPROVE:
        already_approved = db.query(LeaveApprovalHistory).filter(
            LeaveApprovalHistory.leave_request_id == req.id,
            LeaveApprovalHistory.approver_id == reviewer_id,
            LeaveApprovalHistory.action == "approved"
        ).first()
        if reviewer_id is not None and already_approved:
            raise AlreadyDecidedError(request_id, req.status)

        next_level = seen_level + 1
        is_final = next_level >= required
        new_status = LeaveStatus.APPROVED.value if is_final else LeaveStatus.PENDING.value

        if is_final:
            balance = compute_balance(
                db, req.employee_id, req.leave_type_id,
                policy.fiscal_year(req.start_date),
                exclude_request_id=req.id,
            )
            if req.total_days > balance.remaining:
                if policy.overdraw_policy == "block":
                    raise InsufficientBalanceError(req.total_days, balance.remaining)
                warnings.append(OverdrawWarning.build(req.total_days, balance.remaining, req.leave_type_id))
        audit_action = "approve_leave_final" if is_final else f"approve_leave_level_{next_level}"
        history_action = "approved"
    else:
        next_level = seen_level
        is_final = True
        new_status = LeaveStatus.REJECTED.value
        audit_action = "reject_leave"
        history_action = "rejected"

    now = datetime.now(timezone.utc)
    values = {
        "status": new_status,
        "approval_level": next_level,
        "reviewed_by": reviewer_id,
        "reviewed_at": now,
    }
    if decision == REJECT:
        values["rejection_reason"] = rejection_reason

    swapped = db.query(LeaveRequest).filter(
        LeaveRequest.id == req.id,
        LeaveRequest.status == LeaveStatus.PENDING.value,
        LeaveRequest.approval_level == seen_level,
    ).update(values, synchronize_session=False)
    if swapped != 1:
        db.rollback()
        raise AlreadyDecidedError(request_id)

    db.add(LeaveApprovalHistory(
        leave_request_id=req.id,
        organization_id=req.organization_id,
        approver_id=reviewer_id,
        level=next_level if decision == APPROVE else seen_level + 1,
        action=history_action,
        comments=comment or rejection_reason,
    ))

    if decision == APPROVE and is_final:
        warnings.extend(_flag_locked_summaries(db, req))

    AuditService.log(
        db,
        action=audit_action,
        entity_type="leave_requests",
        entity_id=req.id,
        user_id=ctx.employee_id,
        user_role=ctx.role.value,
        details={
            "employee_id": req.employee_id,
            "leave_type_id": req.leave_type_id,
            "comment": comment,
            "level": next_level,
            "warnings": [w.code for w in warnings],
        },
        organization_id=ctx.organization_id,
        before_state=before_state,
        after_state=values,
    )

    if new_status == LeaveStatus.APPROVED.value:
        NotificationService.notify_user(
            db, req.employee_id, "Leave Approved",
            f"Your leave request for {req.total_days} days has been APPROVED.",
            "success", organization_id=ctx.organization_id,
        )
    elif new_status == LeaveStatus.REJECTED.value:
        NotificationService.notify_user(
            db, req.employee_id, "Leave Rejected",
            f"Your leave request has been REJECTED. Reason: {rejection_reason}",
            "error", organization_id=ctx.organization_id,
        )
    else:
        NotificationService.notify_user(
            db, req.employee_id, "Leave Update",
            f"Your leave request has been approved by Level {next_level} and is pending next approval.",
            "info", organization_id=ctx.organization_id,
        )

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(req)

    logger.info(f"Leave request {req.id} {audit_action} by {reviewer_id} -> {req.status}")
    return DecisionResult(request=req, warnings=warnings)


def recalculate_total_days(db: Session, ctx: TenantContext, request_id: int) -> LeaveRequest:
    """Explicit recalculation path: re-derive total_days from the child day rows."""
    req = get_request(db, ctx.organization_id, request_id)
    recomputed = sum(d.fraction for d in req.days)
    if recomputed == req.total_days:
        return req

    before = req.total_days
    req.total_days = recomputed
    AuditService.log(
        db,
        action="update",
        entity_type="leave_requests",
        entity_id=req.id,
        user_id=ctx.employee_id,
        user_role=ctx.role.value,
        details={"reason": "total_days recalculation"},
        organization_id=ctx.organization_id,
        before_state={"total_days": before},
        after_state={"total_days": recomputed},
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(req)
    logger.warning(f"Leave request {req.id} total_days corrected from {before} to {recomputed}")
    return req


def leave_calendar(
    db: Session,
    organization_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> List[dict]:
    """Approved leave in the organization, optionally restricted to a window."""
    query = db.query(LeaveRequest, Employee).join(
        Employee, LeaveRequest.employee_id == Employee.id
    ).filter(
        LeaveRequest.organization_id == organization_id,
        LeaveRequest.status == LeaveStatus.APPROVED.value,
    )
    if start_date:
        query = query.filter(LeaveRequest.end_date >= start_date)
    if end_date:
        query = query.filter(LeaveRequest.start_date <= end_date)

    return [
        {
            "leave_request_id": leave.id,
            "employee_id": emp.id,
            "full_name": emp.full_name or "Unknown",
            "leave_type_id": leave.leave_type_id,
            "start_date": leave.start_date,
            "end_date": leave.end_date,
            "total_days": leave.total_days,
        }
        for leave, emp in query.order_by(LeaveRequest.start_date).all()
    ]
