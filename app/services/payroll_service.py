"""
Payroll Service Layer

This module provides the business logic for payroll runs and the
reconciliation gate that locks attendance summaries once a run completes.

Architecture:
- Router -> Service (this module) -> Models
- Run status changes are compare-and-swap updates on the current status
- Summary locks are flipped one employee per transaction so a single
  failure never blocks the rest of the run
"""

from sqlalchemy.orm import Session
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
import logging

from app.core.exceptions import AccessDeniedError, InvalidTransitionError, NotFoundError, ValidationError
from app.core.policy import PolicyBundle
from app.models.attendance_summary import AttendanceSummary, FlagStatus, LeaveReconciliationFlag
from app.models.employee import PAYABLE_STATUSES, Employee
from app.models.payroll import PayrollEntry, PayrollRun, PayrollRunStatus
from app.schemas.advisory import EngineWarning, MissingAttendanceDataWarning, UnpaidLeaveWarning
from app.schemas.auth import TenantContext
from app.services import attendance_service
from app.services.audit import AuditService

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    payroll_run_id: int
    status: str
    locked: List[int] = field(default_factory=list)
    already_locked: List[int] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[EngineWarning] = field(default_factory=list)


# ==========================================
# PAYROLL RUNS
# ==========================================

def get_payroll_run(db: Session, organization_id: int, run_id: int) -> PayrollRun:
    run = db.query(PayrollRun).filter(
        PayrollRun.id == run_id,
        PayrollRun.organization_id == organization_id
    ).first()
    if not run:
        raise NotFoundError("Payroll run", run_id)
    return run


def create_payroll_run(
    db: Session,
    ctx: TenantContext,
    name: str,
    period_start: date,
    period_end: date,
    employee_ids: Optional[List[int]] = None
) -> PayrollRun:
    """
    Create a draft run for a period.

    Args:
        db: Database session
        ctx: Tenant context of the caller (HR)
        name: Display name of the run
        period_start: First day of the pay period
        period_end: Last day of the pay period
        employee_ids: Employees to include; defaults to every payable employee

    Returns:
        The new PayrollRun in status 'draft'
    """
    if period_end < period_start:
        raise ValidationError("period_end must not be earlier than period_start")

    if employee_ids is None:
        employee_ids = [
            emp_id for (emp_id,) in db.query(Employee.id).filter(
                Employee.organization_id == ctx.organization_id,
                Employee.employment_status.in_(PAYABLE_STATUSES)
            ).order_by(Employee.id).all()
        ]
    else:
        employee_ids = sorted(set(employee_ids))
        found = {
            emp_id for (emp_id,) in db.query(Employee.id).filter(
                Employee.organization_id == ctx.organization_id,
                Employee.id.in_(employee_ids)
            ).all()
        }
        missing = [e for e in employee_ids if e not in found]
        if missing:
            raise NotFoundError("Employee", missing[0])

    run = PayrollRun(
        organization_id=ctx.organization_id,
        name=name,
        period_start=period_start,
        period_end=period_end,
        status=PayrollRunStatus.DRAFT.value,
        created_by=ctx.employee_id,
    )
    run.entries = [PayrollEntry(employee_id=emp_id) for emp_id in employee_ids]
    db.add(run)
    try:
        db.flush()
        AuditService.log(
            db,
            action="create",
            entity_type="payroll_runs",
            entity_id=run.id,
            user_id=ctx.employee_id,
            user_role=ctx.role.value,
            organization_id=ctx.organization_id,
            after_state={
                "name": name,
                "period_start": period_start,
                "period_end": period_end,
                "employee_ids": employee_ids,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(run)
    logger.info(f"Payroll run {run.id} created for {len(employee_ids)} employees ({period_start} to {period_end})")
    return run


def _transition(
    db: Session,
    ctx: TenantContext,
    run_id: int,
    current: PayrollRunStatus,
    target: PayrollRunStatus,
    extra: Optional[Dict[str, Any]] = None
) -> PayrollRun:
    run = get_payroll_run(db, ctx.organization_id, run_id)
    swapped = db.query(PayrollRun).filter(
        PayrollRun.id == run.id,
        PayrollRun.status == current.value
    ).update({"status": target.value, **(extra or {})}, synchronize_session=False)
    if swapped != 1:
        db.rollback()
        db.refresh(run)
        raise InvalidTransitionError("payroll run", run.status, target.value)

    AuditService.log(
        db,
        action=f"payroll_{target.value}",
        entity_type="payroll_runs",
        entity_id=run.id,
        user_id=ctx.employee_id,
        user_role=ctx.role.value,
        organization_id=ctx.organization_id,
        before_state={"status": current.value},
        after_state={"status": target.value},
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(run)
    logger.info(f"Payroll run {run.id}: {current.value} -> {target.value}")
    return run


def process_payroll_run(db: Session, ctx: TenantContext, run_id: int) -> PayrollRun:
    return _transition(db, ctx, run_id, PayrollRunStatus.DRAFT, PayrollRunStatus.PROCESSING)


def fail_payroll_run(db: Session, ctx: TenantContext, run_id: int) -> PayrollRun:
    """Abort a run that is being processed. Nothing is locked."""
    return _transition(db, ctx, run_id, PayrollRunStatus.PROCESSING, PayrollRunStatus.FAILED)


def complete_payroll_run(
    db: Session,
    ctx: TenantContext,
    run_id: int,
    policy: PolicyBundle
) -> ReconciliationReport:
    """
    Move a run from 'processing' to 'completed' and run the
    reconciliation gate over its employees.
    """
    run = _transition(
        db, ctx, run_id,
        PayrollRunStatus.PROCESSING, PayrollRunStatus.COMPLETED,
        extra={"processed_at": datetime.now(timezone.utc)},
    )
    return lock_attendance_for_payroll(db, ctx, run, policy)


# ==========================================
# RECONCILIATION GATE
# ==========================================

def _lock_summary(db: Session, summary: AttendanceSummary, run: PayrollRun, actor_id: Optional[int]) -> bool:
    """Atomic check-and-set of the lock flag. False when another writer locked it first."""
    flipped = db.query(AttendanceSummary).filter(
        AttendanceSummary.id == summary.id,
        AttendanceSummary.is_locked.is_(False)
    ).update({
        "is_locked": True,
        "locked_at": datetime.now(timezone.utc),
        "locked_by": actor_id,
        "payroll_run_id": run.id,
    }, synchronize_session=False)
    return flipped == 1


def lock_attendance_for_payroll(
    db: Session,
    ctx: TenantContext,
    run: PayrollRun,
    policy: PolicyBundle
) -> ReconciliationReport:
    """
    Lock the attendance summary of every employee in a completed run.

    Each employee is handled in its own transaction. Missing summaries and
    unpaid leave produce warnings; a failing employee is reported in
    `failures` and the loop moves on.
    """
    report = ReconciliationReport(payroll_run_id=run.id, status=run.status)
    employee_ids = list(run.employee_ids)
    period_start, period_end = run.period_start, run.period_end

    for employee_id in employee_ids:
        try:
            summary = attendance_service.get_summary_for_period(
                db, run.organization_id, employee_id, period_start, period_end
            )
            if summary is None:
                if not policy.aggregate_missing_on_complete:
                    report.warnings.append(MissingAttendanceDataWarning.build(employee_id))
                    logger.warning(f"Payroll run {run.id}: no attendance summary for employee {employee_id}")
                    continue
                summary = attendance_service.aggregate(
                    db, run.organization_id, employee_id, period_start, period_end, policy
                )

            if (summary.unpaid_leave_days or 0) > 0:
                report.warnings.append(UnpaidLeaveWarning.build(employee_id, summary.unpaid_leave_days))

            if summary.is_locked or not _lock_summary(db, summary, run, ctx.employee_id):
                db.rollback()
                report.already_locked.append(employee_id)
                continue

            AuditService.log(
                db,
                action="lock",
                entity_type="attendance_summaries",
                entity_id=summary.id,
                user_id=ctx.employee_id,
                user_role=ctx.role.value,
                details={"payroll_run_id": run.id, "employee_id": employee_id},
                organization_id=run.organization_id,
                before_state={"is_locked": False},
                after_state={"is_locked": True},
            )
            db.commit()
            report.locked.append(employee_id)
        except Exception as e:
            db.rollback()
            logger.error(f"Payroll run {run.id}: failed to lock attendance for employee {employee_id}: {e}", exc_info=True)
            report.failures.append({"employee_id": employee_id, "error": str(e)})

    logger.info(
        f"Payroll run {run.id} reconciliation: {len(report.locked)} locked, "
        f"{len(report.already_locked)} already locked, {len(report.failures)} failed, "
        f"{len(report.warnings)} warnings"
    )
    return report


def list_run_summaries(db: Session, organization_id: int, run_id: int) -> List[AttendanceSummary]:
    run = get_payroll_run(db, organization_id, run_id)
    return db.query(AttendanceSummary).filter(
        AttendanceSummary.payroll_run_id == run.id
    ).order_by(AttendanceSummary.employee_id).all()


# ==========================================
# RECONCILIATION FLAGS
# ==========================================

def list_reconciliation_flags(
    db: Session,
    organization_id: int,
    status: Optional[str] = FlagStatus.OPEN.value
) -> List[LeaveReconciliationFlag]:
    query = db.query(LeaveReconciliationFlag).filter(
        LeaveReconciliationFlag.organization_id == organization_id
    )
    if status:
        query = query.filter(LeaveReconciliationFlag.status == status)
    return query.order_by(LeaveReconciliationFlag.created_at, LeaveReconciliationFlag.id).all()


def resolve_reconciliation_flag(
    db: Session,
    ctx: TenantContext,
    flag_id: int,
    note: Optional[str] = None
) -> LeaveReconciliationFlag:
    """Close a stale-summary flag once a human has reconciled it. The summary stays locked."""
    if not ctx.is_hr:
        raise AccessDeniedError("Only HR can resolve reconciliation flags")

    flag = db.query(LeaveReconciliationFlag).filter(
        LeaveReconciliationFlag.id == flag_id,
        LeaveReconciliationFlag.organization_id == ctx.organization_id
    ).first()
    if not flag:
        raise NotFoundError("Reconciliation flag", flag_id)

    resolved = db.query(LeaveReconciliationFlag).filter(
        LeaveReconciliationFlag.id == flag.id,
        LeaveReconciliationFlag.status == FlagStatus.OPEN.value
    ).update({
        "status": FlagStatus.RESOLVED.value,
        "resolved_by": ctx.employee_id,
        "resolved_at": datetime.now(timezone.utc),
        "resolution_note": note,
    }, synchronize_session=False)
    if resolved != 1:
        db.rollback()
        raise InvalidTransitionError("reconciliation flag", FlagStatus.RESOLVED.value, FlagStatus.RESOLVED.value)

    AuditService.log(
        db,
        action="resolve",
        entity_type="leave_reconciliation_flags",
        entity_id=flag.id,
        user_id=ctx.employee_id,
        user_role=ctx.role.value,
        details={"note": note},
        organization_id=ctx.organization_id,
        before_state={"status": FlagStatus.OPEN.value},
        after_state={"status": FlagStatus.RESOLVED.value},
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(flag)
    return flag


# ==========================================
# PAY FROM ATTENDANCE
# ==========================================

def calculate_attendance_pay(
    salary: float,
    working_days: int,
    unpaid_leave_days: float,
    overtime_hours: float,
    hours_per_day: float,
    overtime_rate: float
) -> Dict[str, float]:
    """
    Prorate a monthly salary from an attendance summary.

    daily_rate = salary / working_days
    overtime_pay = daily_rate / hours_per_day * overtime_hours * overtime_rate
    deductions = daily_rate * unpaid_leave_days
    prorated = salary - deductions + overtime_pay
    """
    daily_rate = salary / working_days if working_days > 0 else 0.0
    overtime_pay = daily_rate / hours_per_day * overtime_hours * overtime_rate
    deductions = daily_rate * unpaid_leave_days
    return {
        "daily_rate": round(daily_rate, 2),
        "overtime_pay": round(overtime_pay, 2),
        "deductions": round(deductions, 2),
        "prorated_salary": round(salary - deductions + overtime_pay, 2),
    }


def calculate_pay_from_attendance(
    db: Session,
    organization_id: int,
    employee_id: int,
    period_start: date,
    period_end: date,
    policy: PolicyBundle
) -> Dict[str, Any]:
    employee = db.query(Employee).filter(
        Employee.id == employee_id,
        Employee.organization_id == organization_id
    ).first()
    if not employee:
        raise NotFoundError("Employee", employee_id)
    if not employee.salary or employee.salary <= 0:
        raise ValidationError("Invalid or missing base salary", details={"employee_id": employee_id})

    summary = attendance_service.get_summary_for_period(db, organization_id, employee_id, period_start, period_end)
    if summary is None:
        raise NotFoundError("Attendance summary", f"{employee_id}:{period_start}..{period_end}")

    pay = calculate_attendance_pay(
        salary=employee.salary,
        working_days=summary.total_working_days,
        unpaid_leave_days=summary.unpaid_leave_days,
        overtime_hours=summary.overtime_hours,
        hours_per_day=policy.hours_per_day,
        overtime_rate=policy.overtime_rate,
    )
    return {
        "employee_id": employee_id,
        "base_salary": employee.salary,
        "days_worked": summary.days_present,
        "days_absent": summary.full_day_absents,
        "unpaid_leave_days": summary.unpaid_leave_days,
        "overtime_hours": summary.overtime_hours,
        **pay,
    }
