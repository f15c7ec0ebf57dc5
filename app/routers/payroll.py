"""
Payroll Router

Handles HTTP endpoints for payroll runs and attendance reconciliation.
All business logic is delegated to the payroll service layer.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from app.core.limiter import WRITE_LIMIT, limiter
from app.core.policy import PolicyBundle
from app.database import get_db
from app.routers.auth_deps import get_policy, require_hr
from app.schemas.attendance import AttendanceSummaryResponse
from app.schemas.auth import TenantContext
from app.schemas.payroll import (
    AttendancePayResponse,
    PayrollRunCreate,
    PayrollRunResponse,
    ReconciliationFlagResponse,
    ReconciliationReportResponse,
    ResolveFlagRequest,
)
from app.services import payroll_service


router = APIRouter(
    prefix="/payroll",
    tags=["payroll"],
    dependencies=[Depends(require_hr())]
)


@router.post("/runs", response_model=PayrollRunResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def create_payroll_run(
    request: Request,
    payload: PayrollRunCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return payroll_service.create_payroll_run(
        db, ctx, payload.name, payload.period_start, payload.period_end, payload.employee_ids
    )


@router.get("/runs/{run_id}", response_model=PayrollRunResponse)
def get_payroll_run(
    run_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return payroll_service.get_payroll_run(db, ctx.organization_id, run_id)


@router.post("/runs/{run_id}/process", response_model=PayrollRunResponse)
@limiter.limit(WRITE_LIMIT)
def process_payroll_run(
    request: Request,
    run_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return payroll_service.process_payroll_run(db, ctx, run_id)


@router.post("/runs/{run_id}/fail", response_model=PayrollRunResponse)
@limiter.limit(WRITE_LIMIT)
def fail_payroll_run(
    request: Request,
    run_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return payroll_service.fail_payroll_run(db, ctx, run_id)


@router.post("/runs/{run_id}/complete", response_model=ReconciliationReportResponse)
@limiter.limit(WRITE_LIMIT)
def complete_payroll_run(
    request: Request,
    run_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr()),
    policy: PolicyBundle = Depends(get_policy)
):
    """
    Complete the run and lock the attendance summaries it consumed.
    Per-employee failures and advisories are returned in the report.
    """
    report = payroll_service.complete_payroll_run(db, ctx, run_id, policy)
    return {
        "payroll_run_id": report.payroll_run_id,
        "status": report.status,
        "locked": report.locked,
        "already_locked": report.already_locked,
        "failures": report.failures,
        "warnings": report.warnings,
    }


@router.get("/runs/{run_id}/attendance", response_model=List[AttendanceSummaryResponse])
def get_run_attendance(
    run_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return payroll_service.list_run_summaries(db, ctx.organization_id, run_id)


@router.get("/reconciliation-flags", response_model=List[ReconciliationFlagResponse])
def list_reconciliation_flags(
    status: Optional[str] = "open",
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return payroll_service.list_reconciliation_flags(db, ctx.organization_id, status=status)


@router.post("/reconciliation-flags/{flag_id}/resolve", response_model=ReconciliationFlagResponse)
@limiter.limit(WRITE_LIMIT)
def resolve_reconciliation_flag(
    request: Request,
    flag_id: int,
    payload: ResolveFlagRequest,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return payroll_service.resolve_reconciliation_flag(db, ctx, flag_id, payload.note)


@router.get("/attendance-pay/{employee_id}", response_model=AttendancePayResponse)
def get_attendance_pay(
    employee_id: int,
    period_start: date,
    period_end: date,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr()),
    policy: PolicyBundle = Depends(get_policy)
):
    """Salary prorated from the employee's attendance summary for the period."""
    return payroll_service.calculate_pay_from_attendance(
        db, ctx.organization_id, employee_id, period_start, period_end, policy
    )
