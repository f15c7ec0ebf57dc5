"""
Attendance Router

Raw time entries and the per-period summaries built from them.
All business logic is delegated to the attendance service layer.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Request, status
from sqlalchemy.orm import Session

from app.core.limiter import WRITE_LIMIT, limiter
from app.core.policy import PolicyBundle
from app.database import get_db
from app.routers.auth_deps import get_policy, require_hr, require_role
from app.schemas.attendance import (
    AggregateRequest,
    AttendanceSummaryResponse,
    GenerateSummariesResponse,
    PeriodRequest,
    TimeEntryCreate,
    TimeEntryResponse,
    UnlockRequest,
)
from app.schemas.auth import TenantContext, UserRole
from app.services import attendance_service

router = APIRouter(prefix="/attendance", tags=["attendance"])


@router.post("/time-entries", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def record_time_entry(
    request: Request,
    entry: TimeEntryCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return attendance_service.record_time_entry(
        db,
        ctx.organization_id,
        entry.employee_id,
        entry.work_date,
        clock_in=entry.clock_in,
        clock_out=entry.clock_out,
        break_minutes=entry.break_minutes,
        late_minutes=entry.late_minutes,
    )


@router.post("/summaries/aggregate", response_model=AttendanceSummaryResponse)
@limiter.limit(WRITE_LIMIT)
def aggregate_summary(
    request: Request,
    payload: AggregateRequest,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr()),
    policy: PolicyBundle = Depends(get_policy)
):
    """Recompute one employee's summary. Fails with 423 once payroll has locked it."""
    return attendance_service.aggregate(
        db, ctx.organization_id, payload.employee_id, payload.period_start, payload.period_end, policy
    )


@router.post("/summaries/generate", response_model=GenerateSummariesResponse)
@limiter.limit(WRITE_LIMIT)
def generate_summaries(
    request: Request,
    payload: PeriodRequest,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr()),
    policy: PolicyBundle = Depends(get_policy)
):
    result = attendance_service.generate_summaries(
        db, ctx.organization_id, payload.period_start, payload.period_end, policy
    )
    return {"generated": result.generated, "skipped_locked": result.skipped_locked}


@router.get("/summaries", response_model=List[AttendanceSummaryResponse])
def list_summaries(
    employee_id: Optional[int] = None,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
    locked: Optional[bool] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return attendance_service.list_summaries(
        db, ctx.organization_id,
        employee_id=employee_id, period_start=period_start, period_end=period_end, locked=locked
    )


@router.post("/summaries/{summary_id}/unlock", response_model=AttendanceSummaryResponse)
@limiter.limit(WRITE_LIMIT)
def unlock_summary(
    request: Request,
    summary_id: int,
    payload: UnlockRequest = Body(...),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_role([UserRole.HR_ADMIN]))
):
    return attendance_service.unlock_summary(db, ctx, summary_id, payload.reason)
