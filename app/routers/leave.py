from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.core.limiter import WRITE_LIMIT, limiter
from app.core.policy import PolicyBundle
from app.database import get_db
from app.routers.auth_deps import get_policy, get_tenant_context, require_hr
from app.schemas.auth import TenantContext
from app.schemas.advisory import ConflictingLeave
from app.schemas.leave import (
    LeaveBalanceResponse,
    LeaveRequestCreate,
    LeaveRequestResponse,
    LeaveRequestResult,
    LeaveTypeCreate,
    LeaveTypeResponse,
    LeaveTypeUpdate,
)
from app.services import leave_balance, leave_service, leave_type_service
from app.services.conflict_service import find_conflicts

router = APIRouter(prefix="/leave", tags=["leave"])


def _ensure_can_view(ctx: TenantContext, employee_id: int):
    if employee_id != ctx.employee_id and not ctx.can_approve:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. You can only view your own leave data."
        )


# --- Requests ---

@router.post("/requests", response_model=LeaveRequestResult, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def submit_leave_request(
    request: Request,
    payload: LeaveRequestCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
    policy: PolicyBundle = Depends(get_policy)
):
    result = leave_service.submit_leave_request(
        db,
        ctx,
        leave_type_id=payload.leave_type_id,
        days=[leave_service.LeaveDay(date=d.date, day_type=d.day_type) for d in payload.days],
        policy=policy,
        employee_id=payload.employee_id,
        reason=payload.reason,
    )
    return {"request": result.request, "warnings": result.warnings}


@router.get("/requests", response_model=List[LeaveRequestResponse])
def list_leave_requests(
    employee_id: Optional[int] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context)
):
    # Employees only ever see their own requests
    if not ctx.can_approve:
        employee_id = ctx.employee_id
    return leave_service.list_requests(db, ctx.organization_id, employee_id=employee_id, status=status)


@router.get("/requests/{request_id}", response_model=LeaveRequestResponse)
def get_leave_request(
    request_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context)
):
    req = leave_service.get_request(db, ctx.organization_id, request_id)
    _ensure_can_view(ctx, req.employee_id)
    return req


# --- Balances & conflicts ---

@router.get("/balance/{employee_id}", response_model=List[LeaveBalanceResponse])
def get_leave_balance(
    employee_id: int,
    leave_type_id: Optional[int] = None,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
    policy: PolicyBundle = Depends(get_policy)
):
    """
    Balances are recomputed from the current requests on every call.
    `year` selects the fiscal year starting in that calendar year.
    """
    _ensure_can_view(ctx, employee_id)
    period = leave_balance.resolve_period(policy, year, date.today())
    if leave_type_id is not None:
        leave_type_service.get_leave_type(db, ctx.organization_id, leave_type_id)
        balances = [leave_balance.compute_balance(db, employee_id, leave_type_id, period)]
    else:
        balances = leave_balance.list_balances(db, ctx.organization_id, employee_id, period)
    return [b.to_dict() for b in balances]


@router.get("/conflicts", response_model=List[ConflictingLeave])
def get_team_conflicts(
    start_date: date,
    end_date: date,
    employee_id: Optional[int] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context)
):
    employee_id = employee_id or ctx.employee_id
    if employee_id is None:
        raise HTTPException(status_code=400, detail="employee_id is required")
    return find_conflicts(db, ctx.organization_id, employee_id, start_date, end_date)


# --- Leave types ---

@router.get("/types", response_model=List[LeaveTypeResponse])
def list_leave_types(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context)
):
    return leave_type_service.list_leave_types(db, ctx.organization_id, include_inactive=include_inactive)


@router.post("/types", response_model=LeaveTypeResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def create_leave_type(
    request: Request,
    payload: LeaveTypeCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return leave_type_service.create_leave_type(db, ctx, payload.model_dump())


@router.patch("/types/{leave_type_id}", response_model=LeaveTypeResponse)
@limiter.limit(WRITE_LIMIT)
def update_leave_type(
    request: Request,
    leave_type_id: int,
    payload: LeaveTypeUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr()),
    policy: PolicyBundle = Depends(get_policy)
):
    return leave_type_service.update_leave_type(
        db, ctx, leave_type_id, payload.model_dump(exclude_unset=True), policy
    )
