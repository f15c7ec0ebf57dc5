from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.limiter import WRITE_LIMIT, limiter
from app.core.policy import PolicyBundle
from app.database import get_db
from app.routers.auth_deps import get_policy, require_hr, require_manager
from app.schemas.auth import TenantContext
from app.schemas.leave import CalendarLeave, LeaveDecisionRequest, LeaveRequestResponse, LeaveRequestResult
from app.services import leave_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/leave", tags=["leave-manager"])


# Manager / HR decision endpoint
@router.post("/requests/{request_id}/decision", response_model=LeaveRequestResult)
@limiter.limit(WRITE_LIMIT)
def decide_leave(
    request: Request,
    request_id: int,
    decision: LeaveDecisionRequest,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_manager()),
    policy: PolicyBundle = Depends(get_policy)
):
    result = leave_service.decide_leave_request(
        db,
        ctx,
        request_id,
        decision.decision,
        policy,
        rejection_reason=decision.rejection_reason,
        comment=decision.comment,
    )
    return {"request": result.request, "warnings": result.warnings}


@router.post("/requests/{request_id}/recalculate", response_model=LeaveRequestResponse)
def recalculate_leave_days(
    request_id: int,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_hr())
):
    return leave_service.recalculate_total_days(db, ctx, request_id)


@router.get("/calendar", response_model=List[CalendarLeave])
def get_leave_calendar(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_manager())
):
    """Approved leave across the organization, for team planning."""
    return leave_service.leave_calendar(db, ctx.organization_id, start_date, end_date)
