import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.core.policy import PolicyBundle
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.models.leave_type import LeaveType
from app.schemas.auth import TenantContext
from app.services.audit import AuditService

logger = logging.getLogger(__name__)

# Allocation-defining fields; frozen while the current fiscal year has live requests
ALLOCATION_FIELDS = ("default_days", "is_paid")


def list_leave_types(db: Session, organization_id: int, include_inactive: bool = False) -> List[LeaveType]:
    query = db.query(LeaveType).filter(LeaveType.organization_id == organization_id)
    if not include_inactive:
        query = query.filter(LeaveType.is_active.is_(True))
    return query.order_by(LeaveType.name).all()


def get_leave_type(db: Session, organization_id: int, leave_type_id: int) -> LeaveType:
    leave_type = db.query(LeaveType).filter(
        LeaveType.id == leave_type_id,
        LeaveType.organization_id == organization_id
    ).first()
    if not leave_type:
        raise NotFoundError("Leave type", leave_type_id)
    return leave_type


def create_leave_type(db: Session, ctx: TenantContext, data: dict) -> LeaveType:
    code = (data.get("code") or "").strip().upper()
    if not code:
        raise ValidationError("Leave type code is required")

    duplicate = db.query(LeaveType).filter(
        LeaveType.organization_id == ctx.organization_id,
        LeaveType.code == code
    ).first()
    if duplicate:
        raise ValidationError(f"Leave type code '{code}' already exists", details={"code": code})

    leave_type = LeaveType(**{**data, "code": code, "organization_id": ctx.organization_id})
    db.add(leave_type)
    try:
        db.flush()
        AuditService.log(
            db,
            action="create",
            entity_type="leave_types",
            entity_id=leave_type.id,
            user_id=ctx.employee_id,
            user_role=ctx.role.value,
            organization_id=ctx.organization_id,
            after_state={**data, "code": code},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave_type)
    logger.info(f"Leave type {code} created for organization {ctx.organization_id}")
    return leave_type


def _has_live_requests(db: Session, leave_type_id: int, policy: PolicyBundle, on: Optional[date] = None) -> bool:
    period = policy.fiscal_year(on or date.today())
    return db.query(LeaveRequest.id).filter(
        LeaveRequest.leave_type_id == leave_type_id,
        LeaveRequest.status != LeaveStatus.REJECTED.value,
        LeaveRequest.start_date >= period.start,
        LeaveRequest.start_date <= period.end,
    ).first() is not None


def update_leave_type(
    db: Session,
    ctx: TenantContext,
    leave_type_id: int,
    changes: dict,
    policy: PolicyBundle,
    today: Optional[date] = None,
) -> LeaveType:
    """
    Apply a partial update. Allocation fields cannot change mid-period once
    requests have been counted against them.
    """
    leave_type = get_leave_type(db, ctx.organization_id, leave_type_id)

    changed = {k: v for k, v in changes.items() if getattr(leave_type, k) != v}
    if not changed:
        return leave_type

    touched_allocation = [f for f in ALLOCATION_FIELDS if f in changed]
    if touched_allocation and _has_live_requests(db, leave_type_id, policy, today):
        raise ValidationError(
            "Cannot change allocation of a leave type with requests in the current fiscal year",
            details={"fields": touched_allocation},
        )

    before = {k: getattr(leave_type, k) for k in changed}
    for key, value in changed.items():
        setattr(leave_type, key, value)

    AuditService.log(
        db,
        action="update",
        entity_type="leave_types",
        entity_id=leave_type.id,
        user_id=ctx.employee_id,
        user_role=ctx.role.value,
        organization_id=ctx.organization_id,
        before_state=before,
        after_state=changed,
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave_type)
    return leave_type
