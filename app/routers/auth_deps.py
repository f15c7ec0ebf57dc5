"""
Tenant-context dependencies.

Identity is established upstream; the caller's organization, employee id
and role arrive as request headers and are trusted as-is.
"""
import logging
from typing import Callable, List, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core.policy import PolicyBundle
from app.database import get_db
from app.models.organization import Organization
from app.schemas.auth import TenantContext, UserRole

logger = logging.getLogger(__name__)


def get_tenant_context(
    x_organization_id: Optional[int] = Header(default=None),
    x_employee_id: Optional[int] = Header(default=None),
    x_role: Optional[str] = Header(default=None),
) -> TenantContext:
    """
    Builds the TenantContext from the X-Organization-ID, X-Employee-ID and
    X-Role headers.
    """
    if x_organization_id is None:
        logger.warning("Tenant context missing: no X-Organization-ID header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing organization context"
        )
    try:
        role = UserRole(x_role.upper()) if x_role else UserRole.EMPLOYEE
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role '{x_role}'"
        )
    return TenantContext(organization_id=x_organization_id, employee_id=x_employee_id, role=role)


def require_role(allowed_roles: List[UserRole]) -> Callable:
    """
    Dependency factory that checks if the caller has one of the allowed roles.

    Usage:
        @router.post("/types")
        def create_type(ctx: TenantContext = Depends(require_role([UserRole.HR_ADMIN]))):
            ...
    """
    def role_checker(ctx: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        if ctx.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {[r.value for r in allowed_roles]}"
            )
        return ctx
    return role_checker


def require_hr():
    """Shorthand for requiring any HR role."""
    return require_role([UserRole.HR_ADMIN, UserRole.HR_MANAGER])


def require_manager():
    """Shorthand for requiring any approver role."""
    return require_role([UserRole.HR_ADMIN, UserRole.HR_MANAGER, UserRole.MANAGER])


def get_policy(
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db)
) -> PolicyBundle:
    """Policy bundle for this request: process defaults overlaid with the tenant's overrides."""
    organization = db.get(Organization, ctx.organization_id)
    return PolicyBundle.for_organization(organization)
