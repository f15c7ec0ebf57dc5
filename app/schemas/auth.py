"""
Tenant context supplied by the upstream identity layer.
The engine trusts it as-is and performs no identity verification.
"""
import enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UserRole(str, enum.Enum):
    """
    Roles with hierarchical permissions.

    Hierarchy (most to least permissions):
    - HR_ADMIN: Full HR access within organization, may unlock summaries
    - HR_MANAGER: Department-level HR access
    - MANAGER: Team manager (approvals for direct reports)
    - EMPLOYEE: Self-service access
    """
    HR_ADMIN = "HR_ADMIN"
    HR_MANAGER = "HR_MANAGER"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


class TenantContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    organization_id: int
    employee_id: Optional[int] = None
    role: UserRole = UserRole.EMPLOYEE

    @property
    def is_hr(self) -> bool:
        """Check if caller has any HR role."""
        return self.role in (UserRole.HR_ADMIN, UserRole.HR_MANAGER)

    @property
    def can_approve(self) -> bool:
        """Check if caller can approve requests."""
        return self.role in (UserRole.HR_ADMIN, UserRole.HR_MANAGER, UserRole.MANAGER)
