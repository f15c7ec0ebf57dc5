from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from app.database import Base

class LeaveType(Base):
    __tablename__ = "leave_types"
    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_leave_type_org_code"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    code = Column(String(10), nullable=False)
    description = Column(String, nullable=True)
    default_days = Column(Float, default=0.0, nullable=False)  # Allocation per fiscal year
    is_paid = Column(Boolean, default=True, nullable=False)
    requires_approval = Column(Boolean, default=True, nullable=False)
    requires_document = Column(Boolean, default=False, nullable=False)
    accrual_rate = Column(Float, nullable=True)
    carry_over_limit = Column(Float, nullable=True)
    max_consecutive_days = Column(Integer, nullable=True)
    min_notice_days = Column(Integer, nullable=True)
    approval_levels = Column(Integer, default=1, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)  # Soft delete
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
