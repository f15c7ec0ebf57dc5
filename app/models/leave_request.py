from sqlalchemy import Column, Integer, String, Date, Float, ForeignKey, DateTime, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum

class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class DayType(str, enum.Enum):
    FULL = "full"
    FIRST_HALF = "first_half"
    SECOND_HALF = "second_half"

    @property
    def fraction(self) -> float:
        return 1.0 if self is DayType.FULL else 0.5

class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False, index=True)
    end_date = Column(Date, nullable=False, index=True)
    total_days = Column(Float, nullable=False)  # Cached sum of the child day rows
    reason = Column(Text, nullable=True)
    status = Column(String, default=LeaveStatus.PENDING.value, nullable=False, index=True)

    # Multi-level approval
    approval_level = Column(Integer, default=0, nullable=False)  # Approvals granted so far
    required_levels = Column(Integer, default=1, nullable=False)
    reviewed_by = Column(Integer, ForeignKey("employees.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    employee = relationship("Employee", foreign_keys=[employee_id], back_populates="leave_requests")
    leave_type = relationship("LeaveType")
    days = relationship(
        "LeaveRequestDay",
        back_populates="leave_request",
        cascade="all, delete-orphan",
        order_by="LeaveRequestDay.date",
    )
    approval_history = relationship(
        "LeaveApprovalHistory",
        back_populates="leave_request",
        cascade="all, delete-orphan",
        order_by="LeaveApprovalHistory.id",
    )

class LeaveRequestDay(Base):
    __tablename__ = "leave_request_days"
    __table_args__ = (
        UniqueConstraint("leave_request_id", "date", name="uq_leave_request_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    day_type = Column(String, default=DayType.FULL.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    leave_request = relationship("LeaveRequest", back_populates="days")

    @property
    def fraction(self) -> float:
        return DayType(self.day_type).fraction

class LeaveApprovalHistory(Base):
    __tablename__ = "leave_approval_history"

    id = Column(Integer, primary_key=True, index=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    approver_id = Column(Integer, ForeignKey("employees.id"), nullable=True)
    level = Column(Integer, nullable=False)
    action = Column(String, nullable=False)  # approved | rejected
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    leave_request = relationship("LeaveRequest", back_populates="approval_history")
