"""
Attendance Summary Model.
One row per (employee, period). Becomes immutable once is_locked is set by
the payroll reconciliation gate.
"""
from sqlalchemy import Column, Integer, String, Date, Float, ForeignKey, DateTime, Boolean, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


# Fields produced by the aggregator; compared to decide whether a recompute changed anything
COMPUTED_FIELDS = (
    "total_working_days",
    "days_present",
    "days_late",
    "late_minutes",
    "full_day_absents",
    "half_day_absents",
    "paid_leave_days",
    "unpaid_leave_days",
    "total_working_hours",
    "expected_hours",
    "overtime_hours",
)


class AttendanceSummary(Base):
    __tablename__ = "attendance_summaries"
    __table_args__ = (
        UniqueConstraint("employee_id", "period_start", "period_end", name="uq_attendance_summary_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)

    total_working_days = Column(Integer, default=0, nullable=False)
    days_present = Column(Integer, default=0, nullable=False)
    days_late = Column(Integer, default=0, nullable=False)
    late_minutes = Column(Integer, default=0, nullable=False)
    full_day_absents = Column(Integer, default=0, nullable=False)
    half_day_absents = Column(Integer, default=0, nullable=False)
    paid_leave_days = Column(Float, default=0.0, nullable=False)
    unpaid_leave_days = Column(Float, default=0.0, nullable=False)
    total_working_hours = Column(Float, default=0.0, nullable=False)
    expected_hours = Column(Float, default=0.0, nullable=False)
    overtime_hours = Column(Float, default=0.0, nullable=False)

    is_locked = Column(Boolean, default=False, nullable=False)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    locked_by = Column(Integer, ForeignKey("employees.id"), nullable=True)
    payroll_run_id = Column(Integer, ForeignKey("payroll_runs.id", ondelete="SET NULL"), nullable=True, index=True)

    calculated_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    employee = relationship("Employee", foreign_keys=[employee_id])

    def computed_values(self) -> dict:
        return {f: getattr(self, f) for f in COMPUTED_FIELDS}


class FlagStatus(str, enum.Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class LeaveReconciliationFlag(Base):
    """
    Marks a locked summary as stale relative to leave approved after the lock.
    Resolved by a human workflow; the locked summary itself is never rewritten.
    """
    __tablename__ = "leave_reconciliation_flags"
    __table_args__ = (
        UniqueConstraint("summary_id", "leave_request_id", name="uq_reconciliation_flag"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    summary_id = Column(Integer, ForeignKey("attendance_summaries.id"), nullable=False, index=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id"), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    status = Column(String, default=FlagStatus.OPEN.value, nullable=False, index=True)
    resolved_by = Column(Integer, ForeignKey("employees.id"), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    summary = relationship("AttendanceSummary")
