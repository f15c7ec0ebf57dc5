from sqlalchemy import Column, Integer, String, Date, Float, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from app.database import Base
import enum

class AttendanceStatus(str, enum.Enum):
    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"

class TimeEntry(Base):
    """Raw per-day attendance record (clock-in/out)."""
    __tablename__ = "time_entries"
    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_time_entry_employee_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    work_date = Column(Date, nullable=False, index=True)
    clock_in = Column(DateTime, nullable=True)
    clock_out = Column(DateTime, nullable=True)
    break_minutes = Column(Integer, default=0, nullable=False)
    total_hours = Column(Float, default=0.0, nullable=False)
    late_minutes = Column(Integer, default=0, nullable=False)
    status = Column(String, default=AttendanceStatus.PRESENT.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
