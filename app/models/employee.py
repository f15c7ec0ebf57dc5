"""
Employee Model.
The subject of every leave request, time entry and attendance summary.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Float
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from app.database import Base


class EmploymentStatus(str, enum.Enum):
    ACTIVE = "active"
    PROBATION = "probation"
    ON_LEAVE = "on_leave"
    TERMINATED = "terminated"


# Employees that attendance summaries and payroll runs are generated for
PAYABLE_STATUSES = (
    EmploymentStatus.ACTIVE.value,
    EmploymentStatus.PROBATION.value,
    EmploymentStatus.ON_LEAVE.value,
)


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    manager_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)

    full_name = Column(String, nullable=False)
    email = Column(String, nullable=True, index=True)
    employment_status = Column(String, default=EmploymentStatus.ACTIVE.value, nullable=False)
    salary = Column(Float, nullable=True)  # Monthly base

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    organization = relationship("Organization", back_populates="employees")
    department = relationship("Department", back_populates="employees")
    manager = relationship("Employee", remote_side=[id])

    leave_requests = relationship("LeaveRequest", foreign_keys="LeaveRequest.employee_id", back_populates="employee")

    def __repr__(self):
        return f"<Employee {self.id}: {self.full_name}>"
