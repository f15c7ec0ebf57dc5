# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    organization, department, employee,
    leave_type, leave_request,
    time_entry, attendance_summary,
    payroll, audit_log, notification
)

# Explicit class exports for cleaner imports
from .organization import Organization
from .department import Department
from .employee import Employee, EmploymentStatus
from .leave_type import LeaveType
from .leave_request import LeaveRequest, LeaveRequestDay, LeaveApprovalHistory, LeaveStatus, DayType
from .time_entry import TimeEntry, AttendanceStatus
from .attendance_summary import AttendanceSummary, LeaveReconciliationFlag, FlagStatus
from .payroll import PayrollRun, PayrollEntry, PayrollRunStatus
from .audit_log import AuditLog
from .notification import Notification

__all__ = [
    "Organization",
    "Department",
    "Employee",
    "EmploymentStatus",
    "LeaveType",
    "LeaveRequest",
    "LeaveRequestDay",
    "LeaveApprovalHistory",
    "LeaveStatus",
    "DayType",
    "TimeEntry",
    "AttendanceStatus",
    "AttendanceSummary",
    "LeaveReconciliationFlag",
    "FlagStatus",
    "PayrollRun",
    "PayrollEntry",
    "PayrollRunStatus",
    "AuditLog",
    "Notification",
]
