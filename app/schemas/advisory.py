"""
Non-blocking advisories returned alongside successful results.
They are never raised; callers render them as banners.
"""
from datetime import date
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field


class EngineWarning(BaseModel):
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class OverdrawWarning(EngineWarning):
    code: Literal["OVERDRAW"] = "OVERDRAW"

    @classmethod
    def build(cls, requested: float, remaining: float, leave_type_id: int) -> "OverdrawWarning":
        return cls(
            message=f"Requested {requested} days exceeds remaining balance of {remaining} days",
            details={"requested": requested, "remaining": remaining, "leave_type_id": leave_type_id},
        )


class TeamConflictWarning(EngineWarning):
    code: Literal["TEAM_CONFLICT"] = "TEAM_CONFLICT"


class StaleSummaryWarning(EngineWarning):
    code: Literal["STALE_SUMMARY"] = "STALE_SUMMARY"


class MissingAttendanceDataWarning(EngineWarning):
    code: Literal["MISSING_ATTENDANCE_DATA"] = "MISSING_ATTENDANCE_DATA"

    @classmethod
    def build(cls, employee_id: int) -> "MissingAttendanceDataWarning":
        return cls(
            message=f"No attendance summary for employee {employee_id} in this period",
            details={"employee_id": employee_id},
        )


class UnpaidLeaveWarning(EngineWarning):
    code: Literal["UNPAID_LEAVE"] = "UNPAID_LEAVE"

    @classmethod
    def build(cls, employee_id: int, unpaid_days: float) -> "UnpaidLeaveWarning":
        return cls(
            message=f"Employee {employee_id} has {unpaid_days} unpaid leave days; review the deduction",
            details={"employee_id": employee_id, "unpaid_leave_days": unpaid_days},
        )


class ConflictingLeave(BaseModel):
    leave_request_id: int
    employee_id: int
    employee_name: str
    leave_type_name: Optional[str] = None
    start_date: date
    end_date: date
