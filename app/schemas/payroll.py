from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from app.schemas.advisory import EngineWarning

class PayrollRunCreate(BaseModel):
    name: str
    period_start: date
    period_end: date
    employee_ids: Optional[List[int]] = None  # Defaults to every payable employee

    @model_validator(mode="after")
    def _check_period(self):
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be earlier than period_start")
        return self

class PayrollRunResponse(BaseModel):
    id: int
    name: str
    period_start: date
    period_end: date
    status: str
    processed_at: Optional[datetime] = None
    employee_ids: List[int] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

class ReconciliationReportResponse(BaseModel):
    payroll_run_id: int
    status: str
    locked: List[int] = Field(default_factory=list)
    already_locked: List[int] = Field(default_factory=list)
    failures: List[Dict[str, Any]] = Field(default_factory=list)
    warnings: List[EngineWarning] = Field(default_factory=list)

class ReconciliationFlagResponse(BaseModel):
    id: int
    summary_id: int
    leave_request_id: int
    reason: str
    status: str
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class ResolveFlagRequest(BaseModel):
    note: Optional[str] = None

class AttendancePayResponse(BaseModel):
    employee_id: int
    base_salary: float
    daily_rate: float
    days_worked: int
    days_absent: int
    unpaid_leave_days: float
    overtime_hours: float
    overtime_pay: float
    deductions: float
    prorated_salary: float
