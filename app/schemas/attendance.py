from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date, datetime
from typing import List, Optional

class TimeEntryCreate(BaseModel):
    employee_id: int
    work_date: date
    clock_in: Optional[datetime] = None
    clock_out: Optional[datetime] = None
    break_minutes: int = Field(default=0, ge=0)
    late_minutes: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_clock_order(self):
        if not (self.clock_in and self.clock_out):
            return self
        if (self.clock_in.tzinfo is None) != (self.clock_out.tzinfo is None):
            raise ValueError("clock_in and clock_out must both carry a UTC offset or both omit it")
        if self.clock_out < self.clock_in:
            raise ValueError("clock_out must not be earlier than clock_in")
        return self

class TimeEntryResponse(BaseModel):
    id: int
    employee_id: int
    work_date: date
    clock_in: Optional[datetime] = None
    clock_out: Optional[datetime] = None
    break_minutes: int
    total_hours: float
    late_minutes: int
    status: str

    model_config = ConfigDict(from_attributes=True)

class PeriodRequest(BaseModel):
    period_start: date
    period_end: date

class AggregateRequest(PeriodRequest):
    employee_id: int

class AttendanceSummaryResponse(BaseModel):
    id: int
    employee_id: int
    period_start: date
    period_end: date
    total_working_days: int
    days_present: int
    days_late: int
    late_minutes: int
    full_day_absents: int
    half_day_absents: int
    paid_leave_days: float
    unpaid_leave_days: float
    total_working_hours: float
    expected_hours: float
    overtime_hours: float
    is_locked: bool
    locked_at: Optional[datetime] = None
    payroll_run_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

class GenerateSummariesResponse(BaseModel):
    generated: List[AttendanceSummaryResponse] = Field(default_factory=list)
    skipped_locked: List[int] = Field(default_factory=list)

class UnlockRequest(BaseModel):
    reason: str = Field(min_length=1)
