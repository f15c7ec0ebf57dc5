from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import List, Literal, Optional

from app.models.leave_request import DayType
from app.schemas.advisory import EngineWarning

class LeaveDayIn(BaseModel):
    date: date
    day_type: DayType = DayType.FULL

class LeaveRequestCreate(BaseModel):
    employee_id: Optional[int] = None  # Defaults to the caller
    leave_type_id: int
    days: List[LeaveDayIn] = Field(default_factory=list)
    reason: Optional[str] = None

class LeaveRequestDayResponse(BaseModel):
    date: date
    day_type: str

    model_config = ConfigDict(from_attributes=True)

class LeaveRequestResponse(BaseModel):
    id: int
    employee_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    total_days: float
    reason: Optional[str] = None
    status: str
    approval_level: int
    required_levels: int
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    days: List[LeaveRequestDayResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

class LeaveRequestResult(BaseModel):
    request: LeaveRequestResponse
    warnings: List[EngineWarning] = Field(default_factory=list)

class LeaveDecisionRequest(BaseModel):
    decision: Literal["approve", "reject"]
    rejection_reason: Optional[str] = None
    comment: Optional[str] = None

class LeaveBalanceResponse(BaseModel):
    employee_id: int
    leave_type_id: int
    leave_type_name: Optional[str] = None
    period_start: date
    period_end: date
    allocated: float
    used: float
    pending: float
    remaining: float
    overdrawn: bool

class CalendarLeave(BaseModel):
    leave_request_id: int
    employee_id: int
    full_name: str
    leave_type_id: int
    start_date: date
    end_date: date
    total_days: float

class LeaveTypeCreate(BaseModel):
    name: str
    code: str = Field(max_length=10)
    description: Optional[str] = None
    default_days: float = Field(default=0.0, ge=0)
    is_paid: bool = True
    requires_approval: bool = True
    requires_document: bool = False
    accrual_rate: Optional[float] = None
    carry_over_limit: Optional[float] = Field(default=None, ge=0)
    max_consecutive_days: Optional[int] = Field(default=None, ge=0)
    min_notice_days: Optional[int] = Field(default=None, ge=0)
    approval_levels: int = Field(default=1, ge=1, le=3)

class LeaveTypeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    default_days: Optional[float] = Field(default=None, ge=0)
    is_paid: Optional[bool] = None
    requires_approval: Optional[bool] = None
    requires_document: Optional[bool] = None
    accrual_rate: Optional[float] = None
    carry_over_limit: Optional[float] = Field(default=None, ge=0)
    max_consecutive_days: Optional[int] = Field(default=None, ge=0)
    min_notice_days: Optional[int] = Field(default=None, ge=0)
    approval_levels: Optional[int] = Field(default=None, ge=1, le=3)
    is_active: Optional[bool] = None

class LeaveTypeResponse(LeaveTypeCreate):
    id: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
