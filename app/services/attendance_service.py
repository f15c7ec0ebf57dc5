"""
Attendance Summary Aggregator

Rolls raw time entries and approved leave days up into one
AttendanceSummary per (employee, period). The arithmetic is a pure
function of its inputs and the PolicyBundle; the surrounding code handles
the row lock, the locked-summary guard and the write.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from app.core.exceptions import (
    AccessDeniedError,
    InvalidTransitionError,
    LockedSummaryError,
    NotFoundError,
    ValidationError,
)
from app.core.policy import PolicyBundle
from app.models.attendance_summary import AttendanceSummary
from app.models.employee import PAYABLE_STATUSES, Employee
from app.models.leave_request import LeaveRequest, LeaveRequestDay, LeaveStatus
from app.models.leave_type import LeaveType
from app.models.time_entry import AttendanceStatus, TimeEntry
from app.schemas.auth import TenantContext, UserRole
from app.services.audit import AuditService

logger = logging.getLogger(__name__)

PRESENT_STATUSES = (AttendanceStatus.PRESENT.value, AttendanceStatus.LATE.value)


@dataclass(frozen=True)
class DayRecord:
    work_date: date
    total_hours: float = 0.0
    late_minutes: int = 0
    status: str = AttendanceStatus.PRESENT.value

    @property
    def is_presence(self) -> bool:
        return self.total_hours > 0 or self.status in PRESENT_STATUSES


@dataclass(frozen=True)
class LeaveDayInput:
    date: date
    fraction: float
    is_paid: bool


@dataclass
class GenerationResult:
    generated: List[AttendanceSummary] = field(default_factory=list)
    skipped_locked: List[int] = field(default_factory=list)


def _r(value: float) -> float:
    return round(value, 2)


def compute_summary_values(
    policy: PolicyBundle,
    period_start: date,
    period_end: date,
    records: Iterable[DayRecord],
    leave_days: Iterable[LeaveDayInput],
) -> Dict[str, float]:
    """
    Pure aggregation of one employee's period.

    Absences are counted per working day without presence: a full leave day
    covers it, a half leave day leaves a half-day absence, anything else is
    a full-day absence. How leave affects hours depends on
    `policy.half_day_rule`:

    - reduce_expected: leave lowers that day's expected hours by its fraction
    - credit_paid_hours: paid leave credits fraction * hours_per_day to the
      worked hours; expected hours are unchanged
    """
    if period_end < period_start:
        raise ValidationError("period_end must not be earlier than period_start")

    records = [r for r in records if period_start <= r.work_date <= period_end]
    by_date = {r.work_date: r for r in records}

    leave_fraction: Dict[date, float] = defaultdict(float)
    paid_fraction: Dict[date, float] = defaultdict(float)
    paid_leave_days = 0.0
    unpaid_leave_days = 0.0
    for ld in leave_days:
        if not (period_start <= ld.date <= period_end):
            continue
        # A day is never on leave more than once
        fraction = min(ld.fraction, 1.0 - leave_fraction[ld.date])
        if fraction <= 0:
            continue
        leave_fraction[ld.date] += fraction
        if ld.is_paid:
            paid_leave_days += fraction
            paid_fraction[ld.date] += fraction
        else:
            unpaid_leave_days += fraction

    working_days = list(policy.iter_working_days(period_start, period_end))

    full_day_absents = 0
    half_day_absents = 0
    for day in working_days:
        record = by_date.get(day)
        if record is not None and record.is_presence:
            continue
        covered = leave_fraction.get(day, 0.0)
        if covered >= 1.0:
            continue
        if covered > 0:
            half_day_absents += 1
        else:
            full_day_absents += 1

    # Per-day hours; non-working days have zero expected hours
    hours_per_day = policy.hours_per_day
    day_hours: Dict[date, float] = defaultdict(float)
    day_expected: Dict[date, float] = {}
    for record in records:
        day_hours[record.work_date] += record.total_hours or 0.0
    for day in working_days:
        if policy.half_day_rule == "reduce_expected":
            day_expected[day] = hours_per_day * (1.0 - leave_fraction.get(day, 0.0))
        else:
            day_expected[day] = hours_per_day
            if paid_fraction.get(day):
                day_hours[day] += hours_per_day * paid_fraction[day]

    total_hours = sum(day_hours.values())
    expected_hours = sum(day_expected.values())
    if policy.overtime_mode == "daily":
        overtime = sum(
            max(0.0, hours - day_expected.get(day, 0.0))
            for day, hours in day_hours.items()
        )
    else:
        overtime = max(0.0, total_hours - expected_hours)

    return {
        "total_working_days": len(working_days),
        "days_present": sum(1 for r in records if r.is_presence),
        "days_late": sum(1 for r in records if r.is_presence and (r.late_minutes or 0) > 0),
        "late_minutes": sum(r.late_minutes or 0 for r in records if r.is_presence),
        "full_day_absents": full_day_absents,
        "half_day_absents": half_day_absents,
        "paid_leave_days": _r(paid_leave_days),
        "unpaid_leave_days": _r(unpaid_leave_days),
        "total_working_hours": _r(total_hours),
        "expected_hours": _r(expected_hours),
        "overtime_hours": _r(overtime),
    }


# ==========================================
# LOADERS
# ==========================================

def _get_employee(db: Session, organization_id: int, employee_id: int) -> Employee:
    employee = db.query(Employee).filter(
        Employee.id == employee_id,
        Employee.organization_id == organization_id
    ).first()
    if not employee:
        raise NotFoundError("Employee", employee_id)
    return employee


def _load_records(db: Session, employee_id: int, start: date, end: date) -> List[DayRecord]:
    entries = db.query(TimeEntry).filter(
        TimeEntry.employee_id == employee_id,
        TimeEntry.work_date >= start,
        TimeEntry.work_date <= end
    ).order_by(TimeEntry.work_date).all()
    return [
        DayRecord(
            work_date=e.work_date,
            total_hours=float(e.total_hours or 0),
            late_minutes=e.late_minutes or 0,
            status=e.status,
        )
        for e in entries
    ]


def _load_leave_days(db: Session, employee_id: int, start: date, end: date) -> List[LeaveDayInput]:
    rows = (
        db.query(LeaveRequestDay, LeaveType.is_paid)
        .join(LeaveRequest, LeaveRequestDay.leave_request_id == LeaveRequest.id)
        .join(LeaveType, LeaveRequest.leave_type_id == LeaveType.id)
        .filter(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status == LeaveStatus.APPROVED.value,
            LeaveRequestDay.date >= start,
            LeaveRequestDay.date <= end,
        )
        .order_by(LeaveRequestDay.date, LeaveRequestDay.id)
        .all()
    )
    return [LeaveDayInput(date=day.date, fraction=day.fraction, is_paid=bool(is_paid)) for day, is_paid in rows]


def get_summary_for_period(
    db: Session,
    organization_id: int,
    employee_id: int,
    period_start: date,
    period_end: date,
    for_update: bool = False
) -> Optional[AttendanceSummary]:
    query = db.query(AttendanceSummary).filter(
        AttendanceSummary.organization_id == organization_id,
        AttendanceSummary.employee_id == employee_id,
        AttendanceSummary.period_start == period_start,
        AttendanceSummary.period_end == period_end,
    )
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_summary(db: Session, organization_id: int, summary_id: int) -> AttendanceSummary:
    summary = db.query(AttendanceSummary).filter(
        AttendanceSummary.id == summary_id,
        AttendanceSummary.organization_id == organization_id
    ).first()
    if not summary:
        raise NotFoundError("Attendance summary", summary_id)
    return summary


def list_summaries(
    db: Session,
    organization_id: int,
    employee_id: Optional[int] = None,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
    locked: Optional[bool] = None
) -> List[AttendanceSummary]:
    query = db.query(AttendanceSummary).filter(AttendanceSummary.organization_id == organization_id)
    if employee_id:
        query = query.filter(AttendanceSummary.employee_id == employee_id)
    if period_start:
        query = query.filter(AttendanceSummary.period_start == period_start)
    if period_end:
        query = query.filter(AttendanceSummary.period_end == period_end)
    if locked is not None:
        query = query.filter(AttendanceSummary.is_locked.is_(locked))
    return query.order_by(AttendanceSummary.period_start.desc(), AttendanceSummary.employee_id).all()


# ==========================================
# WRITES
# ==========================================

def derive_hours(clock_in: Optional[datetime], clock_out: Optional[datetime], break_minutes: int = 0) -> float:
    if not clock_in or not clock_out:
        return 0.0
    if (clock_in.tzinfo is None) != (clock_out.tzinfo is None):
        raise ValidationError("clock_in and clock_out must both carry a UTC offset or both omit it")
    worked = (clock_out - clock_in).total_seconds() / 3600 - (break_minutes or 0) / 60
    return round(max(0.0, worked), 2)


def record_time_entry(
    db: Session,
    organization_id: int,
    employee_id: int,
    work_date: date,
    clock_in: Optional[datetime] = None,
    clock_out: Optional[datetime] = None,
    break_minutes: int = 0,
    late_minutes: int = 0,
) -> TimeEntry:
    """
    Create or replace the raw attendance record for one employee and day.
    Days already covered by a locked summary are rejected.
    """
    _get_employee(db, organization_id, employee_id)

    locked = db.query(AttendanceSummary).filter(
        AttendanceSummary.employee_id == employee_id,
        AttendanceSummary.is_locked.is_(True),
        AttendanceSummary.period_start <= work_date,
        AttendanceSummary.period_end >= work_date,
    ).first()
    if locked:
        raise LockedSummaryError(employee_id, locked.period_start, locked.period_end)

    total_hours = derive_hours(clock_in, clock_out, break_minutes)
    if clock_in is None and total_hours == 0:
        status = AttendanceStatus.ABSENT.value
        late_minutes = 0
    elif late_minutes > 0:
        status = AttendanceStatus.LATE.value
    else:
        status = AttendanceStatus.PRESENT.value

    entry = db.query(TimeEntry).filter(
        TimeEntry.employee_id == employee_id,
        TimeEntry.work_date == work_date
    ).first()
    if entry is None:
        entry = TimeEntry(organization_id=organization_id, employee_id=employee_id, work_date=work_date)
        db.add(entry)

    entry.clock_in = clock_in
    entry.clock_out = clock_out
    entry.break_minutes = break_minutes
    entry.late_minutes = late_minutes
    entry.total_hours = total_hours
    entry.status = status

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    return entry


@retry(
    stop=stop_after_attempt(2),
    retry=retry_if_exception_type(IntegrityError),
    reraise=True,
)
def _write_summary(
    db: Session,
    organization_id: int,
    employee_id: int,
    period_start: date,
    period_end: date,
    policy: PolicyBundle,
) -> AttendanceSummary:
    summary = get_summary_for_period(db, organization_id, employee_id, period_start, period_end, for_update=True)
    if summary is not None and summary.is_locked:
        db.rollback()
        raise LockedSummaryError(employee_id, period_start, period_end)

    values = compute_summary_values(
        policy,
        period_start,
        period_end,
        _load_records(db, employee_id, period_start, period_end),
        _load_leave_days(db, employee_id, period_start, period_end),
    )
    now = datetime.now(timezone.utc)

    if summary is None:
        summary = AttendanceSummary(
            organization_id=organization_id,
            employee_id=employee_id,
            period_start=period_start,
            period_end=period_end,
            calculated_at=now,
            **values,
        )
        db.add(summary)
        try:
            db.commit()
        except IntegrityError:
            # Another writer inserted the same key first; the retry takes the update path
            db.rollback()
            logger.info(f"Summary insert race for employee {employee_id}, retrying as update")
            raise
        db.refresh(summary)
        logger.info(f"Attendance summary {summary.id} created for employee {employee_id} ({period_start} to {period_end})")
        return summary

    if summary.computed_values() == values:
        db.commit()
        return summary

    updated = db.query(AttendanceSummary).filter(
        AttendanceSummary.id == summary.id,
        AttendanceSummary.is_locked.is_(False)
    ).update({**values, "calculated_at": now}, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise LockedSummaryError(employee_id, period_start, period_end)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(summary)
    logger.info(f"Attendance summary {summary.id} recalculated for employee {employee_id}")
    return summary


def aggregate(
    db: Session,
    organization_id: int,
    employee_id: int,
    period_start: date,
    period_end: date,
    policy: PolicyBundle,
) -> AttendanceSummary:
    """
    Compute and persist the summary for (employee, period).

    Concurrent aggregations of the same key serialize on the row lock. A
    locked summary raises LockedSummaryError and is left untouched; a
    recomputation that yields the stored values writes nothing.
    """
    if period_end < period_start:
        raise ValidationError("period_end must not be earlier than period_start")
    _get_employee(db, organization_id, employee_id)
    return _write_summary(db, organization_id, employee_id, period_start, period_end, policy)


def generate_summaries(
    db: Session,
    organization_id: int,
    period_start: date,
    period_end: date,
    policy: PolicyBundle,
) -> GenerationResult:
    """Aggregate every payable employee of the tenant. Locked rows are skipped, not failed."""
    if period_end < period_start:
        raise ValidationError("period_end must not be earlier than period_start")

    employee_ids = [
        emp_id for (emp_id,) in db.query(Employee.id).filter(
            Employee.organization_id == organization_id,
            Employee.employment_status.in_(PAYABLE_STATUSES)
        ).order_by(Employee.id).all()
    ]

    result = GenerationResult()
    for employee_id in employee_ids:
        try:
            result.generated.append(aggregate(db, organization_id, employee_id, period_start, period_end, policy))
        except LockedSummaryError:
            result.skipped_locked.append(employee_id)

    logger.info(
        f"Generated {len(result.generated)} attendance summaries for organization {organization_id} "
        f"({len(result.skipped_locked)} locked)"
    )
    return result


def unlock_summary(db: Session, ctx: TenantContext, summary_id: int, reason: str) -> AttendanceSummary:
    """
    Manual unlock procedure. The only path that clears `is_locked`;
    restricted to HR admins and always audited.
    """
    if ctx.role != UserRole.HR_ADMIN:
        raise AccessDeniedError("Only HR admins can unlock attendance summaries")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("An unlock reason is required")

    summary = get_summary(db, ctx.organization_id, summary_id)
    before = {
        "is_locked": summary.is_locked,
        "locked_at": summary.locked_at,
        "locked_by": summary.locked_by,
        "payroll_run_id": summary.payroll_run_id,
    }

    updated = db.query(AttendanceSummary).filter(
        AttendanceSummary.id == summary.id,
        AttendanceSummary.is_locked.is_(True)
    ).update({
        "is_locked": False,
        "locked_at": None,
        "locked_by": None,
        "payroll_run_id": None,
        "notes": reason,
    }, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise InvalidTransitionError("attendance summary", "unlocked", "unlocked")

    AuditService.log(
        db,
        action="unlock",
        entity_type="attendance_summaries",
        entity_id=summary.id,
        user_id=ctx.employee_id,
        user_role=ctx.role.value,
        details={"reason": reason},
        organization_id=ctx.organization_id,
        before_state=before,
        after_state={"is_locked": False},
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(summary)
    logger.warning(f"Attendance summary {summary.id} unlocked by {ctx.employee_id}: {reason}")
    return summary
