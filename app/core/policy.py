"""
Policy bundle for leave and attendance computations.

Everything the balance calculator and the aggregator need to know about a
tenant's working calendar and hour rules is carried by a PolicyBundle that
is passed explicitly to each call. No service reads these values from
module-level state.
"""
from datetime import date, timedelta
from typing import FrozenSet, Iterator, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.config import PolicyDefaults, settings

OVERTIME_MODES = ("daily", "period")
HALF_DAY_RULES = ("reduce_expected", "credit_paid_hours")
OVERDRAW_POLICIES = ("warn", "block")


class BalancePeriod(BaseModel):
    """Inclusive date window a balance is computed for (a fiscal year by default)."""
    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class PolicyBundle(BaseModel):
    model_config = ConfigDict(frozen=True)

    working_weekdays: FrozenSet[int] = frozenset({0, 1, 2, 3, 4})
    holidays: FrozenSet[date] = frozenset()
    hours_per_day: float = Field(default=8.0, gt=0)
    overtime_mode: str = "daily"
    half_day_rule: str = "reduce_expected"
    overdraw_policy: str = "warn"
    overtime_rate: float = 1.5
    aggregate_missing_on_complete: bool = False
    fiscal_year_start_month: int = Field(default=1, ge=1, le=12)

    @field_validator("overtime_mode")
    @classmethod
    def _check_overtime_mode(cls, v: str) -> str:
        if v not in OVERTIME_MODES:
            raise ValueError(f"overtime_mode must be one of {OVERTIME_MODES}")
        return v

    @field_validator("half_day_rule")
    @classmethod
    def _check_half_day_rule(cls, v: str) -> str:
        if v not in HALF_DAY_RULES:
            raise ValueError(f"half_day_rule must be one of {HALF_DAY_RULES}")
        return v

    @field_validator("overdraw_policy")
    @classmethod
    def _check_overdraw_policy(cls, v: str) -> str:
        if v not in OVERDRAW_POLICIES:
            raise ValueError(f"overdraw_policy must be one of {OVERDRAW_POLICIES}")
        return v

    @classmethod
    def from_defaults(cls, defaults: Optional[PolicyDefaults] = None) -> "PolicyBundle":
        d = defaults or settings.policy
        return cls(
            working_weekdays=frozenset(d.working_weekdays),
            holidays=frozenset(d.holidays),
            hours_per_day=d.hours_per_day,
            overtime_mode=d.overtime_mode,
            half_day_rule=d.half_day_rule,
            overdraw_policy=d.overdraw_policy,
            overtime_rate=d.overtime_rate,
            aggregate_missing_on_complete=d.aggregate_missing_on_complete,
            fiscal_year_start_month=d.fiscal_year_start_month,
        )

    @classmethod
    def for_organization(cls, organization, defaults: Optional[PolicyDefaults] = None) -> "PolicyBundle":
        """Process defaults overlaid with whatever the tenant row overrides."""
        base = cls.from_defaults(defaults)
        if organization is None:
            return base
        overrides = {}
        for field in ("overdraw_policy", "hours_per_day", "overtime_mode", "half_day_rule"):
            value = getattr(organization, field, None)
            if value is not None:
                overrides[field] = value
        if not overrides:
            return base
        # model_copy skips validation; rebuild so tenant values are checked too
        return cls(**{**base.model_dump(), **overrides})

    # --- Calendar -----------------------------------------------------------

    def is_working_day(self, day: date) -> bool:
        return day.weekday() in self.working_weekdays and day not in self.holidays

    def is_weekend(self, day: date) -> bool:
        return day.weekday() not in self.working_weekdays

    def iter_working_days(self, start: date, end: date) -> Iterator[date]:
        day = start
        while day <= end:
            if self.is_working_day(day):
                yield day
            day += timedelta(days=1)

    def count_working_days(self, start: date, end: date) -> int:
        return sum(1 for _ in self.iter_working_days(start, end))

    def fiscal_year(self, on: date) -> BalancePeriod:
        """The fiscal year containing `on`."""
        month = self.fiscal_year_start_month
        start_year = on.year if on.month >= month else on.year - 1
        start = date(start_year, month, 1)
        if month == 1:
            end = date(start_year, 12, 31)
        else:
            end = date(start_year + 1, month, 1) - timedelta(days=1)
        return BalancePeriod(start=start, end=end)

    def fiscal_year_starting(self, year: int) -> BalancePeriod:
        return self.fiscal_year(date(year, self.fiscal_year_start_month, 1))
