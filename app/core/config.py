import os
import logging
from pydantic import BaseModel, Field
from datetime import date
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _parse_weekdays(raw: str) -> List[int]:
    return sorted({int(d.strip()) for d in raw.split(",") if d.strip()})


def _parse_dates(raw: str) -> List[date]:
    return sorted({date.fromisoformat(d.strip()) for d in raw.split(",") if d.strip()})


class PolicyDefaults(BaseModel):
    """
    Process-wide defaults for the leave/attendance policy bundle.
    Tenants may override a subset of these on their organization row.
    """
    # Monday=0 ... Sunday=6
    working_weekdays: List[int] = Field(
        default_factory=lambda: _parse_weekdays(os.getenv("WORKING_WEEKDAYS", "0,1,2,3,4"))
    )
    # Comma-separated ISO dates, e.g. 2026-01-01,2026-12-25
    holidays: List[date] = Field(default_factory=lambda: _parse_dates(os.getenv("HOLIDAYS", "")))
    hours_per_day: float = float(os.getenv("HOURS_PER_DAY", "8"))
    overtime_mode: str = os.getenv("OVERTIME_MODE", "daily")  # daily | period
    half_day_rule: str = os.getenv("HALF_DAY_RULE", "reduce_expected")  # reduce_expected | credit_paid_hours
    overdraw_policy: str = os.getenv("OVERDRAW_POLICY", "warn")  # warn | block
    overtime_rate: float = float(os.getenv("OVERTIME_RATE", "1.5"))
    aggregate_missing_on_complete: bool = os.getenv("AGGREGATE_MISSING_ON_COMPLETE", "false").lower() == "true"
    fiscal_year_start_month: int = int(os.getenv("FISCAL_YEAR_START_MONTH", "1"))


class Config(BaseModel):
    app_name: str = "Leave & Attendance Reconciliation Engine"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./database.db")

    version: str = "1.0.0"
    build_id: str = os.getenv("BUILD_ID", "local")
    request_id_header: str = "X-Request-ID"

    # CORS: comma-separated origins loaded from env.
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if o.strip()
        ]
    )

    # Rate limiting
    rate_limit_enabled: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    rate_limit_per_minute: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))

    # Leave / attendance policy
    policy: PolicyDefaults = Field(default_factory=PolicyDefaults)


settings = Config()

# --- Startup Validation ---
_logger = logging.getLogger(__name__)
_invalid = []
if settings.policy.overtime_mode not in ("daily", "period"):
    _invalid.append("OVERTIME_MODE")
if settings.policy.half_day_rule not in ("reduce_expected", "credit_paid_hours"):
    _invalid.append("HALF_DAY_RULE")
if settings.policy.overdraw_policy not in ("warn", "block"):
    _invalid.append("OVERDRAW_POLICY")
if not 1 <= settings.policy.fiscal_year_start_month <= 12:
    _invalid.append("FISCAL_YEAR_START_MONTH")
if any(d < 0 or d > 6 for d in settings.policy.working_weekdays):
    _invalid.append("WORKING_WEEKDAYS")
if _invalid:
    raise RuntimeError(
        f"FATAL: Invalid policy configuration for: {', '.join(_invalid)}. "
        f"Check the environment variables."
    )
if settings.environment == "development" and settings.database_url.startswith("sqlite"):
    _logger.info("Using SQLite database: only acceptable in development.")
