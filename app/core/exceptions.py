from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class ValidationError(AppException):
    """Malformed input. Never partially applied; the caller corrects and resubmits."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details=details
        )

class InsufficientBalanceError(ValidationError):
    """Raised only when the tenant's overdraw policy is 'block'."""
    def __init__(self, requested: float, remaining: float):
        super().__init__(
            message=f"Insufficient leave balance. Requested: {requested}, Remaining: {remaining}",
            details={"requested": requested, "remaining": remaining},
            error_code="INSUFFICIENT_BALANCE"
        )

class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity} {entity_id} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"entity": entity, "id": entity_id}
        )

class AlreadyDecidedError(AppException):
    def __init__(self, request_id: int, status: Optional[str] = None):
        super().__init__(
            message=f"Leave request {request_id} has already been decided",
            status_code=409,
            error_code="ALREADY_DECIDED",
            details={"request_id": request_id, "status": status}
        )

class InvalidTransitionError(AppException):
    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            message=f"Cannot move {entity} from '{current}' to '{target}'",
            status_code=409,
            error_code="INVALID_TRANSITION",
            details={"current": current, "target": target}
        )

class LockedSummaryError(AppException):
    """Aggregation attempted against a summary consumed by a completed payroll run."""
    def __init__(self, employee_id: int, period_start: Any, period_end: Any):
        super().__init__(
            message=(
                f"Attendance summary for employee {employee_id} "
                f"({period_start} to {period_end}) is locked"
            ),
            status_code=423,
            error_code="SUMMARY_LOCKED",
            details={
                "employee_id": employee_id,
                "period_start": str(period_start),
                "period_end": str(period_end),
            }
        )

class AccessDeniedError(AppException):
    """Custom permission error. Named AccessDeniedError to avoid shadowing Python's built-in PermissionError."""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="PERMISSION_DENIED"
        )
