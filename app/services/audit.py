from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from app.services.base import BaseService
from app.models.audit_log import AuditLog


def _sanitize(obj: Any) -> Any:
    """Make nested values JSON-serializable for the audit columns."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(i) for i in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    return obj


class AuditService(BaseService):
    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        user_id: Optional[int] = None,
        user_role: Optional[str] = None,
        details: Optional[dict] = None,
        organization_id: Optional[int] = None,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None
    ):
        """
        Create a centralized audit log entry.
        Strictly append-only. Written inside a SAVEPOINT so that a failing
        audit insert is rolled back on its own and never takes the primary
        operation with it. The caller commits.
        """
        try:
            with self.db.begin_nested():
                db_log = AuditLog(
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    user_id=user_id,
                    user_role=user_role,
                    details=_sanitize(details or {}),
                    organization_id=organization_id or self.org_id,
                    before_state=_sanitize(before_state),
                    after_state=_sanitize(after_state)
                )
                self.db.add(db_log)
            return db_log
        except Exception as e:
            self._logger.error(f"FAILED TO AUDIT LOG: {e}", exc_info=True)
            return None  # Never break the main app flow because of a logging failure

    # Static wrapper for backward compatibility
    @staticmethod
    def log(db, *args, **kwargs):
        service = AuditService(db)
        return service.log_action(*args, **kwargs)
