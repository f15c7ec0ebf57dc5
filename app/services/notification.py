import logging
from typing import Optional
from sqlalchemy.orm import Session
from app.models.notification import Notification

logger = logging.getLogger(__name__)

class NotificationService:
    @staticmethod
    def create_notification(
        db: Session,
        employee_id: int,
        title: str,
        message: str,
        type: str = "info",
        link: Optional[str] = None,
        organization_id: Optional[int] = None
    ) -> Notification:
        """
        Internal utility for creating notifications.
        Staged in a SAVEPOINT; the surrounding operation commits it.
        """
        with db.begin_nested():
            notification = Notification(
                employee_id=employee_id,
                title=title,
                message=message,
                type=type,
                link=link,
                organization_id=organization_id
            )
            db.add(notification)
        return notification

    @staticmethod
    def notify_user(
        db: Session,
        employee_id: Optional[int],
        title: str,
        message: str,
        type: str = "info",
        link: Optional[str] = None,
        organization_id: Optional[int] = None
    ) -> Optional[Notification]:
        """
        Best-effort notification trigger. Failures are logged, never raised.
        """
        if employee_id is None:
            return None
        try:
            return NotificationService.create_notification(
                db, employee_id, title, message, type, link, organization_id
            )
        except Exception as e:
            logger.warning(f"Notification failed: {e}", exc_info=True)
            return None
