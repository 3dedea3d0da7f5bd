"""
Maintenance notifications

Lifecycle events are POSTed to a notification webhook, which owns email/SMS
delivery. Delivery is best effort: failures are logged and never undo or
block the transition that triggered them.
"""

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from app.core.config import get_settings
from app.models.enums import MaintenanceEvent

logger = logging.getLogger(__name__)

STAFF_GROUP = "role:staff"


class NotificationService:
    """Sends lifecycle events to the notification webhook."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def emit(self, event_type: str, payload: dict[str, Any]) -> bool:
        """Deliver one event. Returns False when it was not delivered."""
        if not payload.get("recipients"):
            logger.debug(f"[NOTIFY] {event_type}: no recipients, skipped")
            return False
        if not self.webhook_url:
            logger.info(f"[NOTIFY] {event_type} for {payload.get('request_id')} (webhook not configured)")
            return False

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.webhook_url,
                    json={
                        "event": event_type,
                        "sent_at": datetime.utcnow().isoformat(),
                        **payload,
                    },
                    timeout=self.timeout,
                )

                if response.status_code >= 400:
                    logger.warning(f"[NOTIFY] {event_type} delivery failed: {response.status_code}")
                    return False

                logger.info(f"[NOTIFY] {event_type} delivered for {payload.get('request_id')}")
                return True
        except Exception as e:
            logger.error(f"[NOTIFY] {event_type} delivery error: {e}")
            return False


def recipients_for(
    event: MaintenanceEvent,
    request: Any,
    author_role: Optional[str] = None,
    is_internal: bool = False,
) -> list[str]:
    """Who hears about ``event`` on ``request``."""
    rentee = str(request.rentee_id) if request.rentee_id else None
    assignee = str(request.assigned_to) if request.assigned_to else None

    if event == MaintenanceEvent.CREATE:
        recipients = [STAFF_GROUP]
    elif event == MaintenanceEvent.ASSIGN:
        recipients = [assignee, rentee]
    elif event in (MaintenanceEvent.START_WORK, MaintenanceEvent.COMPLETE):
        recipients = [rentee]
    elif event == MaintenanceEvent.CANCEL:
        recipients = [rentee, assignee]
    elif event == MaintenanceEvent.ADD_COMMENT:
        if author_role == "rentee":
            recipients = [assignee or STAFF_GROUP]
        elif is_internal:
            # Internal notes never reach the rentee
            recipients = [assignee]
        else:
            recipients = [rentee]
    else:
        recipients = []

    return [r for r in dict.fromkeys(recipients) if r]


def get_notification_service() -> NotificationService:
    settings = get_settings()
    return NotificationService(
        webhook_url=settings.notification_webhook_url,
        timeout=settings.notification_timeout_seconds,
    )
