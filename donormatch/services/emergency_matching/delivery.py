"""
Notification delivery adapters.

Delivery transport (push, SMS, voice) is external; these adapters write the
in-app notification rows the transports fan out from.
"""
import logging
from typing import Any, Dict, Optional

from ..supabase_service import SupabaseError, SupabaseService
from .errors import NotificationDeliveryError

logger = logging.getLogger(__name__)

REQUESTER_TITLE = "🎉 Donor Found!"


class SupabaseNotificationDelivery:
    """Donor notifications as rows in the `notifications` table."""

    TABLE = "notifications"

    def __init__(self, service: SupabaseService):
        self.service = service

    async def send(self, donor_id: str, title: str, message: str, metadata: Dict[str, Any]) -> None:
        row = {
            "user_id": metadata.get("contact_id") or donor_id,
            "title": title,
            "message": message,
            "type": metadata.get("type", "blood_request"),
            "data": {k: v for k, v in metadata.items() if k not in ("type", "contact_id")},
            "is_read": False,
        }
        try:
            await self.service.insert(self.TABLE, [row])
        except SupabaseError as e:
            raise NotificationDeliveryError(donor_id, str(e)) from e


class SupabaseRequesterNotifier:
    """Requester notifications in the same `notifications` table."""

    TABLE = "notifications"

    def __init__(self, service: SupabaseService):
        self.service = service

    async def notify(self, requester_id: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self.service.insert(self.TABLE, [{
            "user_id": requester_id,
            "title": REQUESTER_TITLE,
            "message": message,
            "type": "donor_accepted",
            "data": metadata or {},
            "is_read": False,
        }])


class LoggingNotificationDelivery:
    """Development delivery: logs instead of sending."""

    async def send(self, donor_id: str, title: str, message: str, metadata: Dict[str, Any]) -> None:
        logger.info(f"📱 [{metadata.get('priority', 'STANDARD')}] {donor_id}: {title} - {message}")


class LoggingRequesterNotifier:
    """Development requester notifier: logs instead of sending."""

    async def notify(self, requester_id: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        logger.info(f"📣 Requester {requester_id}: {message}")
