from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import UUID
import logging

from app.schemas.notification_schema import NotificationEvent
from app.schemas.request_schema import RequestStatus
from app.services.notification_sse import ConnectionManager

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Pushes domain events into user rooms.

    Best effort: every failure is logged and swallowed so a broken connection
    can never undo or block a committed state change. One instance is created
    at application start-up and handed to the services that need it.
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    @staticmethod
    def build_message(event: NotificationEvent, data: dict) -> dict:
        return {
            "type": NotificationEvent(event).value,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def send(self, user_id, event: NotificationEvent, data: dict) -> int:
        """Send one event to one user's room; returns the connections reached"""
        try:
            message = self.build_message(event, data)
            sent = await self.manager.send_personal_message(str(user_id), message)
            logger.debug(
                f"Event {message['type']} for user {user_id} reached {sent} connections"
            )
            return sent
        except Exception as e:
            logger.error(
                f"Error sending {event} notification to user {user_id}: {e}",
                extra={"event_type": "notification_failed", "user_id": str(user_id)},
            )
            return 0

    async def send_many(self, user_ids: Iterable, event: NotificationEvent, data: dict) -> int:
        sent = 0
        recipients = 0
        for user_id in user_ids:
            recipients += 1
            sent += await self.send(user_id, event, data)
        logger.info(
            f"Event {NotificationEvent(event).value} fanned out to {recipients} users "
            f"({sent} live connections)"
        )
        return sent

    # --- Domain events ---

    async def notify_new_blood_request(self, blood_request, donor_ids: Iterable[UUID]) -> int:
        return await self.send_many(
            donor_ids, NotificationEvent.NEW_BLOOD_REQUEST, blood_request.to_dict()
        )

    async def notify_donor_response(self, blood_request, donor_id: UUID, response: str) -> int:
        return await self.send(
            blood_request.requester_id,
            NotificationEvent.DONOR_RESPONSE,
            {
                "request_id": str(blood_request.id),
                "donor_id": str(donor_id),
                "response": response,
            },
        )

    async def notify_status_changed(
        self, blood_request, old_status: Optional[str] = None
    ) -> int:
        """Tell the donors contacted at creation that the request reached a new status"""
        new_status = RequestStatus(blood_request.status).value
        return await self.send_many(
            blood_request.notified_donor_ids(),
            NotificationEvent.REQUEST_STATUS_CHANGED,
            {
                "request_id": str(blood_request.id),
                "old_status": old_status,
                "status": new_status,
            },
        )

    async def notify_request_cancelled(self, blood_request) -> int:
        return await self.send_many(
            blood_request.notified_donor_ids(),
            NotificationEvent.REQUEST_CANCELLED,
            {"request_id": str(blood_request.id)},
        )

    async def send_direct_message(self, sender_id, recipient_id, message: str) -> int:
        return await self.send(
            recipient_id,
            NotificationEvent.NEW_MESSAGE,
            {
                "sender_id": str(sender_id),
                "message": message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
