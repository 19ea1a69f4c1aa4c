"""
Notification Schemas for real-time events and client messages
"""

from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field

class NotificationEvent(str, Enum):
    """Event types pushed to user rooms"""

    NEW_BLOOD_REQUEST = "new_blood_request"
    DONOR_RESPONSE = "donor_response"
    REQUEST_STATUS_CHANGED = "request_status_changed"
    REQUEST_CANCELLED = "request_cancelled"
    NEW_MESSAGE = "new_message"

class DirectMessage(BaseModel):
    """Message a client sends over its WebSocket to another user"""

    type: str = Field(..., pattern=r"^direct_message$")
    recipient_id: UUID = Field(..., description="User to deliver the message to")
    message: str = Field(..., min_length=1, max_length=2000)


class ConnectionStats(BaseModel):
    total_connections: int = Field(..., description="Open SSE and WebSocket connections")
    sse_connections: int
    websocket_connections: int
    active_users: int
    users: List[str] = []
    connections_per_user: Dict[str, int] = {}
    error: Optional[str] = None
