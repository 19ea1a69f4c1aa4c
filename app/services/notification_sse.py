"""
Real-time connection manager

Keeps one room per user id. A room holds the user's open Server-Sent Events
queues and WebSocket connections; a message sent to the room goes to all of
them. Delivery is at-most-once: a full queue or a dead socket drops the
message and nothing is kept for users who are offline.
"""

import asyncio
import json
import logging
from typing import Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages SSE queues and WebSocket connections per user room"""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        # user_id -> list of queues / sockets
        self._sse_connections: Dict[str, List[asyncio.Queue]] = {}
        self._ws_connections: Dict[str, List[WebSocket]] = {}
        self._lock = asyncio.Lock()

    # --- SSE ---

    async def add_sse_connection(self, user_id: str) -> asyncio.Queue:
        """
        Join a user's room with a new SSE stream.

        Returns:
            asyncio.Queue: Queue the stream reads its events from
        """
        user_id = str(user_id)
        async with self._lock:
            queue = asyncio.Queue(maxsize=self.queue_size)
            self._sse_connections.setdefault(user_id, []).append(queue)

            logger.info(
                f"SSE connection added for user {user_id}. "
                f"Total connections: {self.get_user_connection_count(user_id)}"
            )
            return queue

    async def disconnect_sse(self, user_id: str, queue: asyncio.Queue):
        user_id = str(user_id)
        async with self._lock:
            queues = self._sse_connections.get(user_id)
            if queues is None:
                return
            try:
                queues.remove(queue)
            except ValueError:
                logger.warning(f"Queue not found for user {user_id}")
                return
            if not queues:
                del self._sse_connections[user_id]
            logger.info(f"SSE connection removed for user {user_id}")

    # --- WebSocket ---

    async def add_websocket(self, user_id: str, websocket: WebSocket):
        """Join a user's room with an already accepted WebSocket"""
        user_id = str(user_id)
        async with self._lock:
            self._ws_connections.setdefault(user_id, []).append(websocket)
        logger.info(
            f"WebSocket connected for user {user_id}. "
            f"Total connections: {self.get_user_connection_count(user_id)}"
        )

    async def disconnect_websocket(self, user_id: str, websocket: WebSocket):
        user_id = str(user_id)
        async with self._lock:
            sockets = self._ws_connections.get(user_id)
            if sockets is None or websocket not in sockets:
                return
            sockets.remove(websocket)
            if not sockets:
                del self._ws_connections[user_id]
        logger.info(f"WebSocket disconnected for user {user_id}")

    # --- Delivery ---

    def get_user_connection_count(self, user_id: str) -> int:
        user_id = str(user_id)
        return len(self._sse_connections.get(user_id, [])) + len(
            self._ws_connections.get(user_id, [])
        )

    def is_connected(self, user_id: str) -> bool:
        return self.get_user_connection_count(user_id) > 0

    async def send_personal_message(self, user_id: str, message: dict) -> int:
        """
        Deliver a message to every connection in a user's room.

        Returns:
            int: Number of connections the message reached
        """
        user_id = str(user_id)
        sent_count = 0

        for queue in list(self._sse_connections.get(user_id, [])):
            try:
                queue.put_nowait(message)
                sent_count += 1
            except asyncio.QueueFull:
                logger.warning(f"SSE queue full for user {user_id}, event dropped")

        dead_sockets = []
        if self._ws_connections.get(user_id):
            payload = json.dumps(message, default=str)
            for websocket in list(self._ws_connections[user_id]):
                try:
                    await websocket.send_text(payload)
                    sent_count += 1
                except Exception as e:
                    logger.warning(f"Failed to send to WebSocket of user {user_id}: {e}")
                    dead_sockets.append(websocket)

        for websocket in dead_sockets:
            await self.disconnect_websocket(user_id, websocket)

        if not sent_count:
            logger.debug(f"No live connections for user {user_id}")
        return sent_count

    async def broadcast(self, message: dict) -> int:
        sent_count = 0
        for user_id in self.connected_users():
            sent_count += await self.send_personal_message(user_id, message)

        logger.info(f"Broadcast message sent to {sent_count} connections")
        return sent_count

    def connected_users(self) -> List[str]:
        return sorted(set(self._sse_connections) | set(self._ws_connections))

    def get_stats(self) -> dict:
        sse_total = sum(len(queues) for queues in self._sse_connections.values())
        ws_total = sum(len(sockets) for sockets in self._ws_connections.values())
        users = self.connected_users()

        return {
            "total_connections": sse_total + ws_total,
            "sse_connections": sse_total,
            "websocket_connections": ws_total,
            "active_users": len(users),
            "users": users,
            "connections_per_user": {
                user_id: self.get_user_connection_count(user_id) for user_id in users
            },
        }


__all__ = ["ConnectionManager"]
