import asyncio
import json
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.dependencies import get_db, get_notifier
from app.models.user_model import User
from app.schemas.notification_schema import ConnectionStats, DirectMessage
from app.services.notification_service import NotificationDispatcher
from app.utils.logging_config import get_logger
from app.utils.security import get_current_user, get_current_user_ws

logger = get_logger(__name__)
router = APIRouter(prefix="/notifications", tags=["Notifications"])

WS_POLICY_VIOLATION = 1008


def _event(event_type: str, **fields) -> dict:
    return {
        "type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **fields,
    }


@router.websocket("/ws")
async def notifications_ws(
    websocket: WebSocket,
    access_token: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    WebSocket joined to the caller's own room.

    Pushes every event addressed to the user. Clients may send
    ``{"type": "direct_message", "recipient_id": ..., "message": ...}``, which
    reaches the recipient as a ``new_message`` event, and ``{"type": "ping"}``.
    """
    try:
        current_user = await get_current_user_ws(access_token, db)
    except HTTPException:
        await websocket.close(code=WS_POLICY_VIOLATION)
        return
    finally:
        # Release the session before the long-lived receive loop
        await db.close()

    notifier: NotificationDispatcher = websocket.app.state.notifier
    manager = notifier.manager
    user_id = str(current_user.id)

    await websocket.accept()
    await manager.add_websocket(user_id, websocket)
    await websocket.send_text(
        json.dumps(_event("connection_established", user_id=user_id))
    )

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps(_event("error", message="Invalid JSON")))
                continue

            message_type = data.get("type") if isinstance(data, dict) else None

            if message_type == "ping":
                await websocket.send_text(json.dumps(_event("pong")))
            elif message_type == "direct_message":
                try:
                    direct = DirectMessage.model_validate(data)
                except PydanticValidationError as e:
                    await websocket.send_text(
                        json.dumps(_event("error", message="Invalid direct message", errors=e.errors(include_url=False)), default=str)
                    )
                    continue
                await notifier.send_direct_message(user_id, direct.recipient_id, direct.message)
            else:
                await websocket.send_text(
                    json.dumps(_event("error", message=f"Unsupported message type: {message_type}"))
                )

    except WebSocketDisconnect:
        logger.info(
            f"WebSocket client {user_id} disconnected",
            extra={"event_type": "ws_client_disconnected", "user_id": user_id},
        )
    finally:
        await manager.disconnect_websocket(user_id, websocket)


@router.get("/sse/stream")
async def sse_notifications(
    request: Request,
    access_token: str,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """
    Server-Sent Events stream of the caller's room.

    Query Parameters:
        access_token: JWT access token (EventSource cannot send headers)
    """
    current_user = await get_current_user_ws(access_token, db)
    user_id = str(current_user.id)
    manager = notifier.manager

    event_queue = await manager.add_sse_connection(user_id)
    logger.info(
        f"SSE connection established for user {user_id}",
        extra={"event_type": "sse_connection_established", "user_id": user_id},
    )

    async def event_stream():
        try:
            yield f"data: {json.dumps(_event('connection_established', user_id=user_id))}\n\n"

            while True:
                if await request.is_disconnected():
                    logger.info(
                        f"SSE client {user_id} disconnected",
                        extra={"event_type": "sse_client_disconnected", "user_id": user_id},
                    )
                    break
                try:
                    message = await asyncio.wait_for(
                        event_queue.get(), timeout=settings.SSE_HEARTBEAT_SECONDS
                    )
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"
                    continue
                yield f"event: {message['type']}\ndata: {json.dumps(message, default=str)}\n\n"
        finally:
            await manager.disconnect_sse(user_id, event_queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/sse/stats", response_model=ConnectionStats)
async def connection_stats(
    notifier: NotificationDispatcher = Depends(get_notifier),
    current_user: User = Depends(get_current_user),
):
    """Open real-time connections per user"""
    try:
        return ConnectionStats(**notifier.manager.get_stats())
    except Exception as e:
        logger.error(f"Failed to read connection stats: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )
