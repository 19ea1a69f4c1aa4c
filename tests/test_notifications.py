import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi import HTTPException, WebSocketDisconnect

from app.routes.notification_routes import WS_POLICY_VIOLATION, notifications_ws
from app.schemas.notification_schema import NotificationEvent
from app.schemas.request_schema import RequestStatus
from app.services.notification_service import NotificationDispatcher
from app.services.notification_sse import ConnectionManager


def make_websocket(*incoming) -> MagicMock:
    websocket = MagicMock()
    websocket.accept = AsyncMock()
    websocket.close = AsyncMock()
    websocket.send_text = AsyncMock()
    websocket.receive_text = AsyncMock(side_effect=list(incoming))
    return websocket


def sent_payloads(websocket) -> list:
    return [json.loads(call.args[0]) for call in websocket.send_text.await_args_list]


def make_blood_request(donor_ids=()):
    """Stand-in with the attributes the dispatcher reads"""
    request_id = uuid4()
    return SimpleNamespace(
        id=request_id,
        requester_id=uuid4(),
        status=RequestStatus.FULFILLED,
        notified_donor_ids=lambda: list(donor_ids),
        to_dict=lambda: {"id": str(request_id), "blood_group": "O-"},
    )


class TestConnectionManager:
    async def test_room_fans_out_to_every_connection(self):
        manager = ConnectionManager()
        first = await manager.add_sse_connection("u1")
        second = await manager.add_sse_connection("u1")
        websocket = make_websocket()
        await manager.add_websocket("u1", websocket)

        sent = await manager.send_personal_message("u1", {"type": "ping"})

        assert sent == 3
        assert first.get_nowait() == {"type": "ping"}
        assert second.get_nowait() == {"type": "ping"}
        assert json.loads(websocket.send_text.await_args.args[0]) == {"type": "ping"}

    async def test_offline_user_gets_nothing(self):
        manager = ConnectionManager()
        assert await manager.send_personal_message("nobody", {"type": "ping"}) == 0

    async def test_full_queue_drops_event(self):
        manager = ConnectionManager(queue_size=1)
        queue = await manager.add_sse_connection("u1")

        assert await manager.send_personal_message("u1", {"n": 1}) == 1
        assert await manager.send_personal_message("u1", {"n": 2}) == 0
        assert queue.qsize() == 1
        assert queue.get_nowait() == {"n": 1}

    async def test_dead_websocket_is_removed(self):
        manager = ConnectionManager()
        dead = make_websocket()
        dead.send_text.side_effect = RuntimeError("connection closed")
        await manager.add_websocket("u1", dead)

        assert await manager.send_personal_message("u1", {"type": "ping"}) == 0
        assert not manager.is_connected("u1")

    async def test_disconnect_empties_room(self):
        manager = ConnectionManager()
        queue = await manager.add_sse_connection("u1")
        websocket = make_websocket()
        await manager.add_websocket("u1", websocket)

        await manager.disconnect_sse("u1", queue)
        assert manager.get_user_connection_count("u1") == 1
        await manager.disconnect_websocket("u1", websocket)
        assert manager.connected_users() == []

        # Unknown connections are ignored
        await manager.disconnect_sse("u1", queue)
        await manager.disconnect_websocket("u1", websocket)

    async def test_broadcast_and_stats(self):
        manager = ConnectionManager()
        await manager.add_sse_connection("u1")
        await manager.add_sse_connection("u2")
        await manager.add_websocket("u2", make_websocket())

        assert await manager.broadcast({"type": "notice"}) == 3

        stats = manager.get_stats()
        assert stats["total_connections"] == 3
        assert stats["sse_connections"] == 2
        assert stats["websocket_connections"] == 1
        assert stats["active_users"] == 2
        assert stats["users"] == ["u1", "u2"]
        assert stats["connections_per_user"] == {"u1": 1, "u2": 2}


class TestNotificationDispatcher:
    def test_message_envelope(self):
        message = NotificationDispatcher.build_message(
            NotificationEvent.DONOR_RESPONSE, {"request_id": "r1"}
        )
        assert message["type"] == "donor_response"
        assert message["data"] == {"request_id": "r1"}
        assert "timestamp" in message

    async def test_new_request_reaches_each_notified_donor(self, notifier, connection_manager):
        donor_ids = [uuid4(), uuid4()]
        queues = [await connection_manager.add_sse_connection(str(d)) for d in donor_ids]
        blood_request = make_blood_request(donor_ids)

        sent = await notifier.notify_new_blood_request(blood_request, donor_ids)

        assert sent == 2
        for queue in queues:
            message = queue.get_nowait()
            assert message["type"] == "new_blood_request"
            assert message["data"] == blood_request.to_dict()

    async def test_donor_response_goes_to_requester(self, notifier, connection_manager):
        blood_request = make_blood_request()
        queue = await connection_manager.add_sse_connection(str(blood_request.requester_id))
        donor_id = uuid4()

        await notifier.notify_donor_response(blood_request, donor_id, "accept")

        message = queue.get_nowait()
        assert message["type"] == "donor_response"
        assert message["data"] == {
            "request_id": str(blood_request.id),
            "donor_id": str(donor_id),
            "response": "accept",
        }

    async def test_status_change_goes_to_notified_donors(self, notifier, connection_manager):
        donor_id = uuid4()
        queue = await connection_manager.add_sse_connection(str(donor_id))
        blood_request = make_blood_request([donor_id])

        await notifier.notify_status_changed(blood_request, "active")

        message = queue.get_nowait()
        assert message["type"] == "request_status_changed"
        assert message["data"]["old_status"] == "active"
        assert message["data"]["status"] == "fulfilled"

    async def test_cancellation(self, notifier, connection_manager):
        donor_id = uuid4()
        queue = await connection_manager.add_sse_connection(str(donor_id))
        blood_request = make_blood_request([donor_id])

        await notifier.notify_request_cancelled(blood_request)

        assert queue.get_nowait()["type"] == "request_cancelled"

    async def test_delivery_failure_is_swallowed(self):
        manager = MagicMock()
        manager.send_personal_message = AsyncMock(side_effect=RuntimeError("boom"))
        notifier = NotificationDispatcher(manager)

        assert await notifier.send(uuid4(), NotificationEvent.NEW_MESSAGE, {}) == 0
        assert await notifier.send_many([uuid4(), uuid4()], NotificationEvent.NEW_MESSAGE, {}) == 0


class TestNotificationWebSocket:
    @pytest.fixture
    def user(self):
        return SimpleNamespace(id=uuid4())

    async def test_rejects_bad_token(self, notifier):
        websocket = make_websocket()
        websocket.app.state.notifier = notifier
        db = AsyncMock()

        with patch(
            "app.routes.notification_routes.get_current_user_ws",
            AsyncMock(side_effect=HTTPException(status_code=401, detail="Not authenticated")),
        ):
            await notifications_ws(websocket, access_token="bad", db=db)

        websocket.close.assert_awaited_once_with(code=WS_POLICY_VIOLATION)
        websocket.accept.assert_not_awaited()
        db.close.assert_awaited_once()

    async def test_direct_message_and_ping(self, notifier, connection_manager, user):
        recipient_id = uuid4()
        inbox = await connection_manager.add_sse_connection(str(recipient_id))
        websocket = make_websocket(
            json.dumps({"type": "ping"}),
            json.dumps(
                {"type": "direct_message", "recipient_id": str(recipient_id), "message": "On my way"}
            ),
            WebSocketDisconnect(code=1000),
        )
        websocket.app.state.notifier = notifier

        with patch(
            "app.routes.notification_routes.get_current_user_ws", AsyncMock(return_value=user)
        ):
            await notifications_ws(websocket, access_token="token", db=AsyncMock())

        websocket.accept.assert_awaited_once()
        payloads = sent_payloads(websocket)
        assert payloads[0]["type"] == "connection_established"
        assert payloads[0]["user_id"] == str(user.id)
        assert payloads[1]["type"] == "pong"

        message = inbox.get_nowait()
        assert message["type"] == "new_message"
        assert message["data"]["sender_id"] == str(user.id)
        assert message["data"]["message"] == "On my way"

        # The socket leaves the room once the client disconnects
        assert not connection_manager.is_connected(str(user.id))

    async def test_malformed_messages_get_errors(self, notifier, user):
        websocket = make_websocket(
            "not json",
            json.dumps({"type": "shout"}),
            json.dumps({"type": "direct_message", "recipient_id": "nope", "message": ""}),
            WebSocketDisconnect(code=1000),
        )
        websocket.app.state.notifier = notifier

        with patch(
            "app.routes.notification_routes.get_current_user_ws", AsyncMock(return_value=user)
        ):
            await notifications_ws(websocket, access_token="token", db=AsyncMock())

        errors = [p for p in sent_payloads(websocket) if p["type"] == "error"]
        assert [error["message"] for error in errors] == [
            "Invalid JSON",
            "Unsupported message type: shout",
            "Invalid direct message",
        ]
