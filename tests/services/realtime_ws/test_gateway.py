# tests/services/realtime_ws/test_gateway.py
"""
Тесты realtime-шлюза: клиентские сообщения, пересылка из Redis, /ws.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from src.common.constants import UserRole
from src.config import settings
from src.services.realtime_ws.app import app, handle_client_message, make_redis_handler
from src.services.realtime_ws.connection_manager import ConnectionManager
from src.services.realtime_ws.redis_subscriber import RedisSubscriber


@pytest.fixture
def manager() -> AsyncMock:
    mock = AsyncMock(spec=ConnectionManager)
    return mock


# =============================================================================
# КЛИЕНТСКИЕ СООБЩЕНИЯ
# =============================================================================

class TestHandleClientMessage:
    @pytest.mark.asyncio
    async def test_ping(self, manager) -> None:
        await handle_client_message(manager, "A1", {"action": "ping"})

        manager.send_personal.assert_called_once_with("A1", {"type": "pong"})

    @pytest.mark.asyncio
    async def test_subscribe_delivery(self, manager) -> None:
        await handle_client_message(manager, "cust-1", {"action": "subscribe", "topic": "delivery:d1"})

        manager.subscribe.assert_called_once_with("cust-1", "delivery:d1")
        manager.send_personal.assert_called_once_with("cust-1", {"type": "subscribed", "topic": "delivery:d1"})

    @pytest.mark.asyncio
    async def test_unsubscribe_delivery(self, manager) -> None:
        await handle_client_message(manager, "cust-1", {"action": "unsubscribe", "topic": "delivery:d1"})

        manager.unsubscribe.assert_called_once_with("cust-1", "delivery:d1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("topic", ["role:admin", None, 5])
    async def test_foreign_topic_refused(self, manager, topic) -> None:
        await handle_client_message(manager, "cust-1", {"action": "subscribe", "topic": topic})

        manager.subscribe.assert_not_called()
        assert manager.send_personal.call_args[0][1]["type"] == "error"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [{"action": "dance"}, {}, ["ping"]])
    async def test_unknown_action(self, manager, data) -> None:
        await handle_client_message(manager, "A1", data)

        manager.send_personal.assert_called_once_with("A1", {"type": "error", "message": "Unknown action"})


# =============================================================================
# REDIS -> WEBSOCKET
# =============================================================================

@pytest.mark.asyncio
async def test_redis_handler_forwards_to_room(manager) -> None:
    handler = make_redis_handler(manager)

    await handler("delivery:d1", {"event": "locationUpdate", "data": {"deliveryId": "d1"}})

    manager.broadcast_to_topic.assert_called_once_with(
        "delivery:d1",
        {"type": "locationUpdate", "topic": "delivery:d1", "data": {"deliveryId": "d1"}},
    )


class TestRedisSubscriber:
    @pytest.mark.asyncio
    async def test_process_pmessage(self) -> None:
        handler = AsyncMock()
        subscriber = RedisSubscriber(AsyncMock(), handler)
        payload = {"event": "statusUpdate", "data": {"status": "PICKED_UP"}}

        await subscriber.process_message({
            "type": "pmessage",
            "pattern": b"delivery:*",
            "channel": b"delivery:d1",
            "data": json.dumps(payload).encode(),
        })

        handler.assert_called_once_with("delivery:d1", payload)

    @pytest.mark.asyncio
    async def test_process_non_json(self) -> None:
        handler = AsyncMock()
        subscriber = RedisSubscriber(AsyncMock(), handler)

        await subscriber.process_message({"type": "message", "channel": "role:admin", "data": "hello"})

        handler.assert_called_once_with("role:admin", {"raw": "hello"})

    @pytest.mark.asyncio
    async def test_ignores_subscribe_confirmations(self) -> None:
        handler = AsyncMock()
        subscriber = RedisSubscriber(AsyncMock(), handler)

        await subscriber.process_message({"type": "psubscribe", "channel": "delivery:*", "data": 1})

        handler.assert_not_called()


# =============================================================================
# /ws
# =============================================================================

class TestWebSocketEndpoint:
    def test_rejects_missing_token(self) -> None:
        client = TestClient(app)

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws"):
                pass

        assert exc_info.value.code == 1008

    def test_rejects_bad_token(self) -> None:
        client = TestClient(app)

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws?token=garbage"):
                pass

    def test_session(self, issue_token) -> None:
        client = TestClient(app)
        token = issue_token("ws-user-1", UserRole.CUSTOMER, settings.auth)
        manager: ConnectionManager = app.state.manager

        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"action": "subscribe", "topic": "delivery:d9"})
            assert ws.receive_json() == {"type": "subscribed", "topic": "delivery:d9"}
            assert manager.get_user_subscriptions("ws-user-1") == {"role:customer", "delivery:d9"}

            ws.send_json({"action": "subscribe", "topic": "role:admin"})
            assert ws.receive_json()["type"] == "error"

        assert "ws-user-1" not in manager.get_topic_subscribers("delivery:d9")

    def test_stats(self) -> None:
        response = TestClient(app).get("/stats")

        assert response.status_code == 200
        assert "connections_by_role" in response.json()
