# src/services/realtime_ws/app.py
"""
FastAPI приложение для Realtime WebSocket Gateway.

WebSocket endpoint:
- /ws?token=<jwt>: клиент автоматически попадает в комнату своей роли

Входящие сообщения:
- {"action": "subscribe", "topic": "delivery:<id>"}
- {"action": "unsubscribe", "topic": "delivery:<id>"}
- {"action": "ping"}

REST endpoints:
- GET /health: проверка здоровья
- GET /stats: статистика соединений
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel
from redis.asyncio import Redis

from src.common.constants import TypeMsg
from src.common.exceptions import Unauthenticated
from src.common.logger import log_error, log_info, setup_logging
from src.config import settings
from src.services.delivery_service.auth import decode_token
from src.services.realtime_ws.connection_manager import ConnectionManager
from src.services.realtime_ws.redis_subscriber import RedisSubscriber
from src.shared.models.common import HealthStatus

SERVICE_NAME = "realtime_ws_gateway"
SUBSCRIBABLE_PREFIX = "delivery:"


class StatsResponse(BaseModel):
    active_connections: int
    total_topics: int
    total_connections_ever: int
    total_messages_sent: int
    connections_by_role: dict[str, int]


def make_redis_handler(manager: ConnectionManager):
    async def handle_redis_message(channel: str, data: dict[str, Any]) -> None:
        """Канал Redis совпадает с именем комнаты WebSocket."""
        await manager.broadcast_to_topic(
            channel,
            {
                "type": data.get("event", "message"),
                "topic": channel,
                "data": data.get("data", data),
            },
        )

    return handle_redis_message


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    redis = Redis.from_url(settings.redis.url, decode_responses=True)
    subscriber = RedisSubscriber(redis, make_redis_handler(app.state.manager))
    await subscriber.start()
    app.state.redis = redis
    await log_info(f"{SERVICE_NAME} started", type_msg=TypeMsg.INFO)

    yield

    await subscriber.stop()
    await redis.aclose()
    await log_info(f"{SERVICE_NAME} stopped", type_msg=TypeMsg.INFO)


app = FastAPI(
    title="Realtime WebSocket Gateway",
    description="Live-обновления доставок: позиция курьера, статусы, новые заказы.",
    version=settings.system.VERSION,
    lifespan=lifespan,
)
app.state.manager = ConnectionManager()


@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    redis_status = "ok"
    redis = getattr(app.state, "redis", None)
    try:
        if redis is None or not await redis.ping():
            redis_status = "unavailable"
    except Exception as e:
        await log_error(f"Health check Redis failed: {e}")
        redis_status = "unavailable"

    return HealthStatus(
        service=SERVICE_NAME,
        status="healthy" if redis_status == "ok" else "degraded",
        version=settings.system.VERSION,
        dependencies={"redis": redis_status},
    )


@app.get("/stats", response_model=StatsResponse, tags=["Stats"])
async def get_stats() -> StatsResponse:
    return StatsResponse(**app.state.manager.get_stats())


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    manager: ConnectionManager = app.state.manager

    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        identity = await decode_token(token, settings.auth)
    except Unauthenticated:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket, identity.id, identity.role.value)

    try:
        while True:
            data = await websocket.receive_json()
            await handle_client_message(manager, identity.id, data)
    except WebSocketDisconnect:
        pass
    except ValueError:
        # Не-JSON от клиента
        await log_error(f"WS {identity.id}: malformed message, closing")
    finally:
        await manager.disconnect(identity.id, websocket)


async def handle_client_message(manager: ConnectionManager, user_id: str, data: dict[str, Any]) -> None:
    action = data.get("action") if isinstance(data, dict) else None
    topic = data.get("topic") if isinstance(data, dict) else None

    if action == "ping":
        await manager.send_personal(user_id, {"type": "pong"})
        return

    if action in ("subscribe", "unsubscribe"):
        if not isinstance(topic, str) or not topic.startswith(SUBSCRIBABLE_PREFIX):
            await manager.send_personal(user_id, {"type": "error", "message": "Unknown topic"})
            return
        if action == "subscribe":
            await manager.subscribe(user_id, topic)
            await manager.send_personal(user_id, {"type": "subscribed", "topic": topic})
        else:
            await manager.unsubscribe(user_id, topic)
            await manager.send_personal(user_id, {"type": "unsubscribed", "topic": topic})
        return

    await manager.send_personal(user_id, {"type": "error", "message": "Unknown action"})
