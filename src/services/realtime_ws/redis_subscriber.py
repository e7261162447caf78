# src/services/realtime_ws/redis_subscriber.py
"""
Подписчик на Redis Pub/Sub для получения live-обновлений.

Слушает каналы:
- delivery:{delivery_id}: locationUpdate, statusUpdate
- role:{role}: driverLocationUpdate (admin), newDeliveryAvailable (delivery_person)
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from src.common.logger import log_error, log_warning

if TYPE_CHECKING:
    from redis.asyncio import Redis

DEFAULT_PATTERNS = ("delivery:*", "role:*")


class RedisSubscriber:
    """
    Подписчик на Redis Pub/Sub.
    Получает сообщения и передаёт их обработчику (channel, data).
    """

    def __init__(
        self,
        redis: "Redis",
        message_handler: Callable[[str, dict[str, Any]], Coroutine[Any, Any, None]],
        patterns: tuple[str, ...] = DEFAULT_PATTERNS,
    ) -> None:
        self._redis = redis
        self._handler = message_handler
        self._initial_patterns = patterns
        self._pubsub = None
        self._task: asyncio.Task | None = None
        self._running = False
        self._patterns: set[str] = set()

    async def start(self) -> None:
        if self._running:
            return

        self._pubsub = self._redis.pubsub()
        self._running = True

        for pattern in self._initial_patterns:
            await self.subscribe_pattern(pattern)

        self._task = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        if self._pubsub:
            await self._pubsub.punsubscribe()
            await self._pubsub.aclose()

    async def subscribe_pattern(self, pattern: str) -> None:
        if self._pubsub and pattern not in self._patterns:
            await self._pubsub.psubscribe(pattern)
            self._patterns.add(pattern)

    async def _listen(self) -> None:
        while self._running:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue
                await self.process_message(message)
            except asyncio.CancelledError:
                break
            except Exception as e:
                await log_error(f"Redis subscriber error: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def process_message(self, message: dict[str, Any]) -> None:
        if message.get("type") not in ("message", "pmessage"):
            return

        channel = message.get("channel", "")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")

        data = message.get("data", "")
        if isinstance(data, bytes):
            data = data.decode("utf-8")

        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            await log_warning(f"Не-JSON сообщение в канале {channel}")
            parsed = {"raw": data}

        await self._handler(channel, parsed)
