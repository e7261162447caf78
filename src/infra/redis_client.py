# src/infra/redis_client.py
"""
Клиент Redis: GEO-индекс курьеров и Pub/Sub для live-обновлений.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info

if TYPE_CHECKING:
    from src.config.loader import RedisSettings


class RedisClient:
    """
    Асинхронный клиент Redis.

    Ключи (GEO, hash) получают namespace, каналы pub/sub публикуются
    без namespace: их слушает realtime-шлюз по шаблонам delivery:* и role:*.
    """

    def __init__(self, config: "RedisSettings") -> None:
        self._config = config
        self._namespace = config.REDIS_NAMESPACE
        self._client: redis.Redis | None = None

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    def _make_key(self, key: str) -> str:
        """Добавляет namespace к ключу."""
        return f"{self._namespace}:{key}"

    async def connect(self) -> None:
        """Подключается к Redis и проверяет соединение."""
        if self._client is not None:
            return

        await log_info(
            f"Подключение к Redis {self._config.REDIS_HOST}:{self._config.REDIS_PORT}/{self._config.REDIS_DB}...",
            type_msg=TypeMsg.INFO,
        )

        self._client = redis.from_url(
            self._config.url,
            max_connections=self._config.REDIS_MAX_CONNECTIONS,
            decode_responses=True,
        )
        await self._client.ping()

        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # GEO ОПЕРАЦИИ
    # =========================================================================

    async def geoadd(self, key: str, longitude: float, latitude: float, member: str) -> int:
        """
        Добавляет или обновляет позицию участника.

        Returns:
            Количество новых элементов (0, если участник уже был)
        """
        return await self.client.geoadd(self._make_key(key), (longitude, latitude, member))

    async def geosearch(
        self,
        key: str,
        longitude: float,
        latitude: float,
        radius: float,
        unit: str = "m",
        count: int | None = None,
    ) -> list[tuple[str, float]]:
        """
        Участники в радиусе от точки, ближайшие первыми.

        Returns:
            Список (member, distance) в единицах unit
        """
        results = await self.client.geosearch(
            self._make_key(key),
            longitude=longitude,
            latitude=latitude,
            radius=radius,
            unit=unit,
            sort="ASC",
            count=count,
            withdist=True,
        )
        return [(member, float(distance)) for member, distance in results]

    async def georem(self, key: str, member: str) -> int:
        """Удаляет участника из GEO-индекса (GEO-набор это sorted set)."""
        return await self.client.zrem(self._make_key(key), member)

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish(self, channel: str, payload: dict[str, Any]) -> int:
        """
        Публикует JSON в канал.

        Returns:
            Количество подписчиков, получивших сообщение
        """
        message = json.dumps(payload, ensure_ascii=False, default=str)
        return await self.client.publish(channel, message)

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def health_check(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False
