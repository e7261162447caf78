# src/infra/event_bus.py
"""
Шина доменных событий на базе RabbitMQ.
Сервис доставки публикует события жизненного цикла; внешние потребители
(уведомления по email/SMS, аналитика) подписываются по routing key.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractExchange

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info
from src.shared.events.base import DomainEvent

if TYPE_CHECKING:
    from src.config.loader import RabbitMQSettings


class EventBus:
    """
    Публикация событий в topic exchange.
    event_type события используется как routing key.
    """

    def __init__(self, config: "RabbitMQSettings") -> None:
        self._config = config
        self._exchange_name = config.RABBITMQ_EXCHANGE
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None

    @property
    def is_connected(self) -> bool:
        """Проверяет, активно ли соединение."""
        return self._connection is not None and not self._connection.is_closed

    async def connect(self) -> None:
        """Подключается к RabbitMQ и объявляет exchange."""
        if self.is_connected:
            return

        await log_info(
            f"Подключение к RabbitMQ {self._config.RABBITMQ_HOST}:{self._config.RABBITMQ_PORT}...",
            type_msg=TypeMsg.INFO,
        )

        self._connection = await aio_pika.connect_robust(self._config.url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=self._config.RABBITMQ_PREFETCH_COUNT)

        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )

        await log_info("Подключение к RabbitMQ установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с RabbitMQ."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            await log_info("Соединение с RabbitMQ закрыто", type_msg=TypeMsg.INFO)

    async def publish(self, event: DomainEvent) -> bool:
        """
        Публикует событие. Никогда не бросает исключений:
        локальная запись уже зафиксирована, событие best-effort.

        Returns:
            True, если событие ушло в exchange
        """
        if not self.is_connected or self._exchange is None:
            await log_error(f"Событие {event.event_type} не опубликовано: нет соединения с RabbitMQ")
            return False

        try:
            message = Message(
                body=event.to_json().encode(),
                content_type="application/json",
                message_id=event.event_id,
                timestamp=datetime.now(timezone.utc),
            )
            await self._exchange.publish(message, routing_key=event.event_type)
        except Exception as e:
            await log_error(f"Ошибка публикации события {event.event_type}: {e}")
            return False

        await log_info(f"Событие опубликовано: {event.event_type}", type_msg=TypeMsg.DEBUG)
        return True

    async def health_check(self) -> bool:
        return self.is_connected
