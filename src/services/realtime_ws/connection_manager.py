# src/services/realtime_ws/connection_manager.py
"""
Менеджер WebSocket соединений.
Управляет подписками на комнаты и рассылкой сообщений.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from src.common.logger import log_debug


@dataclass
class ConnectionInfo:
    """Информация о соединении."""
    websocket: WebSocket
    user_id: str
    role: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    subscriptions: set[str] = field(default_factory=set)  # delivery:{id}, role:{role}


class ConnectionManager:
    """
    Менеджер WebSocket соединений.

    Поддерживает:
    - Подключение/отключение клиентов (одно соединение на пользователя)
    - Комнаты delivery:{id} и role:{role}
    - Рассылку по комнатам и персональные сообщения
    """

    def __init__(self) -> None:
        # user_id -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}

        # topic -> set of user_ids
        self._subscriptions: dict[str, set[str]] = {}

        self._total_connections: int = 0
        self._total_messages_sent: int = 0

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket, user_id: str, role: str) -> None:
        """
        Принять соединение и подписать на комнату роли.
        Предыдущее соединение того же пользователя закрывается.
        """
        if user_id in self._connections:
            old_conn = self._connections.pop(user_id)
            for topic in list(old_conn.subscriptions):
                self._unsubscribe_from_topic(user_id, topic)
            await self._close_connection(old_conn)

        await websocket.accept()

        self._connections[user_id] = ConnectionInfo(websocket=websocket, user_id=user_id, role=role)
        self._total_connections += 1
        await self.subscribe(user_id, f"role:{role}")

    async def disconnect(self, user_id: str, websocket: WebSocket | None = None) -> None:
        """
        Отключить клиента.
        Если передан websocket, отключаем только если он всё ещё текущий
        (после переподключения старый обработчик не трогает новое соединение).
        """
        conn = self._connections.get(user_id)
        if conn is None:
            return
        if websocket is not None and conn.websocket is not websocket:
            return

        for topic in list(conn.subscriptions):
            self._unsubscribe_from_topic(user_id, topic)
        del self._connections[user_id]
        await log_debug(f"WS отключён: {user_id}")

    async def subscribe(self, user_id: str, topic: str) -> None:
        if user_id not in self._connections:
            return
        self._connections[user_id].subscriptions.add(topic)
        self._subscriptions.setdefault(topic, set()).add(user_id)

    async def unsubscribe(self, user_id: str, topic: str) -> None:
        self._unsubscribe_from_topic(user_id, topic)

    def _unsubscribe_from_topic(self, user_id: str, topic: str) -> None:
        if user_id in self._connections:
            self._connections[user_id].subscriptions.discard(topic)

        if topic in self._subscriptions:
            self._subscriptions[topic].discard(user_id)
            if not self._subscriptions[topic]:
                del self._subscriptions[topic]

    async def send_personal(self, user_id: str, message: dict[str, Any]) -> bool:
        """
        Returns:
            True если сообщение отправлено, False если пользователь не подключен
        """
        conn = self._connections.get(user_id)
        if conn is None:
            return False

        try:
            await conn.websocket.send_json(message)
        except Exception:
            await self.disconnect(user_id)
            return False
        self._total_messages_sent += 1
        return True

    async def broadcast_to_topic(self, topic: str, message: dict[str, Any]) -> int:
        """
        Отправить сообщение всем подписчикам комнаты.

        Returns:
            Количество успешно отправленных сообщений
        """
        sent_count = 0
        failed_users: list[str] = []

        for user_id in list(self._subscriptions.get(topic, ())):
            conn = self._connections.get(user_id)
            if conn is None:
                continue
            try:
                await conn.websocket.send_json(message)
                sent_count += 1
                self._total_messages_sent += 1
            except Exception:
                failed_users.append(user_id)

        for user_id in failed_users:
            await self.disconnect(user_id)

        return sent_count

    def get_user_subscriptions(self, user_id: str) -> set[str]:
        if user_id in self._connections:
            return self._connections[user_id].subscriptions.copy()
        return set()

    def get_topic_subscribers(self, topic: str) -> set[str]:
        return self._subscriptions.get(topic, set()).copy()

    def get_stats(self) -> dict[str, Any]:
        return {
            "active_connections": len(self._connections),
            "total_topics": len(self._subscriptions),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
            "connections_by_role": self._count_by_role(),
        }

    def _count_by_role(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for conn in self._connections.values():
            counts[conn.role] = counts.get(conn.role, 0) + 1
        return counts

    async def _close_connection(self, conn: ConnectionInfo) -> None:
        try:
            await conn.websocket.close()
        except RuntimeError:
            # Уже закрыто клиентом
            pass
