# src/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними сервисами: PostgreSQL, Redis, RabbitMQ.
"""

from src.infra.database import DatabaseManager, create_database
from src.infra.redis_client import RedisClient
from src.infra.event_bus import EventBus

__all__ = [
    "DatabaseManager",
    "create_database",
    "RedisClient",
    "EventBus",
]
