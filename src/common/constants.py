# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей (из токена auth-сервиса)."""
    CUSTOMER = "customer"
    DELIVERY_PERSON = "delivery_person"
    RESTAURANT = "restaurant"
    ADMIN = "admin"


# Старые названия ролей, которые всё ещё выдаёт auth-сервис
ROLE_ALIASES: dict[str, UserRole] = {
    "user": UserRole.CUSTOMER,
    "restaurant_owner": UserRole.RESTAURANT,
}


class DeliveryStatus(str, Enum):
    """Статусы доставки."""
    PENDING_ASSIGNMENT = "PENDING_ASSIGNMENT"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    def __str__(self) -> str:
        return self.value


ACTIVE_DELIVERY_STATUSES: tuple[DeliveryStatus, ...] = (
    DeliveryStatus.ASSIGNED,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
)

FINISHED_DELIVERY_STATUSES: tuple[DeliveryStatus, ...] = (
    DeliveryStatus.DELIVERED,
    DeliveryStatus.CANCELLED,
    DeliveryStatus.FAILED,
)


class AgentStatus(str, Enum):
    """Статусы курьера."""
    AVAILABLE = "AVAILABLE"
    BUSY = "BUSY"
    OFFLINE = "OFFLINE"

    def __str__(self) -> str:
        return self.value


class OrderStatus(str, Enum):
    """Статусы заказа в order-сервисе (только те, что мы зеркалируем)."""
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class NotificationType(str, Enum):
    """Типы уведомлений курьеру."""
    NEW_DELIVERY = "NEW_DELIVERY"
    NEW_ASSIGNMENT = "NEW_ASSIGNMENT"
    PICKUP_READY = "PICKUP_READY"
    CUSTOMER_MESSAGE = "CUSTOMER_MESSAGE"
    SYSTEM_ALERT = "SYSTEM_ALERT"


class NotificationPriority(str, Enum):
    """Приоритет уведомления."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class StatsPeriod(str, Enum):
    """Период статистики курьера."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
