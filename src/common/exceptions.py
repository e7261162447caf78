# src/common/exceptions.py
"""
Иерархия доменных исключений сервиса доставки.
Каждое исключение знает свой HTTP-статус; рендеринг в JSON делает app.py.
"""

from __future__ import annotations

from typing import Any


class DeliveryServiceError(Exception):
    """Базовое исключение сервиса."""

    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Тело ответа: {message, error, ...details}."""
        return {"message": self.message, "error": self.error, **self.details}


class ValidationError(DeliveryServiceError):
    """Некорректный или неполный ввод."""
    status_code = 400
    error = "validation_error"


class InvalidCoordinates(ValidationError):
    """Координаты отсутствуют, не числа, вне диапазона или (0, 0)."""
    error = "invalid_coordinates"


class Unauthenticated(DeliveryServiceError):
    """Нет токена или токен невалиден."""
    status_code = 401
    error = "unauthenticated"

    def __init__(self, message: str = "Not authorized, no valid token", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class Forbidden(DeliveryServiceError):
    """Проверка роли или владения не пройдена."""
    status_code = 403
    error = "forbidden"

    def __init__(self, message: str = "Not authorized to access this resource", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class NotFound(DeliveryServiceError):
    status_code = 404
    error = "not_found"


class NoAgentAvailable(NotFound):
    """Свободных курьеров рядом нет. Доставка остаётся в ожидании."""
    error = "no_agent_available"


class Conflict(DeliveryServiceError):
    status_code = 409
    error = "conflict"


class AlreadyAssigned(Conflict):
    """Доставка уже не в PENDING_ASSIGNMENT."""
    error = "already_assigned"


class AgentBusy(Conflict):
    """У курьера уже есть активная доставка."""
    error = "agent_busy"


class InvalidTransition(DeliveryServiceError):
    """Переход статуса не разрешён таблицей переходов."""
    status_code = 400
    error = "invalid_transition"

    def __init__(self, current_status: str, requested_status: str, allowed: list[str]) -> None:
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed = allowed
        super().__init__(
            f"Cannot transition from {current_status} to {requested_status}",
            details={"current_status": current_status, "allowed": allowed},
        )


class UpstreamUnavailable(DeliveryServiceError):
    """Вызов внешнего сервиса не удался. Наружу не пробрасывается."""
    status_code = 502
    error = "upstream_unavailable"


class StorageError(DeliveryServiceError):
    """Ошибка хранилища. Запрос падает с 500, состояние не портится."""
    status_code = 500
    error = "storage_error"
