# src/shared/models/common.py
"""
Общие модели для всех сервисов.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    """Параметры пагинации (page/limit, как у клиентов сервиса)."""

    page: int = Field(default=1, ge=1, description="Номер страницы")
    limit: int = Field(default=10, ge=1, le=100, description="Размер страницы")

    @property
    def offset(self) -> int:
        """Смещение для SQL-запроса."""
        return (self.page - 1) * self.limit


class PaginationInfo(BaseModel):
    """Блок pagination в ответе."""

    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def create(cls, total: int, params: PaginationParams) -> "PaginationInfo":
        return cls(
            total=total,
            page=params.page,
            limit=params.limit,
            pages=(total + params.limit - 1) // params.limit,
        )


class MessageResponse(BaseModel):
    """Информационный ответ без данных."""

    message: str


class ErrorResponse(BaseModel):
    """Стандартный ответ с ошибкой."""

    message: str
    error: str | None = None
    details: dict[str, Any] | None = None


class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""

    service: str
    status: str = "healthy"  # healthy, degraded
    version: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
