# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Основной источник: config/config.json (плоские ключи).
Хосты и секреты переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Путь к config.json; переопределяется через CONFIG_PATH."""
    env_path = os.getenv("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """
    Загружает config.json.
    Файл необязателен: без него работают значения по умолчанию и окружение.
    """
    config_path = path or get_config_path()
    if not config_path.exists():
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    # Ключи _comment_* служат документацией внутри JSON
    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "delivery_service"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"


class DeploymentSettings(BaseModel):
    """Порты и хосты компонентов."""
    DELIVERY_SERVICE_HOST: str = "0.0.0.0"
    DELIVERY_SERVICE_PORT: int = 5003
    REALTIME_WS_GATEWAY_HOST: str = "0.0.0.0"
    REALTIME_WS_GATEWAY_PORT: int = 5004


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_FORMAT: str = "colored"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "delivery"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @property
    def dsn(self) -> str:
        """DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "delivery"
    REDIS_MAX_CONNECTIONS: int = 50

    @property
    def url(self) -> str:
        """URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "delivery.events"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @property
    def url(self) -> str:
        """URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class AuthSettings(BaseModel):
    """Проверка JWT, выданных auth-сервисом."""
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_COOKIE_NAME: str = "jwt"

    @field_validator("JWT_SECRET")
    @classmethod
    def secret_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("JWT_SECRET должен быть задан (env JWT_SECRET)")
        return v


class DispatchSettings(BaseModel):
    """Параметры диспетчеризации и трекинга."""
    AUTO_ASSIGN_ON_CREATE: bool = False
    AUTO_ASSIGN_RADIUS_M: float = 5000.0
    NEARBY_DEFAULT_RADIUS_M: float = 5000.0
    NEARBY_DEFAULT_LIMIT: int = 10
    NEARBY_MAX_LIMIT: int = 100
    DEFAULT_ESTIMATED_MINUTES: int = 30
    AVERAGE_SPEED_KMH: float = 25.0
    MIN_REPORTED_SPEED_KMH: float = 5.0


class OrderServiceSettings(BaseModel):
    """Внешний order-сервис (зеркалирование статусов)."""
    ORDER_SERVICE_URL: str = "http://localhost:5002"
    ORDER_SERVICE_TIMEOUT: float = 5.0


class EarningsSettings(BaseModel):
    """Формула заработка курьера для статистики."""
    BASE_PAY: float = 5.0
    PAY_PER_KM: float = 1.0


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

SectionT = TypeVar("SectionT", bound=BaseModel)

# Ключи, которые можно переопределить через окружение
_ENV_OVERRIDES: frozenset[str] = frozenset({
    "ENVIRONMENT",
    "LOG_LEVEL",
    "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD",
    "REDIS_HOST", "REDIS_PORT", "REDIS_PASSWORD",
    "RABBITMQ_HOST", "RABBITMQ_PORT", "RABBITMQ_USER", "RABBITMQ_PASSWORD",
    "JWT_SECRET",
    "ORDER_SERVICE_URL",
    "DELIVERY_SERVICE_PORT", "REALTIME_WS_GATEWAY_PORT",
})


def _build_section(model: type[SectionT], data: dict[str, Any]) -> SectionT:
    """
    Собирает секцию из плоского словаря: берёт только поля модели,
    окружение имеет приоритет для ключей из _ENV_OVERRIDES.
    """
    values: dict[str, Any] = {}
    for name in model.model_fields:
        env_value = os.getenv(name) if name in _ENV_OVERRIDES else None
        if env_value not in (None, ""):
            values[name] = env_value
        elif name in data:
            values[name] = data[name]
    return model(**values)


class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    auth: AuthSettings
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    order_service: OrderServiceSettings = Field(default_factory=OrderServiceSettings)
    earnings: EarningsSettings = Field(default_factory=EarningsSettings)

    @classmethod
    def from_config_json(cls, path: Path | None = None) -> "Settings":
        """
        Создаёт Settings из config.json и переменных окружения.
        """
        data = load_config_json(path)
        return cls(
            system=_build_section(SystemSettings, data),
            deployment=_build_section(DeploymentSettings, data),
            logging=_build_section(LoggingSettings, data),
            database=_build_section(DatabaseSettings, data),
            redis=_build_section(RedisSettings, data),
            rabbitmq=_build_section(RabbitMQSettings, data),
            auth=_build_section(AuthSettings, data),
            dispatch=_build_section(DispatchSettings, data),
            order_service=_build_section(OrderServiceSettings, data),
            earnings=_build_section(EarningsSettings, data),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает закэшированный объект настроек.
    Перед чтением подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


settings = get_settings()
