# src/infra/database.py
"""
Менеджер базы данных PostgreSQL.
Пул соединений, retry при обрыве соединения и транзакции.

Экземпляр создаётся в lifespan приложения и передаётся в репозитории явно.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncGenerator, Callable, TypeVar

import asyncpg
from asyncpg import Connection, Pool, Record

from src.common.constants import TypeMsg
from src.common.exceptions import StorageError
from src.common.logger import log_error, log_info, log_warning

if TYPE_CHECKING:
    from src.config.loader import DatabaseSettings

T = TypeVar("T")

# Произвольный ключ advisory lock для применения схемы
SCHEMA_LOCK_ID = 5003_0001

CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionRefusedError,
    OSError,
)


def retry_on_connection_error(
    max_attempts: int = 3,
    delay: float = 1.0,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Декоратор для повтора при ошибках подключения.
    Ошибки SQL (нарушение ограничений и т.п.) не повторяются.

    Args:
        max_attempts: Максимальное количество попыток
        delay: Базовая задержка между попытками (секунды), растёт линейно
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: BaseException | None = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except CONNECTION_ERRORS as e:
                    last_error = e
                    if attempt < max_attempts:
                        await log_warning(
                            f"Ошибка подключения к БД (попытка {attempt}/{max_attempts}): {e}",
                        )
                        await asyncio.sleep(delay * attempt)
                    else:
                        await log_error(f"Не удалось выполнить запрос после {max_attempts} попыток: {e}")

            raise last_error  # type: ignore[misc]

        return wrapper  # type: ignore[return-value]

    return decorator


def storage_errors(func: Callable[..., T]) -> Callable[..., T]:
    """
    Переводит ошибки asyncpg в StorageError (HTTP 500).
    Доменные исключения, брошенные внутри транзакции, проходят как есть.
    """
    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            await log_error(f"Ошибка хранилища в {func.__qualname__}: {e}", exc_info=True)
            raise StorageError("Storage operation failed") from e

    return wrapper  # type: ignore[return-value]


class DatabaseManager:
    """
    Обёртка над пулом asyncpg.

    Example:
        db = DatabaseManager(settings.database)
        await db.connect()
        async with db.transaction() as conn:
            await conn.execute("UPDATE ...")
    """

    def __init__(self, config: "DatabaseSettings") -> None:
        self._config = config
        self._pool: Pool | None = None

    @property
    def pool(self) -> Pool:
        """Возвращает пул соединений."""
        if self._pool is None:
            raise RuntimeError("Пул соединений не инициализирован. Вызовите connect() сначала.")
        return self._pool

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @retry_on_connection_error(max_attempts=3, delay=1.0)
    async def connect(self) -> None:
        """Создаёт пул соединений к PostgreSQL."""
        if self._pool is not None:
            return

        await log_info(
            f"Подключение к PostgreSQL {self._config.DB_HOST}:{self._config.DB_PORT}/{self._config.DB_NAME}...",
            type_msg=TypeMsg.INFO,
        )

        self._pool = await asyncpg.create_pool(
            dsn=self._config.dsn,
            min_size=self._config.DB_MIN_POOL_SIZE,
            max_size=self._config.DB_MAX_POOL_SIZE,
            command_timeout=self._config.DB_COMMAND_TIMEOUT,
        )

        await log_info("Подключение к PostgreSQL установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает пул соединений."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            await log_info("Соединение с PostgreSQL закрыто", type_msg=TypeMsg.INFO)

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Connection, None]:
        """Соединение из пула на время блока."""
        async with self.pool.acquire() as connection:
            yield connection

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Connection, None]:
        """
        Соединение в транзакции.
        Commit при выходе из блока, rollback при любом исключении.
        """
        async with self.pool.acquire() as connection:
            async with connection.transaction():
                yield connection

    async def execute(self, query: str, *args: Any) -> str:
        """
        Выполняет SQL без возврата строк.
        Без retry: повтор записи после обрыва может применить её дважды.
        """
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    @retry_on_connection_error()
    async def fetch(self, query: str, *args: Any) -> list[Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    @retry_on_connection_error()
    async def fetchrow(self, query: str, *args: Any) -> Record | None:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @retry_on_connection_error()
    async def fetchval(self, query: str, *args: Any, column: int = 0) -> Any:
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    async def health_check(self) -> bool:
        """True, если БД отвечает на SELECT 1."""
        try:
            result = await self.fetchval("SELECT 1")
            return result == 1
        except Exception as e:
            await log_error(f"Health check PostgreSQL failed: {e}")
            return False

    async def apply_schema(self, schema_path: Path) -> None:
        """
        Применяет идемпотентный init.sql под advisory lock,
        чтобы несколько воркеров не применяли схему одновременно.
        """
        if not schema_path.exists():
            await log_error(f"Файл схемы БД не найден: {schema_path}")
            return

        schema_sql = schema_path.read_text(encoding="utf-8")
        await log_info("Применение схемы БД...", type_msg=TypeMsg.INFO)

        async with self.transaction() as conn:
            await conn.execute("SELECT pg_advisory_xact_lock($1)", SCHEMA_LOCK_ID)
            await conn.execute(schema_sql)

        await log_info("Схема БД применена", type_msg=TypeMsg.INFO)


async def create_database(config: "DatabaseSettings", schema_path: Path | None = None) -> DatabaseManager:
    """
    Создаёт DatabaseManager, подключается и (опционально) применяет схему.
    """
    db = DatabaseManager(config)
    await db.connect()
    if schema_path is not None:
        await db.apply_schema(schema_path)
    return db
