#!/usr/bin/env python3
# entrypoint_delivery_service.py
"""
Точка входа для Delivery Service (REST API доставок).
Порт: DELIVERY_SERVICE_PORT (по умолчанию 5003)
"""

import asyncio
import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from src.config import settings
from src.common.logger import log_info
from src.common.constants import TypeMsg


def build_server() -> uvicorn.Server:
    config = uvicorn.Config(
        "src.services.delivery_service.app:app",
        host=settings.deployment.DELIVERY_SERVICE_HOST,
        port=settings.deployment.DELIVERY_SERVICE_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    return uvicorn.Server(config)


async def main() -> None:
    """Запуск Delivery Service."""
    await log_info(
        f"Запуск Delivery Service на порту {settings.deployment.DELIVERY_SERVICE_PORT}",
        type_msg=TypeMsg.INFO,
    )
    await build_server().serve()


if __name__ == "__main__":
    asyncio.run(main())
