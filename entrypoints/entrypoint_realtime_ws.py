#!/usr/bin/env python3
# entrypoint_realtime_ws.py
"""
Точка входа для Realtime WebSocket Gateway.
Порт: REALTIME_WS_GATEWAY_PORT (по умолчанию 5004)
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
        "src.services.realtime_ws.app:app",
        host=settings.deployment.REALTIME_WS_GATEWAY_HOST,
        port=settings.deployment.REALTIME_WS_GATEWAY_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    return uvicorn.Server(config)


async def main() -> None:
    """Запуск Realtime WebSocket Gateway."""
    await log_info(
        f"Запуск Realtime WS Gateway на порту {settings.deployment.REALTIME_WS_GATEWAY_PORT}",
        type_msg=TypeMsg.INFO,
    )
    await build_server().serve()


if __name__ == "__main__":
    asyncio.run(main())
