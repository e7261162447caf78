#!/usr/bin/env python3
# entrypoint_all.py
"""
Точка входа для запуска Delivery Service и Realtime WS Gateway в одном процессе.
Используется для разработки или простых деплойментов.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, setup_logging
from entrypoints import entrypoint_delivery_service, entrypoint_realtime_ws


async def main() -> None:
    setup_logging()
    await log_info("[DEV_MODE] Запуск delivery_service + realtime_ws", type_msg=TypeMsg.INFO)

    servers = [
        entrypoint_delivery_service.build_server(),
        entrypoint_realtime_ws.build_server(),
    ]
    await asyncio.gather(*(server.serve() for server in servers))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        asyncio.run(log_error(f"Критическая ошибка: {e}", exc_info=True))
        sys.exit(1)
