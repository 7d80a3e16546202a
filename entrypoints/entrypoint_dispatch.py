#!/usr/bin/env python3
# entrypoint_dispatch.py
"""
Точка входа для Dispatch Service.
Порт: 8092 (DISPATCH_SERVICE_PORT)
"""

import asyncio
import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import uvicorn

from src.config import settings
from src.common.logger import log_info, setup_logging
from src.common.constants import TypeMsg


async def main() -> None:
    """Запуск Dispatch Service."""
    setup_logging()
    await log_info(
        f"Запуск Dispatch Service на порту {settings.deployment.DISPATCH_SERVICE_PORT} "
        f"(backend={settings.storage.STORAGE_BACKEND})",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        "src.services.dispatch.app:app",
        host=settings.deployment.DISPATCH_SERVICE_HOST,
        port=settings.deployment.DISPATCH_SERVICE_PORT,
        reload=False,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    await server.serve()


if __name__ == "__main__":
    asyncio.run(main())
