# src/services/dispatch/app.py
"""
FastAPI приложение Dispatch Service.

Состояние водителей, геолокация, назначение доставок и статистика.
Все операции доступны под префиксом /api/v1.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from src.common.constants import TypeMsg
from src.common.errors import (
    ConflictError,
    DispatchError,
    NoDriverAvailableError,
    NotFoundError,
    ValidationError,
)
from src.common.logger import log_info, log_warning, setup_logging
from src.config import settings
from src.services.dispatch.dependencies import (
    DispatchContainer,
    close_container,
    get_container,
    init_container,
)
from src.services.dispatch.routes import router
from src.shared.models.common import ErrorResponse, HealthStatus

SERVICE_NAME = "dispatch_service"

# Порядок важен: подклассы проверяются раньше базового класса
ERROR_STATUS_CODES: list[tuple[type[DispatchError], int]] = [
    (ValidationError, 422),
    (ConflictError, 409),
    (NoDriverAvailableError, 404),
    (NotFoundError, 404),
]


def status_code_for(error: DispatchError) -> int:
    for error_cls, code in ERROR_STATUS_CODES:
        if isinstance(error, error_cls):
            return code
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    await log_info("Запуск Dispatch Service...", type_msg=TypeMsg.INFO)
    await init_container()

    yield

    # Shutdown
    await log_info("Остановка Dispatch Service...", type_msg=TypeMsg.INFO)
    await close_container()


app = FastAPI(
    title="Dispatch Service",
    description="Состояние курьеров, геолокация, назначение доставок и статистика",
    version=settings.system.VERSION,
    lifespan=lifespan,
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    """Доменные ошибки в единый формат ErrorResponse."""
    code = status_code_for(exc)
    if code == 409:
        await log_warning(f"{request.method} {request.url.path}: {exc.message}")
    body = ErrorResponse(error=exc.code, message=exc.message, details=exc.details)
    return JSONResponse(status_code=code, content=body.model_dump(mode="json"))


app.include_router(router, prefix="/api/v1")


@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check(container: DispatchContainer = Depends(get_container)) -> HealthStatus:
    """Проверка здоровья сервиса и подключённой инфраструктуры."""
    dependencies: dict[str, str] = {}

    if "postgres" in container.infrastructure:
        from src.infra.database import get_db
        dependencies["postgres"] = "healthy" if await get_db().health_check() else "unhealthy"
    if container.redis is not None:
        dependencies["redis"] = "healthy" if await container.redis.health_check() else "unhealthy"
    if container.event_bus is not None:
        dependencies["rabbitmq"] = "healthy" if await container.event_bus.health_check() else "unhealthy"

    overall = "healthy" if all(v == "healthy" for v in dependencies.values()) else "degraded"
    return HealthStatus(
        service=SERVICE_NAME,
        status=overall,
        version=settings.system.VERSION,
        storage_backend=container.storage_backend,
        dependencies=dependencies,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.services.dispatch.app:app",
        host=settings.deployment.DISPATCH_SERVICE_HOST,
        port=settings.deployment.DISPATCH_SERVICE_PORT,
    )
