# src/services/dispatch/dependencies.py
"""
Сборка сервисов Dispatch Service.
Backend хранилища, Redis и шина событий выбираются конфигурацией.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends

from src.common.constants import StorageBackend, TypeMsg
from src.common.logger import log_info
from src.core.dispatch.service import DispatchMatcher
from src.core.drivers.models import utc_now
from src.core.drivers.repository import (
    DriverRepository,
    InMemoryDriverRepository,
    PostgresDriverRepository,
)
from src.core.drivers.service import DriverService
from src.core.stats.service import StatsAggregator
from src.core.status.service import StatusService
from src.core.tracking.service import LocationTracker
from src.infra.database import close_db, get_db, init_db
from src.infra.event_bus import EventBus, close_event_bus, get_event_bus, init_event_bus
from src.infra.redis_client import RedisClient, close_redis, get_redis, init_redis


@dataclass
class DispatchContainer:
    """Набор связанных сервисов над одним хранилищем."""

    repository: DriverRepository
    drivers: DriverService
    status: StatusService
    tracker: LocationTracker
    matcher: DispatchMatcher
    stats: StatsAggregator
    storage_backend: str = StorageBackend.MEMORY.value
    event_bus: Optional[EventBus] = None
    redis: Optional[RedisClient] = None
    infrastructure: list[str] = field(default_factory=list)


def build_container(
    repository: DriverRepository,
    event_bus: Optional[EventBus] = None,
    redis: Optional[RedisClient] = None,
    clock: Callable[[], datetime] = utc_now,
    storage_backend: str = StorageBackend.MEMORY.value,
) -> DispatchContainer:
    """Связывает сервисы домена с общим хранилищем."""
    status = StatusService(repository, event_bus=event_bus, clock=clock)
    tracker = LocationTracker(repository, redis=redis, clock=clock)
    return DispatchContainer(
        repository=repository,
        drivers=DriverService(repository, event_bus=event_bus, clock=clock),
        status=status,
        tracker=tracker,
        matcher=DispatchMatcher(repository, status, tracker, event_bus=event_bus),
        stats=StatsAggregator(repository, event_bus=event_bus, clock=clock),
        storage_backend=storage_backend,
        event_bus=event_bus,
        redis=redis,
    )


_container: DispatchContainer | None = None


def set_container(container: DispatchContainer | None) -> None:
    global _container
    _container = container


def get_container() -> DispatchContainer:
    """Dependency FastAPI: текущий контейнер сервисов."""
    if _container is None:
        raise RuntimeError("Сервисы не инициализированы")
    return _container


async def init_container() -> DispatchContainer:
    """
    Подключает инфраструктуру согласно конфигурации и собирает сервисы.
    """
    from src.config import settings

    infrastructure: list[str] = []
    backend = settings.storage.STORAGE_BACKEND
    lock_timeout = settings.storage.LOCK_TIMEOUT_SECONDS

    if backend == StorageBackend.POSTGRES.value:
        await init_db()
        infrastructure.append("postgres")
        repository: DriverRepository = PostgresDriverRepository(get_db(), lock_timeout=lock_timeout)
    else:
        repository = InMemoryDriverRepository(lock_timeout=lock_timeout)

    redis = None
    if settings.redis.REDIS_ENABLED:
        await init_redis()
        infrastructure.append("redis")
        redis = get_redis()

    event_bus = None
    if settings.dispatch.EVENTS_ENABLED:
        await init_event_bus()
        infrastructure.append("rabbitmq")
        event_bus = get_event_bus()

    container = build_container(
        repository,
        event_bus=event_bus,
        redis=redis,
        storage_backend=backend,
    )
    container.infrastructure = infrastructure
    set_container(container)

    await log_info(
        f"Сервисы собраны: backend={backend}, инфраструктура={infrastructure or ['none']}",
        type_msg=TypeMsg.INFO,
    )
    return container


async def close_container() -> None:
    """Отключает инфраструктуру, поднятую init_container()."""
    global _container
    if _container is None:
        return

    if "rabbitmq" in _container.infrastructure:
        await close_event_bus()
    if "redis" in _container.infrastructure:
        await close_redis()
    if "postgres" in _container.infrastructure:
        await close_db()
    _container = None


def get_driver_service(container: DispatchContainer = Depends(get_container)) -> DriverService:
    return container.drivers


def get_status_service(container: DispatchContainer = Depends(get_container)) -> StatusService:
    return container.status


def get_tracker(container: DispatchContainer = Depends(get_container)) -> LocationTracker:
    return container.tracker


def get_matcher(container: DispatchContainer = Depends(get_container)) -> DispatchMatcher:
    return container.matcher


def get_stats_aggregator(container: DispatchContainer = Depends(get_container)) -> StatsAggregator:
    return container.stats
