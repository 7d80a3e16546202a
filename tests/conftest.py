# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("STORAGE_BACKEND", "memory")

from src.core.dispatch.service import DispatchMatcher
from src.core.drivers.models import Driver, DriverRegistrationDTO, VehicleInfo
from src.core.drivers.repository import InMemoryDriverRepository
from src.core.drivers.service import DriverService
from src.core.stats.service import StatsAggregator
from src.core.status.service import StatusService
from src.core.tracking.service import LocationTracker


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "=== SYSTEM ===",
        "PROJECT_NAME": "driver_dispatch_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "DISPATCH_SERVICE_HOST": "127.0.0.1",
        "DISPATCH_SERVICE_PORT": 18092,
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "colored",
        "LOG_MAX_BYTES": 1048576,
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "driver_dispatch_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "DB_MIN_POOL_SIZE": 2,
        "DB_MAX_POOL_SIZE": 5,
        "DB_COMMAND_TIMEOUT": 30,
        "REDIS_ENABLED": False,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_PASSWORD": "",
        "REDIS_NAMESPACE": "dispatch_test",
        "REDIS_MAX_CONNECTIONS": 10,
        "RABBITMQ_HOST": "localhost",
        "RABBITMQ_PORT": 5672,
        "RABBITMQ_USER": "guest",
        "RABBITMQ_PASSWORD": "guest",
        "RABBITMQ_VHOST": "/",
        "RABBITMQ_EXCHANGE": "dispatch.test",
        "RABBITMQ_PREFETCH_COUNT": 5,
        "STORAGE_BACKEND": "memory",
        "LOCK_TIMEOUT_SECONDS": 2.0,
        "LOCATION_FRESHNESS_SECONDS": 120,
        "KM_PER_DEGREE": 111.0,
        "NEARBY_RADIUS_KM": 10.0,
        "PUBLISH_LOCATIONS": True,
        "DISPATCH_RADIUS_KM": 10.0,
        "TOP_PERFORMERS_LIMIT": 5,
        "EVENTS_ENABLED": False,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.set_model = AsyncMock(return_value=True)
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.subscribe = AsyncMock(return_value=None)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ВРЕМЯ
# =============================================================================

class FakeClock:
    """Управляемые часы для детерминированных тестов."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    """Часы, стоящие на месте, пока тест их не сдвинет."""
    return FakeClock(datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# ФИКСТУРЫ СЕРВИСОВ (IN-MEMORY)
# =============================================================================

@pytest.fixture
def repository() -> InMemoryDriverRepository:
    return InMemoryDriverRepository(lock_timeout=1.0)


@pytest.fixture
def status_service(repository, mock_event_bus, clock) -> StatusService:
    return StatusService(repository, event_bus=mock_event_bus, clock=clock)


@pytest.fixture
def tracker(repository, mock_redis, clock) -> LocationTracker:
    return LocationTracker(
        repository,
        redis=mock_redis,
        clock=clock,
        freshness_seconds=120,
        km_per_degree=111.0,
        default_radius_km=10.0,
    )


@pytest.fixture
def stats_aggregator(repository, mock_event_bus, clock) -> StatsAggregator:
    return StatsAggregator(repository, event_bus=mock_event_bus, clock=clock)


@pytest.fixture
def driver_service(repository, mock_event_bus, clock) -> DriverService:
    return DriverService(
        repository,
        event_bus=mock_event_bus,
        clock=clock,
        freshness_seconds=120,
        top_performers_limit=5,
    )


@pytest.fixture
def matcher(repository, status_service, tracker, mock_event_bus) -> DispatchMatcher:
    return DispatchMatcher(
        repository,
        status_service,
        tracker,
        event_bus=mock_event_bus,
        dispatch_radius_km=10.0,
    )


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def sample_registration_data() -> dict[str, Any]:
    """Пример данных регистрации курьера."""
    return {
        "auth_uid": "firebase-uid-001",
        "name": "Ahmed Hassan",
        "email": "Ahmed.Hassan@Example.com",
        "phone": "+971 50 123 4567",
        "vehicle": {
            "vehicle_type": "bike",
            "plate_number": " dxb 12345 ",
            "color": "Black",
            "make": "Honda",
        },
        "fcm_token": "fcm-token-001",
    }


def make_registration(index: int) -> DriverRegistrationDTO:
    return DriverRegistrationDTO(
        auth_uid=f"uid-{index}",
        name=f"Driver {index}",
        email=f"driver{index}@example.com",
        phone=f"+97150000{index:04d}",
        vehicle=VehicleInfo(vehicle_type="car", plate_number=f"DXB{index:05d}"),
        fcm_token=f"token-{index}",
    )


CreateDriver = Callable[..., Awaitable[Driver]]


@pytest.fixture
def create_driver(driver_service, status_service, tracker, stats_aggregator, clock) -> CreateDriver:
    """
    Фабрика водителей: регистрация, верификация документов, позиция и статус.
    """
    counter = {"value": 0}

    async def _create(
        latitude: float | None = 25.2,
        longitude: float | None = 55.3,
        available: bool = True,
        verified: bool = True,
        ratings: list[float] | None = None,
    ) -> Driver:
        counter["value"] += 1
        driver = await driver_service.register_driver(make_registration(counter["value"]))
        if verified:
            await driver_service.set_verification(driver.id, documents=True)
        for i, value in enumerate(ratings or []):
            await stats_aggregator.add_rating(driver.id, f"seed-order-{driver.id}-{i}", value)
        if latitude is not None and longitude is not None:
            await tracker.update_location(driver.id, latitude, longitude)
        if available:
            await status_service.set_available(driver.id)
        # Разные created_at дают стабильный порядок списков
        clock.advance(1)
        return await driver_service.get_driver(driver.id)

    return _create
