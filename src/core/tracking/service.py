# src/core/tracking/service.py
"""
Трекинг геолокации водителей.

Позиция пишется целиком под блокировкой записи водителя. Во время доставки
каждый фикс транслируется в Redis-канал доставки для отслеживания клиентом.

Поиск поблизости использует прямоугольник ± radius_km / KM_PER_DEGREE градусов.
Это грубое приближение (не great-circle): по долготе прямоугольник сужается
к полюсам, у антимеридиана не переходит через ±180.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from src.common.constants import (
    DriverStatus,
    MAX_HEADING,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_LATITUDE,
    MIN_LONGITUDE,
    TypeMsg,
)
from src.common.errors import ValidationError
from src.common.logger import log_error, log_info
from src.common.validators import optional_number, require_number
from src.core.drivers.models import Driver, DriverLocation, DriverSummary, utc_now
from src.core.drivers.repository import DriverRepository
from src.infra.redis_client import RedisClient


class LocationTracker:
    """Приём фиксов геолокации и поиск водителей поблизости."""

    def __init__(
        self,
        repository: DriverRepository,
        redis: Optional[RedisClient] = None,
        clock: Callable[[], datetime] = utc_now,
        freshness_seconds: Optional[float] = None,
        km_per_degree: Optional[float] = None,
        default_radius_km: Optional[float] = None,
    ) -> None:
        """
        Инициализация трекера.

        Args:
            repository: Хранилище водителей
            redis: Клиент Redis для трансляции фиксов (None отключает трансляцию)
            clock: Источник текущего времени
            freshness_seconds: Окно свежести позиции (из конфига если None)
            km_per_degree: Км в одном градусе для bounding box (из конфига если None)
            default_radius_km: Радиус поиска по умолчанию (из конфига если None)
        """
        from src.config import settings

        self._repository = repository
        self._redis = redis
        self._clock = clock
        self._freshness_seconds = (
            freshness_seconds if freshness_seconds is not None
            else settings.tracking.LOCATION_FRESHNESS_SECONDS
        )
        self._km_per_degree = (
            km_per_degree if km_per_degree is not None
            else settings.tracking.KM_PER_DEGREE
        )
        self._default_radius_km = (
            default_radius_km if default_radius_km is not None
            else settings.tracking.NEARBY_RADIUS_KM
        )

    @property
    def freshness_seconds(self) -> float:
        return self._freshness_seconds

    # =========================================================================
    # ОБНОВЛЕНИЕ ПОЗИЦИИ
    # =========================================================================

    @staticmethod
    def validate_fix(
        latitude: float,
        longitude: float,
        accuracy: Optional[float] = None,
        heading: Optional[float] = None,
        speed: Optional[float] = None,
    ) -> dict[str, Optional[float]]:
        """
        Проверяет фикс геолокации.

        Raises:
            ValidationError: значение вне диапазона или не конечное число
        """
        return {
            "latitude": require_number("latitude", latitude, minimum=MIN_LATITUDE, maximum=MAX_LATITUDE),
            "longitude": require_number("longitude", longitude, minimum=MIN_LONGITUDE, maximum=MAX_LONGITUDE),
            "accuracy": optional_number("accuracy", accuracy, minimum=0),
            "heading": optional_number("heading", heading, minimum=0, maximum=MAX_HEADING, exclusive_maximum=True),
            "speed": optional_number("speed", speed, minimum=0),
        }

    async def update_location(
        self,
        driver_id: str,
        latitude: float,
        longitude: float,
        accuracy: Optional[float] = None,
        heading: Optional[float] = None,
        speed: Optional[float] = None,
    ) -> Driver:
        """
        Перезаписывает позицию водителя целиком.

        updated_at строго возрастает: если часы не сдвинулись с прошлого
        фикса, метка сдвигается на одну микросекунду.

        Raises:
            ValidationError: некорректный фикс (позиция не меняется)
            NotFoundError: водитель не найден
        """
        fix = self.validate_fix(latitude, longitude, accuracy, heading, speed)

        async with self._repository.locked(driver_id) as driver:
            now = self._clock()
            previous = driver.current_location
            if previous is not None and now <= previous.updated_at:
                now = previous.updated_at + timedelta(microseconds=1)

            driver.current_location = DriverLocation(**fix, updated_at=now)
            driver.updated_at = now
            snapshot = driver.model_copy(deep=True)

        await log_info(
            f"Позиция водителя {driver_id}: {fix['latitude']:.5f}, {fix['longitude']:.5f}",
            type_msg=TypeMsg.DEBUG,
        )

        if snapshot.active_delivery_id is not None:
            await self._broadcast(snapshot)
        return snapshot

    async def _broadcast(self, driver: Driver) -> None:
        """
        Публикует фикс в канал доставки и кэширует последнюю позицию.
        Ошибки Redis логируются и не влияют на обновление позиции.
        """
        if self._redis is None or driver.current_location is None:
            return

        from src.config import settings
        if not settings.tracking.PUBLISH_LOCATIONS:
            return

        location = driver.current_location
        channel = f"delivery:{driver.active_delivery_id}:location"
        try:
            payload = location.model_dump_json()
            await self._redis.publish(channel, payload)
            await self._redis.set_model(
                f"driver:{driver.id}:location",
                location,
                ttl=int(self._freshness_seconds),
            )
        except Exception as e:
            await log_error(f"Ошибка публикации позиции водителя {driver.id} в {channel}: {e}")

    # =========================================================================
    # ЗАПРОСЫ
    # =========================================================================

    def is_fresh(self, driver: Driver, now: Optional[datetime] = None) -> bool:
        """Свежая ли позиция водителя (производное свойство, не хранится)."""
        if driver.current_location is None:
            return False
        return driver.current_location.is_fresh(now or self._clock(), self._freshness_seconds)

    async def find_nearby(
        self,
        latitude: float,
        longitude: float,
        radius_km: Optional[float] = None,
        status: DriverStatus = DriverStatus.AVAILABLE,
    ) -> list[Driver]:
        """
        Водители внутри bounding box вокруг точки.

        Args:
            latitude: Широта центра
            longitude: Долгота центра
            radius_km: Радиус в км (из конфига если None)
            status: Требуемый статус водителя

        Returns:
            Неудалённые водители, по убыванию среднего рейтинга
        """
        if radius_km is None:
            radius_km = self._default_radius_km

        center_lat = require_number("latitude", latitude, minimum=MIN_LATITUDE, maximum=MAX_LATITUDE)
        center_lon = require_number("longitude", longitude, minimum=MIN_LONGITUDE, maximum=MAX_LONGITUDE)
        radius = require_number("radius_km", radius_km, minimum=0)
        if radius <= 0:
            raise ValidationError("Радиус поиска должен быть положительным", field="radius_km", value=radius)

        delta = radius / self._km_per_degree
        drivers = await self._repository.find_in_box(
            min_lat=center_lat - delta,
            max_lat=center_lat + delta,
            min_lon=center_lon - delta,
            max_lon=center_lon + delta,
            status=status,
        )
        drivers = [d for d in drivers if not d.is_deleted and d.status == status]
        drivers.sort(key=lambda d: d.stats.average_rating, reverse=True)
        return drivers

    def summarize(self, drivers: list[Driver]) -> list[DriverSummary]:
        """Краткие карточки водителей с признаком свежести позиции."""
        now = self._clock()
        return [DriverSummary.from_driver(d, now, self._freshness_seconds) for d in drivers]
