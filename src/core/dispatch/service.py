# src/core/dispatch/service.py
"""
Назначение водителей на доставки.

Выбор кандидатов идёт по снимку (может устареть), захват водителя
атомарен и выполняется под блокировкой его записи. Если кандидата
перехватил параллельный заказ, пробуем следующего; число попыток
ограничено длиной списка кандидатов. Глобальной блокировки нет.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from src.common.constants import DriverStatus, MAX_LATITUDE, MAX_LONGITUDE, MIN_LATITUDE, MIN_LONGITUDE, TypeMsg
from src.common.errors import ConflictError, NoDriverAvailableError, NotFoundError
from src.common.logger import log_info
from src.common.validators import require_text
from src.core.drivers.models import Driver
from src.core.drivers.repository import DriverRepository
from src.core.status.service import StatusService
from src.core.tracking.service import LocationTracker
from src.infra.event_bus import EventBus, publish_event
from src.shared.events import DeliveryAssigned


class PickupLocation(BaseModel):
    """Точка забора заказа."""

    latitude: float = Field(..., ge=MIN_LATITUDE, le=MAX_LATITUDE, allow_inf_nan=False)
    longitude: float = Field(..., ge=MIN_LONGITUDE, le=MAX_LONGITUDE, allow_inf_nan=False)


class DispatchMatcher:
    """
    Сервис назначения заказов водителям.

    Политики выбора:
    - без точки забора: наименее загруженные (total_deliveries по возрастанию)
    - с точкой забора: водители в радиусе DISPATCH_RADIUS_KM по убыванию рейтинга
    """

    def __init__(
        self,
        repository: DriverRepository,
        status_service: StatusService,
        tracker: LocationTracker,
        event_bus: Optional[EventBus] = None,
        dispatch_radius_km: Optional[float] = None,
    ) -> None:
        from src.config import settings

        self._repository = repository
        self._status = status_service
        self._tracker = tracker
        self._event_bus = event_bus
        self._radius_km = (
            dispatch_radius_km if dispatch_radius_km is not None
            else settings.dispatch.DISPATCH_RADIUS_KM
        )

    async def find_candidates(self, pickup: Optional[PickupLocation] = None) -> list[Driver]:
        """Кандидаты в порядке приоритета (снимок, без блокировок)."""
        if pickup is None:
            return await self._repository.find_dispatchable()

        nearby = await self._tracker.find_nearby(
            pickup.latitude,
            pickup.longitude,
            radius_km=self._radius_km,
            status=DriverStatus.AVAILABLE,
        )
        return [d for d in nearby if d.is_dispatchable]

    async def assign(self, order_id: str, pickup: Optional[PickupLocation] = None) -> Driver:
        """
        Назначает заказ первому кандидату, которого удалось захватить.

        Args:
            order_id: ID заказа (становится active_delivery_id водителя)
            pickup: Точка забора (необязательно)

        Returns:
            Водитель в статусе on_delivery

        Raises:
            ValidationError: пустой order_id
            NoDriverAvailableError: нет кандидатов или все заняты
        """
        order_id = require_text("order_id", order_id)
        candidates = await self.find_candidates(pickup)

        if not candidates:
            await log_info(f"Нет свободных водителей для заказа {order_id}", type_msg=TypeMsg.WARNING)
            raise NoDriverAvailableError("Нет свободных водителей", order_id=order_id)

        for candidate in candidates:
            try:
                driver = await self._status.claim_for_delivery(candidate.id, order_id)
            except (ConflictError, NotFoundError) as e:
                await log_info(
                    f"Кандидат {candidate.id} для заказа {order_id} пропущен: {e.message}",
                    type_msg=TypeMsg.DEBUG,
                )
                continue

            await log_info(f"Заказ {order_id} назначен водителю {driver.id}", type_msg=TypeMsg.INFO)
            await publish_event(
                self._event_bus,
                DeliveryAssigned(driver_id=driver.id, order_id=order_id, fcm_token=driver.fcm_token),
            )
            return driver

        await log_info(
            f"Все {len(candidates)} кандидатов для заказа {order_id} заняты",
            type_msg=TypeMsg.WARNING,
        )
        raise NoDriverAvailableError(
            "Все подходящие водители заняты", order_id=order_id, candidates=len(candidates)
        )
