# src/core/status/service.py
"""
Сервис смены статусов водителя: выход на линию, уход с линии,
захват водителя под доставку.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from src.common.constants import TypeMsg
from src.common.logger import log_info, log_warning
from src.core.drivers.models import Driver, utc_now
from src.core.drivers.repository import DriverRepository
from src.core.status.machine import DriverStatusMachine, status_changed_event
from src.infra.event_bus import EventBus, publish_event


class StatusService:
    """Операции жизненного цикла водителя."""

    def __init__(
        self,
        repository: DriverRepository,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Инициализация сервиса.

        Args:
            repository: Хранилище водителей
            event_bus: Шина событий (None, если события отключены)
            clock: Источник текущего времени
        """
        self._repository = repository
        self._event_bus = event_bus
        self._clock = clock

    async def set_available(self, driver_id: str) -> Driver:
        """
        Водитель выходит на линию.
        Без текущей позиции переход выполняется с предупреждением в логе.

        Raises:
            NotFoundError: водитель не найден
            ConflictError: водитель на доставке или отключён
        """
        async with self._repository.locked(driver_id) as driver:
            old_status = DriverStatusMachine.go_available(driver, self._clock())
            snapshot = driver.model_copy(deep=True)

        if snapshot.current_location is None:
            await log_warning(f"Водитель {driver_id} вышел на линию без геолокации")

        event = status_changed_event(snapshot, old_status)
        if event is not None:
            await log_info(f"Водитель {driver_id} на линии", type_msg=TypeMsg.INFO)
            await publish_event(self._event_bus, event)
        return snapshot

    async def go_offline(self, driver_id: str) -> Driver:
        """Водитель уходит с линии (из любого статуса)."""
        async with self._repository.locked(driver_id) as driver:
            old_status = DriverStatusMachine.go_offline(driver, self._clock())
            snapshot = driver.model_copy(deep=True)

        await log_info(
            f"Водитель {driver_id} ушёл с линии (был {old_status.value})",
            type_msg=TypeMsg.INFO,
        )
        event = status_changed_event(snapshot, old_status)
        if event is not None:
            await publish_event(self._event_bus, event)
        return snapshot

    async def claim_for_delivery(self, driver_id: str, order_id: str) -> Driver:
        """
        Атомарно закрепляет свободного водителя за доставкой.

        Raises:
            NotFoundError: водитель не найден или удалён
            ConflictError: водитель уже занят или недоступен
        """
        async with self._repository.locked(driver_id) as driver:
            old_status = DriverStatusMachine.start_delivery(driver, order_id, self._clock())
            snapshot = driver.model_copy(deep=True)

        event = status_changed_event(snapshot, old_status)
        if event is not None:
            await publish_event(self._event_bus, event)
        return snapshot
