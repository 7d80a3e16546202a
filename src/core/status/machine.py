# src/core/status/machine.py
"""
Машина состояний водителя.

offline -> available -> on_delivery -> available / offline.
Переходы применяются к рабочей копии записи внутри repository.locked(),
поэтому проверка и изменение статуса атомарны относительно других операций
над тем же водителем.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from src.common.constants import DriverStatus
from src.common.errors import ConflictError
from src.core.drivers.models import Driver
from src.shared.events import DriverStatusChanged


class DriverStatusMachine:
    ALLOWED_TRANSITIONS: dict[DriverStatus, list[DriverStatus]] = {
        DriverStatus.OFFLINE: [DriverStatus.AVAILABLE, DriverStatus.OFFLINE],
        DriverStatus.AVAILABLE: [DriverStatus.AVAILABLE, DriverStatus.ON_DELIVERY, DriverStatus.OFFLINE],
        DriverStatus.ON_DELIVERY: [DriverStatus.AVAILABLE, DriverStatus.OFFLINE],
    }

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = DriverStatus(current_status)
            new = DriverStatus(new_status)
            return new in DriverStatusMachine.ALLOWED_TRANSITIONS.get(curr, [])
        except ValueError:
            return False

    @classmethod
    def _ensure(cls, driver: Driver, new_status: DriverStatus) -> None:
        if not cls.can_transition(driver.status, new_status):
            raise ConflictError(
                f"Недопустимый переход {driver.status.value} -> {new_status.value}",
                driver_id=driver.id,
                status=driver.status.value,
            )

    @classmethod
    def go_available(cls, driver: Driver, now: datetime) -> DriverStatus:
        """
        Водитель выходит на линию.
        Повторный вызов для available ничего не меняет.

        Returns:
            Статус до перехода
        """
        old_status = driver.status
        if old_status == DriverStatus.ON_DELIVERY:
            raise ConflictError(
                "Водитель выполняет доставку, статус вернёт только её завершение",
                driver_id=driver.id,
                active_delivery_id=driver.active_delivery_id,
            )
        if not driver.is_active:
            raise ConflictError("Водитель отключён администратором", driver_id=driver.id)
        if old_status == DriverStatus.AVAILABLE:
            return old_status

        cls._ensure(driver, DriverStatus.AVAILABLE)
        driver.status = DriverStatus.AVAILABLE
        driver.updated_at = now
        return old_status

    @classmethod
    def start_delivery(cls, driver: Driver, delivery_id: str, now: datetime) -> DriverStatus:
        """Назначение доставки: available -> on_delivery."""
        old_status = driver.status
        if old_status != DriverStatus.AVAILABLE:
            raise ConflictError(
                f"Водитель не свободен (статус {old_status.value})",
                driver_id=driver.id,
                status=old_status.value,
            )
        if not driver.is_dispatchable:
            raise ConflictError("Водитель недоступен для назначения", driver_id=driver.id)

        cls._ensure(driver, DriverStatus.ON_DELIVERY)
        driver.status = DriverStatus.ON_DELIVERY
        driver.active_delivery_id = delivery_id
        driver.updated_at = now
        return old_status

    @classmethod
    def finish_delivery(cls, driver: Driver, now: datetime) -> DriverStatus:
        """Завершение доставки: on_delivery -> available."""
        old_status = driver.status
        if old_status != DriverStatus.ON_DELIVERY:
            raise ConflictError(
                f"Водитель не выполняет доставку (статус {old_status.value})",
                driver_id=driver.id,
                status=old_status.value,
            )

        cls._ensure(driver, DriverStatus.AVAILABLE)
        driver.status = DriverStatus.AVAILABLE
        driver.active_delivery_id = None
        driver.updated_at = now
        return old_status

    @classmethod
    def go_offline(cls, driver: Driver, now: datetime) -> DriverStatus:
        """Уход с линии из любого статуса: сбрасывает доставку и push-токен."""
        old_status = driver.status
        cls._ensure(driver, DriverStatus.OFFLINE)
        driver.status = DriverStatus.OFFLINE
        driver.active_delivery_id = None
        driver.fcm_token = None
        driver.updated_at = now
        return old_status


def status_changed_event(
    driver: Driver,
    old_status: DriverStatus,
) -> Optional[DriverStatusChanged]:
    """Событие смены статуса или None, если статус не изменился."""
    if old_status == driver.status:
        return None
    return DriverStatusChanged(
        driver_id=driver.id,
        old_status=old_status.value,
        new_status=driver.status.value,
        active_delivery_id=driver.active_delivery_id,
    )
