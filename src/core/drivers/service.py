# src/core/drivers/service.py
"""
Сервис администрирования водителей.
Регистрация, мягкое удаление, верификация, включение/отключение,
push-токен и сводная статистика.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from src.common.constants import DriverStatus, TypeMsg
from src.common.errors import NotFoundError, ValidationError
from src.common.logger import log_info
from src.common.validators import require_text
from src.core.drivers.models import (
    Driver,
    DriverDocuments,
    DriverProfileUpdate,
    DriverRegistrationDTO,
    DriverStatsReport,
    DriverSummary,
    FleetStatistics,
    utc_now,
)
from src.core.drivers.repository import DriverRepository
from src.core.status.machine import DriverStatusMachine, status_changed_event
from src.infra.event_bus import EventBus, publish_event
from src.shared.events import DriverDeleted, DriverRegistered


class DriverService:
    """Административные операции над записями водителей."""

    def __init__(
        self,
        repository: DriverRepository,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
        freshness_seconds: Optional[float] = None,
        top_performers_limit: Optional[int] = None,
    ) -> None:
        """
        Инициализация сервиса.

        Args:
            repository: Хранилище водителей
            event_bus: Шина событий (None, если события отключены)
            clock: Источник текущего времени
            freshness_seconds: Окно свежести позиции (из конфига если None)
            top_performers_limit: Размер рейтинга лучших (из конфига если None)
        """
        from src.config import settings

        self._repository = repository
        self._event_bus = event_bus
        self._clock = clock
        self._freshness_seconds = (
            freshness_seconds if freshness_seconds is not None
            else settings.tracking.LOCATION_FRESHNESS_SECONDS
        )
        self._top_limit = (
            top_performers_limit if top_performers_limit is not None
            else settings.dispatch.TOP_PERFORMERS_LIMIT
        )

    # =========================================================================
    # РЕГИСТРАЦИЯ И ЧТЕНИЕ
    # =========================================================================

    async def register_driver(self, dto: DriverRegistrationDTO) -> Driver:
        """
        Регистрирует водителя в статусе offline.

        Raises:
            ValidationError: некорректные данные профиля
            ConflictError: auth_uid или email уже заняты
        """
        now = self._clock()
        try:
            driver = Driver(
                auth_uid=dto.auth_uid,
                name=dto.name,
                email=dto.email,
                phone=dto.phone,
                vehicle=dto.vehicle,
                documents=dto.documents or DriverDocuments(),
                fcm_token=dto.fcm_token,
                status=DriverStatus.OFFLINE,
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic("Некорректные данные водителя", e) from None

        driver = await self._repository.create(driver)
        await log_info(
            f"Зарегистрирован водитель {driver.id} ({driver.vehicle.vehicle_type.value})",
            type_msg=TypeMsg.INFO,
        )
        await publish_event(
            self._event_bus,
            DriverRegistered(
                driver_id=driver.id,
                auth_uid=driver.auth_uid,
                vehicle_type=driver.vehicle.vehicle_type.value,
            ),
        )
        return driver

    async def get_driver(self, driver_id: str) -> Driver:
        """Raises NotFoundError для неизвестного или удалённого водителя."""
        driver = await self._repository.get(driver_id)
        if driver is None:
            raise NotFoundError("Водитель не найден", driver_id=driver_id)
        return driver

    async def list_drivers(self, status: Optional[DriverStatus] = None) -> list[Driver]:
        """Неудалённые водители, новые первыми."""
        drivers = await self._repository.list_all()
        if status is not None:
            drivers = [d for d in drivers if d.status == status]
        return drivers

    # =========================================================================
    # ИЗМЕНЕНИЯ
    # =========================================================================

    async def soft_delete(self, driver_id: str) -> Driver:
        """
        Мягко удаляет водителя: offline, без доставки, токена и позиции.
        Запись остаётся в хранилище, но исключается из всех запросов.
        """
        async with self._repository.locked(driver_id) as driver:
            now = self._clock()
            old_status = DriverStatusMachine.go_offline(driver, now)
            driver.current_location = None
            driver.is_deleted = True
            driver.deleted_at = now
            snapshot = driver.model_copy(deep=True)

        await log_info(f"Водитель {driver_id} удалён (был {old_status.value})", type_msg=TypeMsg.INFO)
        event = status_changed_event(snapshot, old_status)
        if event is not None:
            await publish_event(self._event_bus, event)
        await publish_event(self._event_bus, DriverDeleted(driver_id=driver_id))
        return snapshot

    async def update_profile(self, driver_id: str, update: DriverProfileUpdate) -> Driver:
        """
        Изменяет имя, контакты и транспорт водителя.

        Raises:
            ValidationError: пустое изменение или некорректные значения
            NotFoundError: водитель не найден
            ConflictError: email занят другим водителем
        """
        if not update.model_dump(exclude_none=True):
            raise ValidationError("Не передано ни одного поля профиля")

        async with self._repository.locked(driver_id) as driver:
            try:
                updated = Driver.model_validate(update.apply_to(driver.model_dump()))
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic("Некорректные данные водителя", e) from None

            driver.name = updated.name
            driver.email = updated.email
            driver.phone = updated.phone
            driver.vehicle = updated.vehicle
            driver.updated_at = self._clock()
            snapshot = driver.model_copy(deep=True)

        await log_info(f"Профиль водителя {driver_id} обновлён", type_msg=TypeMsg.INFO)
        return snapshot

    async def set_verification(
        self,
        driver_id: str,
        email: Optional[bool] = None,
        phone: Optional[bool] = None,
        documents: Optional[bool] = None,
    ) -> Driver:
        """Обновляет флаги верификации (None не меняет флаг)."""
        async with self._repository.locked(driver_id) as driver:
            if email is not None:
                driver.is_email_verified = email
            if phone is not None:
                driver.is_phone_verified = phone
            if documents is not None:
                driver.is_documents_verified = documents
            driver.updated_at = self._clock()
            snapshot = driver.model_copy(deep=True)

        await log_info(
            f"Верификация водителя {driver_id}: email={snapshot.is_email_verified}, "
            f"phone={snapshot.is_phone_verified}, documents={snapshot.is_documents_verified}",
            type_msg=TypeMsg.INFO,
        )
        return snapshot

    async def set_active(self, driver_id: str, active: bool) -> Driver:
        """
        Включает или отключает водителя.
        Отключение переводит в offline и сбрасывает доставку и токен.
        """
        async with self._repository.locked(driver_id) as driver:
            now = self._clock()
            old_status = driver.status
            driver.is_active = active
            if not active:
                DriverStatusMachine.go_offline(driver, now)
            driver.updated_at = now
            snapshot = driver.model_copy(deep=True)

        await log_info(
            f"Водитель {driver_id} {'включён' if active else 'отключён'}",
            type_msg=TypeMsg.INFO,
        )
        event = status_changed_event(snapshot, old_status)
        if event is not None:
            await publish_event(self._event_bus, event)
        return snapshot

    async def update_fcm_token(self, driver_id: str, token: str) -> Driver:
        """Сохраняет push-токен устройства водителя."""
        token = require_text("fcm_token", token, max_length=4096)
        async with self._repository.locked(driver_id) as driver:
            driver.fcm_token = token
            driver.updated_at = self._clock()
            snapshot = driver.model_copy(deep=True)

        await log_info(f"Обновлён push-токен водителя {driver_id}", type_msg=TypeMsg.DEBUG)
        return snapshot

    # =========================================================================
    # СТАТИСТИКА
    # =========================================================================

    async def get_statistics(self) -> FleetStatistics:
        """Сводка по статусам, итогам и средним среди неудалённых водителей."""
        return FleetStatistics.from_drivers(await self._repository.list_all())

    async def get_top_performers(self, limit: Optional[int] = None) -> list[DriverSummary]:
        """Лучшие водители: рейтинг по убыванию, затем число доставок по убыванию."""
        if limit is None:
            limit = self._top_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("Лимит должен быть положительным целым", field="limit")

        drivers = await self._repository.list_all()
        drivers.sort(
            key=lambda d: (d.stats.average_rating, d.stats.total_deliveries),
            reverse=True,
        )
        now = self._clock()
        return [
            DriverSummary.from_driver(d, now, self._freshness_seconds)
            for d in drivers[:limit]
        ]

    async def get_driver_stats(self, driver_id: str) -> DriverStatsReport:
        """Статистика водителя: всё время, сегодня, неделя, месяц, текущее состояние."""
        driver = await self.get_driver(driver_id)
        return DriverStatsReport.from_driver(driver, self._clock(), self._freshness_seconds)
