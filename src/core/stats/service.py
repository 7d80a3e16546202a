# src/core/stats/service.py
"""
Агрегатор статистики водителей.

Средние значения пересчитываются инкрементально:
    avg_n = (avg_{n-1} * (n - 1) + x) / n,  n после инкремента.
Корректность обеспечивается сериализацией по водителю (repository.locked):
завершение доставки обновляет счётчики, заработок, среднее время и статус
одной фиксацией, либо не меняет ничего.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from src.common.constants import MAX_RATING, MIN_RATING, PeriodKind, TypeMsg
from src.common.errors import ConflictError, NotFoundError, ValidationError
from src.common.logger import log_info
from src.common.validators import require_number, require_text
from src.core.drivers.models import Driver, DriverRating, DriverStats, utc_now
from src.core.drivers.repository import DriverRepository
from src.core.status.machine import DriverStatusMachine, status_changed_event
from src.infra.event_bus import EventBus, publish_event
from src.shared.events import DeliveryCompleted, DriverRated


def running_mean(previous: float, count: int, value: float) -> float:
    """Инкрементальное среднее; count включает новое значение."""
    return (previous * (count - 1) + value) / count


def reset_stats_period(stats: DriverStats, kind: PeriodKind) -> None:
    """Обнуляет счётчик и заработок периода; итоги и средние не трогает."""
    match kind:
        case PeriodKind.DAILY:
            stats.completed_today = 0
            stats.today_earnings = 0.0
        case PeriodKind.WEEKLY:
            stats.completed_this_week = 0
            stats.week_earnings = 0.0
        case PeriodKind.MONTHLY:
            stats.completed_this_month = 0
            stats.month_earnings = 0.0


class StatsAggregator:
    """Завершение доставок, оценки и сброс периодных счётчиков."""

    def __init__(
        self,
        repository: DriverRepository,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._event_bus = event_bus
        self._clock = clock

    # =========================================================================
    # ЗАВЕРШЕНИЕ ДОСТАВКИ
    # =========================================================================

    async def complete_delivery(
        self,
        driver_id: str,
        delivery_time_minutes: float,
        earnings: float,
        delivery_id: Optional[str] = None,
    ) -> Driver:
        """
        Фиксирует завершение доставки и возвращает водителя в available.

        Args:
            driver_id: ID водителя
            delivery_time_minutes: Длительность доставки (мин)
            earnings: Заработок за доставку
            delivery_id: ID доставки из колбэка (сверяется с активной)

        Raises:
            ValidationError: отрицательные или не конечные значения
            NotFoundError: водитель не найден
            ConflictError: водитель не на доставке или доставка не совпадает
        """
        minutes = require_number("delivery_time_minutes", delivery_time_minutes, minimum=0)
        amount = require_number("earnings", earnings, minimum=0)

        async with self._repository.locked(driver_id) as driver:
            if not driver.is_delivering:
                raise ConflictError(
                    f"Водитель не выполняет доставку (статус {driver.status.value})",
                    driver_id=driver_id,
                )
            if delivery_id is not None and delivery_id != driver.active_delivery_id:
                raise ConflictError(
                    "Доставка не совпадает с активной",
                    driver_id=driver_id,
                    delivery_id=delivery_id,
                    active_delivery_id=driver.active_delivery_id,
                )

            now = self._clock()
            order_id = driver.active_delivery_id
            stats = driver.stats.model_copy()

            stats.total_deliveries += 1
            stats.completed_today += 1
            stats.completed_this_week += 1
            stats.completed_this_month += 1

            stats.total_earnings += amount
            stats.today_earnings += amount
            stats.week_earnings += amount
            stats.month_earnings += amount

            stats.average_delivery_time = running_mean(
                stats.average_delivery_time, stats.total_deliveries, minutes
            )
            stats.last_delivery_at = now

            old_status = DriverStatusMachine.finish_delivery(driver, now)
            driver.stats = stats
            snapshot = driver.model_copy(deep=True)

        await log_info(
            f"Водитель {driver_id} завершил доставку {order_id}: "
            f"{minutes} мин, заработок {amount}",
            type_msg=TypeMsg.INFO,
        )
        await publish_event(
            self._event_bus,
            DeliveryCompleted(
                driver_id=driver_id,
                order_id=order_id,
                earnings=amount,
                delivery_time_minutes=minutes,
            ),
        )
        event = status_changed_event(snapshot, old_status)
        if event is not None:
            await publish_event(self._event_bus, event)
        return snapshot

    # =========================================================================
    # ОЦЕНКИ
    # =========================================================================

    async def add_rating(
        self,
        driver_id: str,
        order_id: str,
        rating: float,
        comment: Optional[str] = None,
    ) -> Driver:
        """
        Добавляет оценку и пересчитывает средний рейтинг.

        Raises:
            ValidationError: оценка вне [1, 5] или пустой order_id
            NotFoundError: водитель не найден
            ConflictError: за этот заказ оценка уже есть
        """
        order_id = require_text("order_id", order_id)
        value = require_number("rating", rating, minimum=MIN_RATING, maximum=MAX_RATING)
        if comment is not None:
            if not isinstance(comment, str):
                raise ValidationError("Комментарий должен быть строкой", field="comment")
            if len(comment) > 500:
                raise ValidationError("Комментарий длиннее 500 символов", field="comment")

        async with self._repository.locked(driver_id) as driver:
            if driver.has_rating_for(order_id):
                raise ConflictError(
                    "Заказ уже оценён", driver_id=driver_id, order_id=order_id
                )

            now = self._clock()
            driver.ratings.append(
                DriverRating(order_id=order_id, rating=value, comment=comment, created_at=now)
            )
            stats = driver.stats.model_copy()
            stats.total_ratings += 1
            stats.average_rating = running_mean(stats.average_rating, stats.total_ratings, value)
            driver.stats = stats
            driver.updated_at = now
            snapshot = driver.model_copy(deep=True)

        await log_info(
            f"Водитель {driver_id} получил оценку {value} за заказ {order_id}",
            type_msg=TypeMsg.DEBUG,
        )
        await publish_event(
            self._event_bus,
            DriverRated(
                driver_id=driver_id,
                order_id=order_id,
                rating=value,
                average_rating=snapshot.stats.average_rating,
            ),
        )
        return snapshot

    # =========================================================================
    # СБРОС ПЕРИОДОВ
    # =========================================================================

    async def reset_period(self, kind: PeriodKind | str, driver_id: Optional[str] = None) -> int:
        """
        Обнуляет счётчики периода. Вызывается внешним планировщиком.

        Повторный вызов безопасен: значения перезаписываются нулём.

        Args:
            kind: daily, weekly или monthly
            driver_id: Один водитель (если None, все неудалённые)

        Returns:
            Количество водителей, у которых выполнен сброс
        """
        try:
            period = PeriodKind(kind)
        except ValueError:
            raise ValidationError(f"Неизвестный период: {kind}", field="kind") from None

        if driver_id is not None:
            await self._reset_one(driver_id, period)
            return 1

        count = 0
        for driver in await self._repository.list_all():
            try:
                await self._reset_one(driver.id, period)
            except NotFoundError:
                # Удалён после снимка
                continue
            count += 1

        await log_info(f"Сброс периода {period.value}: {count} водителей", type_msg=TypeMsg.INFO)
        return count

    async def _reset_one(self, driver_id: str, period: PeriodKind) -> None:
        async with self._repository.locked(driver_id) as driver:
            stats = driver.stats.model_copy()
            reset_stats_period(stats, period)
            driver.stats = stats
