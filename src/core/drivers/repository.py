# src/core/drivers/repository.py
"""
Хранилище записей водителей.
Реализует паттерн Repository: сервисы работают с абстракцией DriverRepository,
backend (память или PostgreSQL) выбирается конфигурацией.

Любое изменение записи выполняется внутри locked(driver_id): контекстный
менеджер выдаёт рабочую копию записи, при успешном выходе копия сохраняется,
при исключении отбрасывается. Записи разных водителей не блокируют друг друга.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Optional

import asyncpg

from src.common.constants import DriverStatus, TypeMsg
from src.common.errors import ConflictError, NotFoundError
from src.common.logger import log_info
from src.core.drivers.models import Driver, DriverLocation, DriverRating
from src.infra.database import DatabaseManager


class DriverRepository(ABC):
    """Абстрактное хранилище водителей."""

    @abstractmethod
    async def create(self, driver: Driver) -> Driver:
        """
        Сохраняет нового водителя.

        Raises:
            ConflictError: auth_uid или email уже заняты
        """

    @abstractmethod
    async def get(self, driver_id: str, include_deleted: bool = False) -> Optional[Driver]:
        """Возвращает снимок записи или None."""

    @abstractmethod
    async def list_all(self, include_deleted: bool = False) -> list[Driver]:
        """Возвращает снимки всех записей (от новых к старым)."""

    @abstractmethod
    async def find_in_box(
        self,
        min_lat: float,
        max_lat: float,
        min_lon: float,
        max_lon: float,
        status: DriverStatus,
    ) -> list[Driver]:
        """Неудалённые водители с позицией внутри прямоугольника и заданным статусом."""

    @abstractmethod
    async def find_dispatchable(self) -> list[Driver]:
        """Свободные верифицированные активные водители, наименее загруженные первыми."""

    @abstractmethod
    def locked(self, driver_id: str, include_deleted: bool = False) -> Any:
        """
        Эксклюзивный доступ к записи водителя.

        Raises:
            NotFoundError: водителя нет (или он удалён)
            ConflictError: не удалось дождаться блокировки
        """


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================

class InMemoryDriverRepository(DriverRepository):
    """
    Хранилище в памяти процесса.
    Сериализация по водителю через asyncio.Lock с ограничением ожидания.
    """

    def __init__(self, lock_timeout: float = 5.0) -> None:
        self._drivers: dict[str, Driver] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()
        self._lock_timeout = lock_timeout

    async def create(self, driver: Driver) -> Driver:
        async with self._registry_lock:
            for existing in self._drivers.values():
                if existing.auth_uid == driver.auth_uid:
                    raise ConflictError("Водитель с таким auth_uid уже зарегистрирован", auth_uid=driver.auth_uid)
            self._ensure_email_free(driver)

            self._drivers[driver.id] = driver.model_copy(deep=True)
            self._locks[driver.id] = asyncio.Lock()

        await log_info(f"Водитель {driver.id} сохранён в памяти", type_msg=TypeMsg.DEBUG)
        return driver.model_copy(deep=True)

    async def get(self, driver_id: str, include_deleted: bool = False) -> Optional[Driver]:
        driver = self._drivers.get(driver_id)
        if driver is None or (driver.is_deleted and not include_deleted):
            return None
        return driver.model_copy(deep=True)

    async def list_all(self, include_deleted: bool = False) -> list[Driver]:
        drivers = [
            d.model_copy(deep=True)
            for d in self._drivers.values()
            if include_deleted or not d.is_deleted
        ]
        drivers.sort(key=lambda d: d.created_at, reverse=True)
        return drivers

    async def find_in_box(
        self,
        min_lat: float,
        max_lat: float,
        min_lon: float,
        max_lon: float,
        status: DriverStatus,
    ) -> list[Driver]:
        result = []
        for driver in self._drivers.values():
            location = driver.current_location
            if driver.is_deleted or driver.status != status or location is None:
                continue
            if min_lat <= location.latitude <= max_lat and min_lon <= location.longitude <= max_lon:
                result.append(driver.model_copy(deep=True))
        return result

    async def find_dispatchable(self) -> list[Driver]:
        candidates = [d.model_copy(deep=True) for d in self._drivers.values() if d.is_dispatchable]
        candidates.sort(key=lambda d: d.stats.total_deliveries)
        return candidates

    @asynccontextmanager
    async def locked(self, driver_id: str, include_deleted: bool = False) -> AsyncIterator[Driver]:
        lock = self._locks.get(driver_id)
        if lock is None:
            raise NotFoundError("Водитель не найден", driver_id=driver_id)

        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._lock_timeout)
        except asyncio.TimeoutError:
            raise ConflictError(
                "Запись водителя занята другой операцией", driver_id=driver_id
            ) from None

        try:
            stored = self._drivers[driver_id]
            if stored.is_deleted and not include_deleted:
                raise NotFoundError("Водитель не найден", driver_id=driver_id)

            working = stored.model_copy(deep=True)
            yield working

            # Повторная валидация ловит нарушение инвариантов до фиксации
            committed = Driver.model_validate(working.model_dump())
            if committed.email != stored.email:
                self._ensure_email_free(committed)
            self._drivers[driver_id] = committed
        finally:
            lock.release()

    def _ensure_email_free(self, driver: Driver) -> None:
        # Email удалённых водителей остаётся занятым
        for existing in self._drivers.values():
            if existing.id != driver.id and existing.email == driver.email:
                raise ConflictError("Водитель с таким email уже зарегистрирован", email=driver.email)


# =============================================================================
# POSTGRESQL BACKEND
# =============================================================================

_DRIVER_COLUMNS = """
    id, auth_uid, name, email, phone, vehicle, documents, fcm_token,
    status, active_delivery_id,
    loc_latitude, loc_longitude, loc_accuracy, loc_heading, loc_speed, loc_updated_at,
    stats, is_email_verified, is_phone_verified, is_documents_verified,
    is_active, is_deleted, deleted_at, created_at, updated_at
"""


class PostgresDriverRepository(DriverRepository):
    """
    Хранилище в PostgreSQL.
    Сериализация по водителю через транзакцию с SELECT ... FOR UPDATE.
    """

    def __init__(self, db: DatabaseManager, lock_timeout: float = 5.0) -> None:
        """
        Инициализация репозитория.

        Args:
            db: Менеджер базы данных (Dependency Injection)
            lock_timeout: Максимальное ожидание блокировки строки (секунды)
        """
        self._db = db
        self._lock_timeout = lock_timeout

    # -------------------------------------------------------------------------
    # Маппинг строк
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_driver(row: Any, ratings: Iterable[Any] = ()) -> Driver:
        location = None
        if row["loc_latitude"] is not None:
            location = DriverLocation(
                latitude=row["loc_latitude"],
                longitude=row["loc_longitude"],
                accuracy=row["loc_accuracy"],
                heading=row["loc_heading"],
                speed=row["loc_speed"],
                updated_at=row["loc_updated_at"],
            )

        return Driver(
            id=row["id"],
            auth_uid=row["auth_uid"],
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            vehicle=json.loads(row["vehicle"]),
            documents=json.loads(row["documents"]),
            fcm_token=row["fcm_token"],
            status=DriverStatus(row["status"]),
            active_delivery_id=row["active_delivery_id"],
            current_location=location,
            stats=json.loads(row["stats"]),
            ratings=[
                DriverRating(
                    order_id=r["order_id"],
                    rating=r["rating"],
                    comment=r["comment"],
                    created_at=r["created_at"],
                )
                for r in ratings
            ],
            is_email_verified=row["is_email_verified"],
            is_phone_verified=row["is_phone_verified"],
            is_documents_verified=row["is_documents_verified"],
            is_active=row["is_active"],
            is_deleted=row["is_deleted"],
            deleted_at=row["deleted_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _driver_params(driver: Driver) -> list[Any]:
        location = driver.current_location
        return [
            driver.id,
            driver.auth_uid,
            driver.name,
            driver.email,
            driver.phone,
            json.dumps(driver.vehicle.model_dump(mode="json")),
            json.dumps(driver.documents.model_dump(mode="json")),
            driver.fcm_token,
            driver.status.value,
            driver.active_delivery_id,
            location.latitude if location else None,
            location.longitude if location else None,
            location.accuracy if location else None,
            location.heading if location else None,
            location.speed if location else None,
            location.updated_at if location else None,
            json.dumps(driver.stats.model_dump(mode="json")),
            driver.is_email_verified,
            driver.is_phone_verified,
            driver.is_documents_verified,
            driver.is_active,
            driver.is_deleted,
            driver.deleted_at,
            driver.created_at,
            driver.updated_at,
        ]

    async def _attach_ratings(self, rows: list[Any]) -> list[Driver]:
        """Загружает оценки пачкой и собирает модели."""
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        rating_rows = await self._db.fetch(
            """
            SELECT driver_id, order_id, rating, comment, created_at
            FROM driver_ratings
            WHERE driver_id = ANY($1::text[])
            ORDER BY created_at, id
            """,
            ids,
        )
        by_driver: dict[str, list[Any]] = {}
        for r in rating_rows:
            by_driver.setdefault(r["driver_id"], []).append(r)

        return [self._row_to_driver(row, by_driver.get(row["id"], [])) for row in rows]

    # -------------------------------------------------------------------------
    # Операции
    # -------------------------------------------------------------------------

    async def create(self, driver: Driver) -> Driver:
        try:
            await self._db.execute(
                f"""
                INSERT INTO drivers ({_DRIVER_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::jsonb, $8, $9, $10,
                        $11, $12, $13, $14, $15, $16, $17::jsonb, $18, $19, $20,
                        $21, $22, $23, $24, $25)
                """,
                *self._driver_params(driver),
            )
        except asyncpg.UniqueViolationError as e:
            raise ConflictError(
                "Водитель с таким auth_uid или email уже зарегистрирован",
                auth_uid=driver.auth_uid,
                email=driver.email,
            ) from e

        await log_info(f"Водитель {driver.id} сохранён в БД", type_msg=TypeMsg.DEBUG)
        return driver

    async def get(self, driver_id: str, include_deleted: bool = False) -> Optional[Driver]:
        row = await self._db.fetchrow(
            f"SELECT {_DRIVER_COLUMNS} FROM drivers WHERE id = $1",
            driver_id,
        )
        if row is None or (row["is_deleted"] and not include_deleted):
            return None

        drivers = await self._attach_ratings([row])
        return drivers[0]

    async def list_all(self, include_deleted: bool = False) -> list[Driver]:
        rows = await self._db.fetch(
            f"""
            SELECT {_DRIVER_COLUMNS} FROM drivers
            WHERE $1 OR NOT is_deleted
            ORDER BY created_at DESC
            """,
            include_deleted,
        )
        return await self._attach_ratings(list(rows))

    async def find_in_box(
        self,
        min_lat: float,
        max_lat: float,
        min_lon: float,
        max_lon: float,
        status: DriverStatus,
    ) -> list[Driver]:
        rows = await self._db.fetch(
            f"""
            SELECT {_DRIVER_COLUMNS} FROM drivers
            WHERE NOT is_deleted
              AND status = $1
              AND loc_latitude BETWEEN $2 AND $3
              AND loc_longitude BETWEEN $4 AND $5
            """,
            status.value,
            min_lat,
            max_lat,
            min_lon,
            max_lon,
        )
        return await self._attach_ratings(list(rows))

    async def find_dispatchable(self) -> list[Driver]:
        rows = await self._db.fetch(
            f"""
            SELECT {_DRIVER_COLUMNS} FROM drivers
            WHERE NOT is_deleted
              AND is_active
              AND is_documents_verified
              AND status = $1
            ORDER BY (stats->>'total_deliveries')::int ASC, created_at ASC
            """,
            DriverStatus.AVAILABLE.value,
        )
        return await self._attach_ratings(list(rows))

    @asynccontextmanager
    async def locked(self, driver_id: str, include_deleted: bool = False) -> AsyncIterator[Driver]:
        try:
            async with self._db.transaction(lock_timeout=self._lock_timeout) as conn:
                row = await conn.fetchrow(
                    f"SELECT {_DRIVER_COLUMNS} FROM drivers WHERE id = $1 FOR UPDATE",
                    driver_id,
                )
                if row is None or (row["is_deleted"] and not include_deleted):
                    raise NotFoundError("Водитель не найден", driver_id=driver_id)

                rating_rows = await conn.fetch(
                    """
                    SELECT order_id, rating, comment, created_at
                    FROM driver_ratings
                    WHERE driver_id = $1
                    ORDER BY created_at, id
                    """,
                    driver_id,
                )
                working = self._row_to_driver(row, rating_rows)
                known_ratings = len(working.ratings)

                yield working

                working = Driver.model_validate(working.model_dump())
                await self._save(conn, working, working.ratings[known_ratings:])
        except asyncpg.LockNotAvailableError as e:
            raise ConflictError(
                "Запись водителя занята другой операцией", driver_id=driver_id
            ) from e
        except asyncpg.UniqueViolationError as e:
            # UPDATE нарушил уникальность email или auth_uid
            raise ConflictError(
                "Email или auth_uid уже занят другим водителем", driver_id=driver_id
            ) from e

    async def _save(self, conn: Any, driver: Driver, new_ratings: list[DriverRating]) -> None:
        """Перезаписывает строку водителя и дописывает новые оценки."""
        params = self._driver_params(driver)
        await conn.execute(
            """
            UPDATE drivers SET
                auth_uid = $2, name = $3, email = $4, phone = $5,
                vehicle = $6::jsonb, documents = $7::jsonb, fcm_token = $8,
                status = $9, active_delivery_id = $10,
                loc_latitude = $11, loc_longitude = $12, loc_accuracy = $13,
                loc_heading = $14, loc_speed = $15, loc_updated_at = $16,
                stats = $17::jsonb,
                is_email_verified = $18, is_phone_verified = $19, is_documents_verified = $20,
                is_active = $21, is_deleted = $22, deleted_at = $23,
                created_at = $24, updated_at = $25
            WHERE id = $1
            """,
            *params,
        )

        for rating in new_ratings:
            await conn.execute(
                """
                INSERT INTO driver_ratings (driver_id, order_id, rating, comment, created_at)
                VALUES ($1, $2, $3, $4, $5)
                """,
                driver.id,
                rating.order_id,
                rating.rating,
                rating.comment,
                rating.created_at,
            )
