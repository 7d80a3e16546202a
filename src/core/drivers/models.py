# src/core/drivers/models.py
"""
Модели данных водителей (курьеров).
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from src.common.constants import (
    DriverStatus,
    MAX_HEADING,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MAX_RATING,
    MIN_LATITUDE,
    MIN_LONGITUDE,
    MIN_RATING,
    VehicleType,
)

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")
PHONE_PATTERN = re.compile(r"^[\d\s\-\+\(\)]+$")

# Изменяемые поля профиля и транспорта
PROFILE_FIELDS = ("name", "email", "phone")
VEHICLE_FIELDS = ("vehicle_type", "plate_number", "color", "make", "vehicle_model")


def utc_now() -> datetime:
    """Текущее время в UTC (timezone-aware)."""
    return datetime.now(timezone.utc)


# =============================================================================
# ВЛОЖЕННЫЕ СТРУКТУРЫ
# =============================================================================

class VehicleInfo(BaseModel):
    """Транспорт курьера."""

    vehicle_type: VehicleType = Field(..., description="Тип транспорта")
    plate_number: str = Field(..., min_length=1, max_length=20, description="Госномер")
    color: Optional[str] = Field(None, max_length=30, description="Цвет")
    make: Optional[str] = Field(None, max_length=50, description="Марка")
    vehicle_model: Optional[str] = Field(None, max_length=50, description="Модель")

    @field_validator("plate_number")
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("Госномер не может быть пустым")
        return v


class DriverDocuments(BaseModel):
    """Документы водителя (права и страховка)."""

    license_number: Optional[str] = None
    license_expiry: Optional[datetime] = None
    insurance_number: Optional[str] = None
    insurance_expiry: Optional[datetime] = None


class DriverLocation(BaseModel):
    """
    Последняя известная позиция водителя.
    Хранится целиком: либо полный фикс, либо None.
    """

    latitude: float = Field(..., ge=MIN_LATITUDE, le=MAX_LATITUDE, allow_inf_nan=False)
    longitude: float = Field(..., ge=MIN_LONGITUDE, le=MAX_LONGITUDE, allow_inf_nan=False)
    accuracy: Optional[float] = Field(None, ge=0, allow_inf_nan=False, description="Точность (м)")
    heading: Optional[float] = Field(None, ge=0, lt=MAX_HEADING, allow_inf_nan=False, description="Курс (градусы)")
    speed: Optional[float] = Field(None, ge=0, allow_inf_nan=False, description="Скорость")
    updated_at: datetime = Field(default_factory=utc_now)

    def age_seconds(self, now: datetime) -> float:
        """Возраст фикса в секундах."""
        return (now - self.updated_at).total_seconds()

    def is_fresh(self, now: datetime, window_seconds: float) -> bool:
        """Свежая ли позиция (не старше окна свежести)."""
        return self.age_seconds(now) <= window_seconds


class DriverStats(BaseModel):
    """Накопительная статистика и счётчики по периодам."""

    total_deliveries: int = Field(0, ge=0)
    completed_today: int = Field(0, ge=0)
    completed_this_week: int = Field(0, ge=0)
    completed_this_month: int = Field(0, ge=0)

    total_earnings: float = Field(0.0, ge=0)
    today_earnings: float = Field(0.0, ge=0)
    week_earnings: float = Field(0.0, ge=0)
    month_earnings: float = Field(0.0, ge=0)

    average_delivery_time: float = Field(0.0, ge=0, description="Среднее время доставки (мин)")
    average_rating: float = Field(0.0, ge=0, le=MAX_RATING)
    total_ratings: int = Field(0, ge=0)

    last_delivery_at: Optional[datetime] = None


class DriverRating(BaseModel):
    """Оценка водителя за заказ."""

    order_id: str = Field(..., min_length=1)
    rating: float = Field(..., ge=MIN_RATING, le=MAX_RATING)
    comment: Optional[str] = Field(None, max_length=500)
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# ВОДИТЕЛЬ
# =============================================================================

class Driver(BaseModel):
    """Запись водителя."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    auth_uid: str = Field(..., min_length=1, description="Внешний ID аутентификации")
    name: str = Field(..., min_length=2, max_length=100)
    email: str = Field(..., description="Email (уникальный)")
    phone: str = Field(..., description="Телефон")

    vehicle: VehicleInfo
    documents: DriverDocuments = Field(default_factory=DriverDocuments)
    fcm_token: Optional[str] = Field(None, description="Токен push-уведомлений")

    status: DriverStatus = Field(DriverStatus.OFFLINE)
    active_delivery_id: Optional[str] = None
    current_location: Optional[DriverLocation] = None

    stats: DriverStats = Field(default_factory=DriverStats)
    ratings: list[DriverRating] = Field(default_factory=list)

    is_email_verified: bool = False
    is_phone_verified: bool = False
    is_documents_verified: bool = False
    is_active: bool = True

    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Config:
        from_attributes = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Имя должно содержать минимум 2 символа")
        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Некорректный email")
        return v

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        v = v.strip()
        if not PHONE_PATTERN.match(v):
            raise ValueError("Некорректный номер телефона")
        return v

    @model_validator(mode="after")
    def check_delivery_invariant(self) -> "Driver":
        # on_delivery тогда и только тогда, когда есть активная доставка
        on_delivery = self.status == DriverStatus.ON_DELIVERY
        if on_delivery != (self.active_delivery_id is not None):
            raise ValueError(
                f"Нарушен инвариант: status={self.status.value}, "
                f"active_delivery_id={self.active_delivery_id}"
            )
        return self

    @property
    def is_delivering(self) -> bool:
        """Выполняет ли водитель доставку."""
        return self.status == DriverStatus.ON_DELIVERY and self.active_delivery_id is not None

    @property
    def is_dispatchable(self) -> bool:
        """Может ли водитель получить новый заказ."""
        return (
            self.status == DriverStatus.AVAILABLE
            and not self.is_deleted
            and self.is_documents_verified
            and self.is_active
        )

    def has_rating_for(self, order_id: str) -> bool:
        return any(r.order_id == order_id for r in self.ratings)


# =============================================================================
# DTO И ПРЕДСТАВЛЕНИЯ
# =============================================================================

class DriverRegistrationDTO(BaseModel):
    """DTO для регистрации водителя."""

    auth_uid: str
    name: str
    email: str
    phone: str
    vehicle: VehicleInfo
    documents: Optional[DriverDocuments] = None
    fcm_token: Optional[str] = None


class DriverProfileUpdate(BaseModel):
    """
    Частичное изменение профиля и транспорта.
    Применяются только переданные поля, проверка через валидаторы Driver.
    """

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    vehicle_type: Optional[VehicleType] = None
    plate_number: Optional[str] = None
    color: Optional[str] = None
    make: Optional[str] = None
    vehicle_model: Optional[str] = None

    def apply_to(self, data: dict) -> dict:
        """Накладывает изменения на model_dump() водителя."""
        changes = self.model_dump(exclude_none=True)
        for field in PROFILE_FIELDS:
            if field in changes:
                data[field] = changes[field]
        for field in VEHICLE_FIELDS:
            if field in changes:
                data["vehicle"][field] = changes[field]
        return data


class DriverSummary(BaseModel):
    """Краткая карточка водителя для поиска поблизости и рейтингов."""

    id: str
    name: str
    vehicle_type: VehicleType
    plate_number: str
    color: Optional[str] = None
    status: DriverStatus
    current_location: Optional[DriverLocation] = None
    average_rating: float
    total_deliveries: int
    is_location_fresh: bool

    @classmethod
    def from_driver(cls, driver: Driver, now: datetime, freshness_seconds: float) -> "DriverSummary":
        location = driver.current_location
        return cls(
            id=driver.id,
            name=driver.name,
            vehicle_type=driver.vehicle.vehicle_type,
            plate_number=driver.vehicle.plate_number,
            color=driver.vehicle.color,
            status=driver.status,
            current_location=location,
            average_rating=driver.stats.average_rating,
            total_deliveries=driver.stats.total_deliveries,
            is_location_fresh=location is not None and location.is_fresh(now, freshness_seconds),
        )


class PeriodStats(BaseModel):
    """Счётчики за период."""

    deliveries: int
    earnings: float


class OverallStats(BaseModel):
    """Статистика за всё время."""

    total_deliveries: int
    total_earnings: float
    average_delivery_time: float
    average_rating: float
    total_ratings: int
    last_delivery_at: Optional[datetime] = None


class CurrentState(BaseModel):
    """Текущее состояние водителя."""

    status: DriverStatus
    active_delivery_id: Optional[str] = None
    has_location: bool
    location_age_seconds: Optional[float] = None
    is_location_fresh: bool


class DriverStatsReport(BaseModel):
    """Отчёт по статистике водителя: всё время, сегодня, неделя, месяц, текущее."""

    driver_id: str
    overall: OverallStats
    today: PeriodStats
    week: PeriodStats
    month: PeriodStats
    current: CurrentState

    @classmethod
    def from_driver(cls, driver: Driver, now: datetime, freshness_seconds: float) -> "DriverStatsReport":
        stats = driver.stats
        location = driver.current_location
        return cls(
            driver_id=driver.id,
            overall=OverallStats(
                total_deliveries=stats.total_deliveries,
                total_earnings=stats.total_earnings,
                average_delivery_time=stats.average_delivery_time,
                average_rating=stats.average_rating,
                total_ratings=stats.total_ratings,
                last_delivery_at=stats.last_delivery_at,
            ),
            today=PeriodStats(deliveries=stats.completed_today, earnings=stats.today_earnings),
            week=PeriodStats(deliveries=stats.completed_this_week, earnings=stats.week_earnings),
            month=PeriodStats(deliveries=stats.completed_this_month, earnings=stats.month_earnings),
            current=CurrentState(
                status=driver.status,
                active_delivery_id=driver.active_delivery_id,
                has_location=location is not None,
                location_age_seconds=location.age_seconds(now) if location else None,
                is_location_fresh=location is not None and location.is_fresh(now, freshness_seconds),
            ),
        )


class FleetStatistics(BaseModel):
    """Сводная статистика по всем неудалённым водителям."""

    total_drivers: int = 0
    available_drivers: int = 0
    on_delivery_drivers: int = 0
    offline_drivers: int = 0
    total_deliveries: int = 0
    total_earnings: float = 0.0
    average_delivery_time: float = 0.0
    average_rating: float = 0.0

    @classmethod
    def from_drivers(cls, drivers: list[Driver]) -> "FleetStatistics":
        active = [d for d in drivers if not d.is_deleted]
        if not active:
            return cls()

        count = len(active)
        return cls(
            total_drivers=count,
            available_drivers=sum(1 for d in active if d.status == DriverStatus.AVAILABLE),
            on_delivery_drivers=sum(1 for d in active if d.status == DriverStatus.ON_DELIVERY),
            offline_drivers=sum(1 for d in active if d.status == DriverStatus.OFFLINE),
            total_deliveries=sum(d.stats.total_deliveries for d in active),
            total_earnings=sum(d.stats.total_earnings for d in active),
            average_delivery_time=sum(d.stats.average_delivery_time for d in active) / count,
            average_rating=sum(d.stats.average_rating for d in active) / count,
        )
