# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class DriverStatus(str, Enum):
    """Статусы водителя."""
    AVAILABLE = "available"
    ON_DELIVERY = "on_delivery"
    OFFLINE = "offline"


class VehicleType(str, Enum):
    """Типы транспорта курьера."""
    BIKE = "bike"
    CAR = "car"
    SCOOTER = "scooter"
    BICYCLE = "bicycle"


class PeriodKind(str, Enum):
    """Периоды счётчиков статистики."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class StorageBackend(str, Enum):
    """Backend хранилища водителей."""
    MEMORY = "memory"
    POSTGRES = "postgres"


# Диапазоны координат и курса
MIN_LATITUDE = -90.0
MAX_LATITUDE = 90.0
MIN_LONGITUDE = -180.0
MAX_LONGITUDE = 180.0
MAX_HEADING = 360.0

# Диапазон оценки водителя
MIN_RATING = 1.0
MAX_RATING = 5.0
