# src/services/dispatch/routes.py
"""
RPC-операции Dispatch Service.

Статические пути (/drivers/nearby, /drivers/statistics, /drivers/top)
объявлены раньше /drivers/{driver_id}.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from src.common.constants import DriverStatus, PeriodKind
from src.core.dispatch.service import DispatchMatcher, PickupLocation
from src.core.drivers.models import (
    Driver,
    DriverProfileUpdate,
    DriverRegistrationDTO,
    DriverStatsReport,
    DriverSummary,
    FleetStatistics,
)
from src.core.drivers.service import DriverService
from src.core.stats.service import StatsAggregator
from src.core.status.service import StatusService
from src.core.tracking.service import LocationTracker
from src.services.dispatch.dependencies import (
    get_driver_service,
    get_matcher,
    get_stats_aggregator,
    get_status_service,
    get_tracker,
)

router = APIRouter()

# Поля, не отдаваемые наружу в карточке водителя
DRIVER_RESPONSE_EXCLUDE = {"fcm_token", "ratings"}


# =============================================================================
# МОДЕЛИ ЗАПРОСОВ И ОТВЕТОВ
# =============================================================================

class RegisterDriverResponse(BaseModel):
    driver_id: str
    status: DriverStatus


class StatusResponse(BaseModel):
    driver_id: str
    status: DriverStatus
    active_delivery_id: Optional[str] = None


class LocationUpdateRequest(BaseModel):
    """Фикс геолокации. Диапазоны проверяет LocationTracker."""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None


class AssignDeliveryRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    pickup: Optional[PickupLocation] = None


class AssignDeliveryResponse(BaseModel):
    driver_id: str
    order_id: str
    status: DriverStatus


class CompleteDeliveryRequest(BaseModel):
    delivery_time_minutes: float
    earnings: float
    delivery_id: Optional[str] = None


class RatingRequest(BaseModel):
    order_id: str
    rating: float
    comment: Optional[str] = None


class RatingResponse(BaseModel):
    driver_id: str
    average_rating: float
    total_ratings: int


class VerificationRequest(BaseModel):
    is_email_verified: Optional[bool] = None
    is_phone_verified: Optional[bool] = None
    is_documents_verified: Optional[bool] = None


class ActiveRequest(BaseModel):
    is_active: bool


class FcmTokenRequest(BaseModel):
    fcm_token: str


class DeleteResponse(BaseModel):
    driver_id: str
    deleted: bool = True


class ResetResponse(BaseModel):
    kind: PeriodKind
    drivers_reset: int


def _status_response(driver: Driver) -> StatusResponse:
    return StatusResponse(
        driver_id=driver.id,
        status=driver.status,
        active_delivery_id=driver.active_delivery_id,
    )


# =============================================================================
# РЕГИСТРАЦИЯ И СТАТУСЫ
# =============================================================================

@router.post(
    "/drivers",
    response_model=RegisterDriverResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Drivers"],
)
async def register_driver(
    request: DriverRegistrationDTO,
    service: DriverService = Depends(get_driver_service),
):
    driver = await service.register_driver(request)
    return RegisterDriverResponse(driver_id=driver.id, status=driver.status)


@router.post("/drivers/{driver_id}/available", response_model=StatusResponse, tags=["Status"])
async def set_available(
    driver_id: str,
    service: StatusService = Depends(get_status_service),
):
    return _status_response(await service.set_available(driver_id))


@router.post("/drivers/{driver_id}/offline", response_model=StatusResponse, tags=["Status"])
async def go_offline(
    driver_id: str,
    service: StatusService = Depends(get_status_service),
):
    return _status_response(await service.go_offline(driver_id))


# =============================================================================
# ГЕОЛОКАЦИЯ
# =============================================================================

@router.post("/drivers/{driver_id}/location", response_model=DriverSummary, tags=["Location"])
async def update_location(
    driver_id: str,
    request: LocationUpdateRequest,
    tracker: LocationTracker = Depends(get_tracker),
):
    driver = await tracker.update_location(
        driver_id,
        latitude=request.latitude,
        longitude=request.longitude,
        accuracy=request.accuracy,
        heading=request.heading,
        speed=request.speed,
    )
    return tracker.summarize([driver])[0]


@router.get("/drivers/nearby", response_model=list[DriverSummary], tags=["Location"])
async def find_nearby_drivers(
    lat: float = Query(...),
    lon: float = Query(...),
    radius_km: Optional[float] = Query(default=None),
    status_filter: DriverStatus = Query(default=DriverStatus.AVAILABLE, alias="status"),
    tracker: LocationTracker = Depends(get_tracker),
):
    drivers = await tracker.find_nearby(lat, lon, radius_km=radius_km, status=status_filter)
    return tracker.summarize(drivers)


# =============================================================================
# ДОСТАВКИ И ОЦЕНКИ
# =============================================================================

@router.post("/dispatch/assign", response_model=AssignDeliveryResponse, tags=["Dispatch"])
async def assign_delivery(
    request: AssignDeliveryRequest,
    matcher: DispatchMatcher = Depends(get_matcher),
):
    driver = await matcher.assign(request.order_id, pickup=request.pickup)
    return AssignDeliveryResponse(
        driver_id=driver.id,
        order_id=request.order_id,
        status=driver.status,
    )


@router.post("/drivers/{driver_id}/complete", response_model=DriverStatsReport, tags=["Dispatch"])
async def complete_delivery(
    driver_id: str,
    request: CompleteDeliveryRequest,
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
    service: DriverService = Depends(get_driver_service),
):
    await aggregator.complete_delivery(
        driver_id,
        delivery_time_minutes=request.delivery_time_minutes,
        earnings=request.earnings,
        delivery_id=request.delivery_id,
    )
    return await service.get_driver_stats(driver_id)


@router.post("/drivers/{driver_id}/ratings", response_model=RatingResponse, tags=["Ratings"])
async def submit_rating(
    driver_id: str,
    request: RatingRequest,
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
):
    driver = await aggregator.add_rating(
        driver_id,
        order_id=request.order_id,
        rating=request.rating,
        comment=request.comment,
    )
    return RatingResponse(
        driver_id=driver.id,
        average_rating=driver.stats.average_rating,
        total_ratings=driver.stats.total_ratings,
    )


@router.post("/stats/reset/{kind}", response_model=ResetResponse, tags=["Stats"])
async def reset_period(
    kind: PeriodKind,
    driver_id: Optional[str] = Query(default=None),
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
):
    count = await aggregator.reset_period(kind, driver_id=driver_id)
    return ResetResponse(kind=kind, drivers_reset=count)


# =============================================================================
# АДМИНИСТРИРОВАНИЕ
# =============================================================================

@router.get("/drivers/statistics", response_model=FleetStatistics, tags=["Admin"])
async def get_driver_statistics(service: DriverService = Depends(get_driver_service)):
    return await service.get_statistics()


@router.get("/drivers/top", response_model=list[DriverSummary], tags=["Admin"])
async def get_top_performers(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    service: DriverService = Depends(get_driver_service),
):
    return await service.get_top_performers(limit)


@router.get("/drivers", response_model=list[DriverSummary], tags=["Admin"])
async def list_drivers(
    status_filter: Optional[DriverStatus] = Query(default=None, alias="status"),
    service: DriverService = Depends(get_driver_service),
    tracker: LocationTracker = Depends(get_tracker),
):
    return tracker.summarize(await service.list_drivers(status_filter))


@router.get(
    "/drivers/{driver_id}",
    response_model=Driver,
    response_model_exclude=DRIVER_RESPONSE_EXCLUDE,
    tags=["Admin"],
)
async def get_driver(driver_id: str, service: DriverService = Depends(get_driver_service)):
    return await service.get_driver(driver_id)


@router.get("/drivers/{driver_id}/stats", response_model=DriverStatsReport, tags=["Admin"])
async def get_driver_stats(driver_id: str, service: DriverService = Depends(get_driver_service)):
    return await service.get_driver_stats(driver_id)


@router.put(
    "/drivers/{driver_id}",
    response_model=Driver,
    response_model_exclude=DRIVER_RESPONSE_EXCLUDE,
    tags=["Admin"],
)
async def update_profile(
    driver_id: str,
    request: DriverProfileUpdate,
    service: DriverService = Depends(get_driver_service),
):
    return await service.update_profile(driver_id, request)


@router.patch(
    "/drivers/{driver_id}/verification",
    response_model=Driver,
    response_model_exclude=DRIVER_RESPONSE_EXCLUDE,
    tags=["Admin"],
)
async def set_verification(
    driver_id: str,
    request: VerificationRequest,
    service: DriverService = Depends(get_driver_service),
):
    return await service.set_verification(
        driver_id,
        email=request.is_email_verified,
        phone=request.is_phone_verified,
        documents=request.is_documents_verified,
    )


@router.patch("/drivers/{driver_id}/active", response_model=StatusResponse, tags=["Admin"])
async def set_active(
    driver_id: str,
    request: ActiveRequest,
    service: DriverService = Depends(get_driver_service),
):
    return _status_response(await service.set_active(driver_id, request.is_active))


@router.put("/drivers/{driver_id}/fcm-token", response_model=StatusResponse, tags=["Drivers"])
async def update_fcm_token(
    driver_id: str,
    request: FcmTokenRequest,
    service: DriverService = Depends(get_driver_service),
):
    return _status_response(await service.update_fcm_token(driver_id, request.fcm_token))


@router.delete("/drivers/{driver_id}", response_model=DeleteResponse, tags=["Admin"])
async def soft_delete_driver(driver_id: str, service: DriverService = Depends(get_driver_service)):
    driver = await service.soft_delete(driver_id)
    return DeleteResponse(driver_id=driver.id, deleted=driver.is_deleted)
