# src/shared/models/delivery_dto.py
"""
DTO доставки: запись доставки, запросы на создание и смену статуса.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import ACTIVE_DELIVERY_STATUSES, DeliveryStatus, StatsPeriod
from src.shared.models.common import PaginationInfo


class Coordinates(BaseModel):
    lat: float
    lng: float


class Place(BaseModel):
    """Адрес с координатами (точка забора или доставки)."""
    address: str = Field(min_length=1)
    coordinates: Coordinates


class Contact(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class CurrentLocation(BaseModel):
    lat: float
    lng: float
    updated_at: datetime


class Delivery(BaseModel):
    """Запись доставки."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    customer_id: Optional[str] = None
    restaurant_id: Optional[str] = None
    delivery_person_id: Optional[str] = None
    delivery_person_name: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.PENDING_ASSIGNMENT

    pickup_location: Place
    delivery_location: Place
    customer_contact: Contact = Field(default_factory=Contact)
    restaurant_contact: Contact = Field(default_factory=Contact)
    special_instructions: str = ""
    delivery_notes: str = ""
    is_priority: bool = False

    current_location: Optional[CurrentLocation] = None

    assigned_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[int] = None

    created_at: datetime
    updated_at: datetime

    # Детали заказа из order-сервиса, только в ответах на чтение
    order: Optional[dict[str, Any]] = None

    @property
    def is_active(self) -> bool:
        """Доставка занимает курьера."""
        return self.status in ACTIVE_DELIVERY_STATUSES

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Delivery":
        """Собирает модель из плоской строки deliveries."""
        current_location = None
        if row.get("current_lat") is not None and row.get("current_lng") is not None:
            current_location = CurrentLocation(
                lat=row["current_lat"],
                lng=row["current_lng"],
                updated_at=row["current_location_updated_at"],
            )

        return cls(
            id=str(row["id"]),
            order_id=row["order_id"],
            customer_id=row.get("customer_id"),
            restaurant_id=row.get("restaurant_id"),
            delivery_person_id=row.get("delivery_person_id"),
            delivery_person_name=row.get("delivery_person_name"),
            status=row["status"],
            pickup_location=Place(
                address=row["pickup_address"],
                coordinates=Coordinates(lat=row["pickup_lat"], lng=row["pickup_lng"]),
            ),
            delivery_location=Place(
                address=row["delivery_address"],
                coordinates=Coordinates(lat=row["delivery_lat"], lng=row["delivery_lng"]),
            ),
            customer_contact=Contact(name=row.get("customer_name"), phone=row.get("customer_phone")),
            restaurant_contact=Contact(name=row.get("restaurant_name"), phone=row.get("restaurant_phone")),
            special_instructions=row.get("special_instructions") or "",
            delivery_notes=row.get("delivery_notes") or "",
            is_priority=bool(row.get("is_priority")),
            current_location=current_location,
            assigned_at=row.get("assigned_at"),
            picked_up_at=row.get("picked_up_at"),
            delivered_at=row.get("delivered_at"),
            cancelled_at=row.get("cancelled_at"),
            failed_at=row.get("failed_at"),
            estimated_delivery_time=row.get("estimated_delivery_time"),
            actual_delivery_time=row.get("actual_delivery_time"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


# =============================================================================
# ЗАПРОСЫ
# =============================================================================

class CreateDeliveryRequest(BaseModel):
    """Тело POST /deliveries (вызывается order-сервисом)."""

    order_id: str = Field(min_length=1)
    pickup_location: Place
    delivery_location: Place
    customer_id: Optional[str] = None
    restaurant_id: Optional[str] = None
    customer_contact: Contact = Field(default_factory=Contact)
    restaurant_contact: Contact = Field(default_factory=Contact)
    special_instructions: str = ""
    is_priority: bool = False
    # Минуты до доставки; без значения берётся DISPATCH.DEFAULT_ESTIMATED_MINUTES
    estimated_delivery_minutes: Optional[int] = Field(default=None, ge=1, le=24 * 60)


class UpdateStatusRequest(BaseModel):
    status: DeliveryStatus
    notes: Optional[str] = Field(default=None, max_length=1000)


class AssignRequest(BaseModel):
    delivery_person_id: str = Field(min_length=1)
    delivery_person_name: Optional[str] = None


# =============================================================================
# ОТВЕТЫ
# =============================================================================

class DeliveryPage(BaseModel):
    deliveries: list[Delivery]
    pagination: PaginationInfo


class DeliveryStats(BaseModel):
    """Статистика курьера за период."""

    period: StatsPeriod
    total_deliveries: int
    total_earnings: float
    total_distance_km: float
    avg_rating: Optional[float] = None
    avg_delivery_time: Optional[int] = None


class DeliveryActionResponse(BaseModel):
    """Сообщение об операции плюс запись доставки."""

    message: str
    delivery: Delivery
