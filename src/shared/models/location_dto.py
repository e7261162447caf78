# src/shared/models/location_dto.py
from datetime import datetime
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from src.common.constants import AgentStatus, DeliveryStatus
from src.shared.models.delivery_dto import Coordinates


class AgentLocation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    delivery_person_id: str
    location: Optional[Coordinates] = None
    status: AgentStatus = AgentStatus.OFFLINE
    delivery_id: Optional[str] = None
    heading: float = 0
    speed: float = 0
    last_updated: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AgentLocation":
        location = None
        if row.get("lat") is not None and row.get("lng") is not None:
            location = Coordinates(lat=row["lat"], lng=row["lng"])
        delivery_id = row.get("delivery_id")
        return cls(
            delivery_person_id=row["delivery_person_id"],
            location=location,
            status=row["status"],
            delivery_id=str(delivery_id) if delivery_id is not None else None,
            heading=row.get("heading") or 0,
            speed=row.get("speed") or 0,
            last_updated=row.get("last_updated"),
        )


class LocationUpdateRequest(BaseModel):
    lat: float
    lng: float
    heading: Optional[float] = None
    speed: Optional[float] = None
    # BUSY выставляется только назначением доставки
    status: Optional[Literal["AVAILABLE", "OFFLINE"]] = None


class NearbyAgent(BaseModel):
    delivery_person_id: str
    location: Coordinates
    distance_m: float
    heading: float = 0
    speed: float = 0
    last_updated: Optional[datetime] = None


class DeliveryPosition(BaseModel):
    """Последняя позиция курьера по доставке + текстовый ETA."""

    delivery_id: str
    status: DeliveryStatus
    delivery_person_id: Optional[str] = None
    message: Optional[str] = None
    location: Optional[Coordinates] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    last_updated: Optional[datetime] = None
    estimated_delivery_time: Optional[datetime] = None
    eta: Optional[str] = None
