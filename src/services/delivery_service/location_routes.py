from typing import Optional

from fastapi import APIRouter, Depends, Query

from src.common.constants import UserRole
from src.services.delivery_service.auth import Identity
from src.services.delivery_service.dependencies import (
    get_current_identity,
    get_location_broadcaster,
    require_roles,
)
from src.services.delivery_service.tracking import LocationBroadcaster
from src.shared.models.location_dto import AgentLocation, DeliveryPosition, LocationUpdateRequest, NearbyAgent

router = APIRouter(prefix="/locations", tags=["locations"])


@router.post("/update", response_model=AgentLocation)
async def update_location(
    request: LocationUpdateRequest,
    identity: Identity = Depends(require_roles(UserRole.DELIVERY_PERSON)),
    broadcaster: LocationBroadcaster = Depends(get_location_broadcaster),
):
    return await broadcaster.update_position(identity, request)


@router.get("/nearby", response_model=list[NearbyAgent])
async def nearby_couriers(
    lat: float,
    lng: float,
    max_distance: Optional[float] = Query(default=None, alias="maxDistance", gt=0),
    limit: Optional[int] = Query(default=None, ge=1),
    identity: Identity = Depends(get_current_identity),
    broadcaster: LocationBroadcaster = Depends(get_location_broadcaster),
):
    return await broadcaster.get_nearby(lat, lng, max_distance, limit)


@router.get("/delivery/{delivery_id}", response_model=DeliveryPosition, response_model_exclude_none=True)
async def delivery_location(
    delivery_id: str,
    identity: Identity = Depends(get_current_identity),
    broadcaster: LocationBroadcaster = Depends(get_location_broadcaster),
):
    return await broadcaster.get_delivery_position(delivery_id, identity)


@router.get("/active", response_model=list[AgentLocation])
async def active_locations(
    identity: Identity = Depends(require_roles(UserRole.ADMIN)),
    broadcaster: LocationBroadcaster = Depends(get_location_broadcaster),
):
    return await broadcaster.get_active_locations(identity)
