from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from src.common.constants import DeliveryStatus, StatsPeriod, UserRole
from src.services.delivery_service.auth import Identity
from src.services.delivery_service.dependencies import (
    get_current_identity,
    get_delivery_service,
    get_dispatcher,
    require_roles,
)
from src.services.delivery_service.dispatcher import Dispatcher
from src.services.delivery_service.service import DeliveryService
from src.shared.models.common import PaginationParams
from src.shared.models.delivery_dto import (
    AssignRequest,
    CreateDeliveryRequest,
    Delivery,
    DeliveryActionResponse,
    DeliveryPage,
    DeliveryStats,
    UpdateStatusRequest,
)

router = APIRouter(prefix="/deliveries", tags=["deliveries"])

courier_only = require_roles(UserRole.DELIVERY_PERSON)
admin_only = require_roles(UserRole.ADMIN)


@router.post("", response_model=Delivery, status_code=status.HTTP_201_CREATED)
async def create_delivery(
    request: CreateDeliveryRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Called by the order service once an order is ready for delivery."""
    delivery, created = await dispatcher.create_delivery(request)
    if created:
        return delivery
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=jsonable_encoder(
            DeliveryActionResponse(message="Delivery already exists for this order", delivery=delivery)
        ),
    )


@router.get("", response_model=DeliveryPage)
async def list_deliveries(
    status_filter: Optional[DeliveryStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(admin_only),
    service: DeliveryService = Depends(get_delivery_service),
):
    return await service.list_all(PaginationParams(page=page, limit=limit), status=status_filter)


@router.get("/by-order/{order_id}", response_model=Delivery)
async def get_delivery_by_order(
    order_id: str,
    service: DeliveryService = Depends(get_delivery_service),
):
    return await service.get_by_order_id(order_id)


@router.get("/available", response_model=list[Delivery])
async def list_available(
    identity: Identity = Depends(courier_only),
    service: DeliveryService = Depends(get_delivery_service),
):
    return await service.list_available(identity)


@router.get("/my-deliveries", response_model=list[Delivery])
async def list_my_deliveries(
    identity: Identity = Depends(courier_only),
    service: DeliveryService = Depends(get_delivery_service),
):
    return await service.list_my(identity)


@router.get("/history", response_model=DeliveryPage)
async def delivery_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(courier_only),
    service: DeliveryService = Depends(get_delivery_service),
):
    return await service.history(identity, PaginationParams(page=page, limit=limit))


@router.get("/stats", response_model=DeliveryStats)
async def delivery_stats(
    period: StatsPeriod = Query(default=StatsPeriod.WEEK),
    identity: Identity = Depends(courier_only),
    service: DeliveryService = Depends(get_delivery_service),
):
    return await service.stats(identity, period)


@router.get("/{delivery_id}", response_model=Delivery)
async def get_delivery(
    delivery_id: str,
    identity: Identity = Depends(get_current_identity),
    service: DeliveryService = Depends(get_delivery_service),
):
    return await service.get_delivery(delivery_id, identity)


@router.post("/{delivery_id}/accept", response_model=DeliveryActionResponse)
async def accept_delivery(
    delivery_id: str,
    identity: Identity = Depends(courier_only),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    delivery = await dispatcher.accept_delivery(delivery_id, identity)
    return DeliveryActionResponse(message="Delivery accepted successfully", delivery=delivery)


@router.post("/{delivery_id}/auto-assign", response_model=DeliveryActionResponse)
async def auto_assign_delivery(
    delivery_id: str,
    identity: Identity = Depends(admin_only),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    delivery = await dispatcher.auto_assign(delivery_id, identity)
    return DeliveryActionResponse(
        message=f"Delivery assigned to {delivery.delivery_person_id}",
        delivery=delivery,
    )


@router.post("/{delivery_id}/assign", response_model=DeliveryActionResponse)
async def assign_delivery(
    delivery_id: str,
    request: AssignRequest,
    identity: Identity = Depends(admin_only),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    delivery = await dispatcher.assign_manually(delivery_id, request, identity)
    return DeliveryActionResponse(
        message=f"Delivery assigned to {delivery.delivery_person_id}",
        delivery=delivery,
    )


@router.patch("/{delivery_id}/status", response_model=DeliveryActionResponse)
async def update_delivery_status(
    delivery_id: str,
    request: UpdateStatusRequest,
    identity: Identity = Depends(require_roles(UserRole.DELIVERY_PERSON, UserRole.ADMIN)),
    service: DeliveryService = Depends(get_delivery_service),
):
    delivery = await service.update_status(delivery_id, request, identity)
    return DeliveryActionResponse(message=f"Delivery status updated to {delivery.status.value}", delivery=delivery)
