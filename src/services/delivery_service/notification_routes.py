from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from src.common.constants import UserRole
from src.services.delivery_service.auth import Identity
from src.services.delivery_service.dependencies import get_notification_service, require_roles
from src.services.delivery_service.notifications import NotificationService
from src.shared.models.common import PaginationParams
from src.shared.models.notification_dto import (
    CreateNotificationRequest,
    DeliveryNotification,
    MarkAllReadResponse,
    NotificationPage,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])

courier_only = require_roles(UserRole.DELIVERY_PERSON)


class MarkReadResponse(BaseModel):
    message: str
    notification: DeliveryNotification


@router.get("", response_model=NotificationPage)
async def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    identity: Identity = Depends(courier_only),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.list_for_agent(identity, PaginationParams(page=page, limit=limit), unread_only)


@router.patch("/mark-all-read", response_model=MarkAllReadResponse)
async def mark_all_read(
    identity: Identity = Depends(courier_only),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.mark_all_as_read(identity)


@router.patch("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_read(
    notification_id: str,
    identity: Identity = Depends(courier_only),
    service: NotificationService = Depends(get_notification_service),
):
    notification = await service.mark_as_read(notification_id, identity)
    return MarkReadResponse(message="Notification marked as read", notification=notification)


@router.post("", response_model=DeliveryNotification, status_code=status.HTTP_201_CREATED)
async def create_notification(
    request: CreateNotificationRequest,
    identity: Identity = Depends(require_roles(UserRole.ADMIN)),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.create(request, identity)
