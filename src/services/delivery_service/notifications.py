from typing import Optional

from src.common.constants import NotificationPriority, NotificationType, UserRole
from src.common.exceptions import DeliveryServiceError, Forbidden, NotFound
from src.common.logger import log_error
from src.infra.event_bus import EventBus
from src.services.delivery_service.auth import Identity
from src.services.delivery_service.notification_repository import NotificationRepository
from src.shared.events.delivery_events import NotificationRequested
from src.shared.models.common import PaginationInfo, PaginationParams
from src.shared.models.notification_dto import (
    CreateNotificationRequest,
    DeliveryNotification,
    MarkAllReadResponse,
    NotificationPage,
)


class NotificationService:
    def __init__(self, repository: NotificationRepository, event_bus: EventBus):
        self.repository = repository
        self.event_bus = event_bus

    async def notify_agent(
        self,
        agent_id: str,
        type: NotificationType,
        message: str,
        delivery_id: Optional[str] = None,
        order_id: Optional[str] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> Optional[DeliveryNotification]:
        """Side-effect notification; a storage failure is logged, the caller's write stands."""
        try:
            notification = await self.repository.create(
                type=type,
                message=message,
                delivery_person_id=agent_id,
                delivery_id=delivery_id,
                order_id=order_id,
                priority=priority,
            )
        except DeliveryServiceError as e:
            await log_error(f"Notification for {agent_id} not stored: {e.message}")
            return None
        await self._announce(notification)
        return notification

    async def broadcast_to_role(
        self,
        role: UserRole,
        type: NotificationType,
        message: str,
        delivery_id: Optional[str] = None,
        order_id: Optional[str] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> Optional[DeliveryNotification]:
        try:
            notification = await self.repository.create(
                type=type,
                message=message,
                target_role=role.value,
                delivery_id=delivery_id,
                order_id=order_id,
                priority=priority,
            )
        except DeliveryServiceError as e:
            await log_error(f"Broadcast notification for {role.value} not stored: {e.message}")
            return None
        await self._announce(notification)
        return notification

    async def create(self, request: CreateNotificationRequest, identity: Identity) -> DeliveryNotification:
        if not identity.is_admin:
            raise Forbidden("Only admins can send notifications")
        notification = await self.repository.create(
            type=request.type,
            message=request.message,
            delivery_person_id=request.delivery_person_id,
            delivery_id=request.delivery_id,
            order_id=request.order_id,
            priority=request.priority,
        )
        await self._announce(notification)
        return notification

    async def list_for_agent(
        self, identity: Identity, pagination: PaginationParams, unread_only: bool = False
    ) -> NotificationPage:
        role = identity.role.value
        notifications = await self.repository.list_for_agent(
            identity.id, role, unread_only, pagination.limit, pagination.offset
        )
        total = await self.repository.count_for_agent(identity.id, role, unread_only)
        unread = await self.repository.count_for_agent(identity.id, role, unread_only=True)
        return NotificationPage(
            notifications=notifications,
            unread_count=unread,
            pagination=PaginationInfo.create(total, pagination),
        )

    async def mark_as_read(self, notification_id: str, identity: Identity) -> DeliveryNotification:
        notification = await self.repository.get(notification_id)
        if notification is None:
            raise NotFound("Notification not found")
        if notification.delivery_person_id != identity.id:
            raise Forbidden("Not authorized to update this notification")

        updated = await self.repository.mark_read(notification_id, identity.id)
        if updated is None:
            raise NotFound("Notification not found")
        return updated

    async def mark_all_as_read(self, identity: Identity) -> MarkAllReadResponse:
        count = await self.repository.mark_all_read(identity.id)
        return MarkAllReadResponse(message="All notifications marked as read", count=count)

    async def _announce(self, notification: DeliveryNotification) -> None:
        # Push/SMS delivery is done by the notification service consuming this event
        await self.event_bus.publish(
            NotificationRequested(
                notification_id=notification.id,
                delivery_person_id=notification.delivery_person_id,
                target_role=notification.target_role,
                notification_type=notification.type.value,
                message=notification.message,
                priority=notification.priority.value,
            )
        )
