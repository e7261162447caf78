from datetime import datetime, timedelta
from typing import Callable, Literal, Optional

from src.common.constants import DeliveryStatus, NotificationPriority, NotificationType, TypeMsg, UserRole
from src.common.exceptions import AgentBusy, AlreadyAssigned, Forbidden, InvalidTransition, NoAgentAvailable, NotFound
from src.common.logger import log_info, log_warning
from src.config.loader import DispatchSettings
from src.infra.event_bus import EventBus
from src.services.delivery_service.auth import Identity
from src.services.delivery_service.geo_index import GeoIndex
from src.services.delivery_service.notifications import NotificationService
from src.services.delivery_service.realtime import RealtimePublisher, role_channel
from src.services.delivery_service.repository import DeliveryRepository
from src.services.delivery_service.service import DeliveryService, utcnow
from src.services.utils.geo_utils import validate_coordinates
from src.shared.events.delivery_events import DeliveryAssigned, DeliveryCreated
from src.shared.models.delivery_dto import AssignRequest, CreateDeliveryRequest, Delivery, Place

# Actor for assignments the service makes on its own
SYSTEM_IDENTITY = Identity(id="system", role=UserRole.ADMIN)


class Dispatcher:
    """Creates deliveries and hands them to couriers."""

    def __init__(
        self,
        deliveries: DeliveryRepository,
        delivery_service: DeliveryService,
        geo_index: GeoIndex,
        notifications: NotificationService,
        publisher: RealtimePublisher,
        event_bus: EventBus,
        dispatch: DispatchSettings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.deliveries = deliveries
        self.delivery_service = delivery_service
        self.geo_index = geo_index
        self.notifications = notifications
        self.publisher = publisher
        self.event_bus = event_bus
        self.dispatch = dispatch
        self.clock = clock

    async def create_delivery(self, request: CreateDeliveryRequest) -> tuple[Delivery, bool]:
        """Idempotent on order_id: a repeated call returns the stored delivery and False."""
        await self._validate_place("pickup_location", request.pickup_location)
        await self._validate_place("delivery_location", request.delivery_location)

        now = self.clock()
        minutes = request.estimated_delivery_minutes or self.dispatch.DEFAULT_ESTIMATED_MINUTES
        delivery, created = await self.deliveries.create(request, now + timedelta(minutes=minutes), now)

        if not created:
            await log_info(f"Delivery already exists for order {request.order_id}", type_msg=TypeMsg.DEBUG)
            return delivery, False

        await log_info(f"Delivery {delivery.id} created for order {delivery.order_id}", type_msg=TypeMsg.INFO)

        restaurant = request.restaurant_contact.name or "restaurant"
        await self.notifications.broadcast_to_role(
            UserRole.DELIVERY_PERSON,
            NotificationType.NEW_DELIVERY,
            f"New delivery order available for pickup from {restaurant}",
            delivery_id=delivery.id,
            order_id=delivery.order_id,
            priority=NotificationPriority.HIGH if delivery.is_priority else NotificationPriority.MEDIUM,
        )
        await self.publisher.publish(
            role_channel(UserRole.DELIVERY_PERSON),
            "newDeliveryAvailable",
            {
                "deliveryId": delivery.id,
                "orderId": delivery.order_id,
                "pickupLocation": delivery.pickup_location.model_dump(),
                "deliveryLocation": delivery.delivery_location.model_dump(),
                "isPriority": delivery.is_priority,
                "createdAt": delivery.created_at,
            },
        )
        await self.event_bus.publish(
            DeliveryCreated(
                delivery_id=delivery.id,
                order_id=delivery.order_id,
                pickup_address=delivery.pickup_location.address,
                delivery_address=delivery.delivery_location.address,
                is_priority=delivery.is_priority,
            )
        )

        if self.dispatch.AUTO_ASSIGN_ON_CREATE:
            try:
                delivery = await self.auto_assign(delivery.id, SYSTEM_IDENTITY)
            except (NoAgentAvailable, AlreadyAssigned) as e:
                await log_info(f"Delivery {delivery.id} stays pending: {e.message}", type_msg=TypeMsg.INFO)

        return delivery, True

    async def accept_delivery(self, delivery_id: str, identity: Identity) -> Delivery:
        if identity.role != UserRole.DELIVERY_PERSON:
            raise Forbidden("Only delivery personnel can accept deliveries")

        delivery = await self._get_pending(delivery_id)
        assigned = await self._assign(delivery, identity.id, None, identity)
        await self._announce_assignment(assigned, "accept")
        return assigned

    async def auto_assign(self, delivery_id: str, actor: Identity) -> Delivery:
        """
        Nearest AVAILABLE courier to the pickup point within the configured radius.
        A candidate claimed by someone else in the meantime is skipped.
        """
        delivery = await self._get_pending(delivery_id)
        pickup = delivery.pickup_location.coordinates
        candidates = await self.geo_index.nearby_available(pickup.lat, pickup.lng, self.dispatch.AUTO_ASSIGN_RADIUS_M)

        for candidate in candidates:
            try:
                assigned = await self._assign(delivery, candidate.delivery_person_id, None, actor)
            except AgentBusy:
                await log_warning(
                    f"Candidate {candidate.delivery_person_id} for delivery {delivery.id} got busy, trying next"
                )
                continue

            await self.notifications.notify_agent(
                candidate.delivery_person_id,
                NotificationType.NEW_ASSIGNMENT,
                f"You have been assigned the delivery for order {assigned.order_id}",
                delivery_id=assigned.id,
                order_id=assigned.order_id,
                priority=NotificationPriority.HIGH,
            )
            await self._announce_assignment(assigned, "auto")
            return assigned

        raise NoAgentAvailable(
            "No delivery person available nearby, the delivery stays pending",
            details={"delivery_id": delivery.id},
        )

    async def assign_manually(self, delivery_id: str, request: AssignRequest, identity: Identity) -> Delivery:
        if not identity.is_admin:
            raise Forbidden("Only admins can assign deliveries")

        delivery = await self._get_pending(delivery_id)
        assigned = await self._assign(delivery, request.delivery_person_id, request.delivery_person_name, identity)

        await self.notifications.notify_agent(
            request.delivery_person_id,
            NotificationType.NEW_ASSIGNMENT,
            f"An administrator assigned you the delivery for order {assigned.order_id}",
            delivery_id=assigned.id,
            order_id=assigned.order_id,
            priority=NotificationPriority.HIGH,
        )
        await self._announce_assignment(assigned, "manual")
        return assigned

    async def _assign(
        self, delivery: Delivery, agent_id: str, agent_name: Optional[str], actor: Identity
    ) -> Delivery:
        try:
            return await self.delivery_service.transition(
                delivery,
                DeliveryStatus.ASSIGNED,
                actor,
                assignee_id=agent_id,
                assignee_name=agent_name,
            )
        except InvalidTransition as e:
            raise AlreadyAssigned(
                "This delivery is no longer available for assignment",
                details={"current_status": e.current_status},
            ) from e

    async def _announce_assignment(self, delivery: Delivery, how: Literal["accept", "auto", "manual"]) -> None:
        await self.event_bus.publish(
            DeliveryAssigned(
                delivery_id=delivery.id,
                order_id=delivery.order_id,
                delivery_person_id=delivery.delivery_person_id,
                assigned_by=how,
            )
        )

    async def _get_pending(self, delivery_id: str) -> Delivery:
        delivery = await self.deliveries.get_by_id(delivery_id)
        if delivery is None:
            raise NotFound("Delivery not found")
        if delivery.status != DeliveryStatus.PENDING_ASSIGNMENT:
            raise AlreadyAssigned(
                "This delivery is no longer available for assignment",
                details={"current_status": delivery.status.value},
            )
        return delivery

    async def _validate_place(self, name: str, place: Place) -> None:
        lat, lng = validate_coordinates(place.coordinates.lat, place.coordinates.lng)
        if lat == 0 or lng == 0:
            await log_warning(f"Suspicious {name} coordinates ({lat}, {lng}) for '{place.address}'")
