import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from src.common.constants import (
    ACTIVE_DELIVERY_STATUSES,
    FINISHED_DELIVERY_STATUSES,
    DeliveryStatus,
    NotificationPriority,
    NotificationType,
    StatsPeriod,
    TypeMsg,
    UserRole,
)
from src.common.exceptions import Forbidden, InvalidTransition, NotFound, ValidationError
from src.common.logger import log_info
from src.config.loader import DispatchSettings, EarningsSettings
from src.infra.event_bus import EventBus
from src.services.delivery_service.agent_repository import AgentLocationRepository
from src.services.delivery_service.auth import Identity
from src.services.delivery_service.notifications import NotificationService
from src.services.delivery_service.order_sync import OrderServiceClient
from src.services.delivery_service.realtime import RealtimePublisher, delivery_channel
from src.services.delivery_service.repository import AgentAction, DeliveryFilter, DeliveryRepository
from src.services.delivery_service.state_machine import DeliveryStateMachine
from src.services.utils.geo_utils import calculate_distance, estimate_arrival, estimate_travel_minutes
from src.shared.events.delivery_events import DeliveryStatusChanged
from src.shared.models.common import PaginationInfo, PaginationParams
from src.shared.models.delivery_dto import Delivery, DeliveryPage, DeliveryStats, UpdateStatusRequest


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def summarize_order(order: dict[str, Any]) -> dict[str, Any]:
    """Short order card for the history list."""
    restaurant = order.get("restaurant")
    restaurant_name = restaurant.get("name") if isinstance(restaurant, dict) else restaurant
    return {
        "id": order.get("_id") or order.get("id"),
        "total_price": order.get("total_price"),
        "restaurant": restaurant_name or "Unknown Restaurant",
        "customer": order.get("customer_id"),
    }


def delivery_distance_km(delivery: Delivery) -> float:
    pickup = delivery.pickup_location.coordinates
    dropoff = delivery.delivery_location.coordinates
    return calculate_distance(pickup.lat, pickup.lng, dropoff.lat, dropoff.lng)


class DeliveryService:
    """Delivery reads and the status state machine."""

    def __init__(
        self,
        deliveries: DeliveryRepository,
        agents: AgentLocationRepository,
        notifications: NotificationService,
        publisher: RealtimePublisher,
        event_bus: EventBus,
        order_client: OrderServiceClient,
        dispatch: DispatchSettings,
        earnings: EarningsSettings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.deliveries = deliveries
        self.agents = agents
        self.notifications = notifications
        self.publisher = publisher
        self.event_bus = event_bus
        self.order_client = order_client
        self.dispatch = dispatch
        self.earnings = earnings
        self.clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_delivery(self, delivery_id: str, identity: Identity) -> Delivery:
        delivery = await self._get_or_404(delivery_id)
        if not self.can_view(delivery, identity):
            raise Forbidden("You are not authorized to view this delivery")
        [delivery] = await self.with_orders([delivery], identity)
        return delivery

    @staticmethod
    def can_view(delivery: Delivery, identity: Identity) -> bool:
        if identity.role == UserRole.ADMIN:
            return True
        if identity.role == UserRole.DELIVERY_PERSON:
            if delivery.delivery_person_id is None:
                return delivery.status == DeliveryStatus.PENDING_ASSIGNMENT
            return delivery.delivery_person_id == identity.id
        if identity.role == UserRole.CUSTOMER:
            return delivery.customer_id == identity.id
        if identity.role == UserRole.RESTAURANT:
            return delivery.restaurant_id == identity.id
        return False

    async def with_orders(
        self, deliveries: list[Delivery], identity: Identity, summary: bool = False
    ) -> list[Delivery]:
        """Attaches order details; a delivery whose order can't be fetched is returned as is."""
        if not deliveries:
            return deliveries
        orders = await asyncio.gather(
            *(self.order_client.get_order(d.order_id, token=identity.token) for d in deliveries)
        )
        return [
            d if order is None else d.model_copy(update={"order": summarize_order(order) if summary else order})
            for d, order in zip(deliveries, orders)
        ]

    async def get_by_order_id(self, order_id: str) -> Delivery:
        delivery = await self.deliveries.get_by_order_id(order_id)
        if delivery is None:
            raise NotFound("No delivery found for this order")
        return delivery

    async def list_available(self, identity: Identity) -> list[Delivery]:
        deliveries = await self.deliveries.find(
            DeliveryFilter(statuses=[DeliveryStatus.PENDING_ASSIGNMENT]), order_by="queue"
        )
        return await self.with_orders(deliveries, identity)

    async def list_my(self, identity: Identity) -> list[Delivery]:
        deliveries = await self.deliveries.find(
            DeliveryFilter(statuses=ACTIVE_DELIVERY_STATUSES, delivery_person_id=identity.id)
        )
        return await self.with_orders(deliveries, identity)

    async def history(self, identity: Identity, pagination: PaginationParams) -> DeliveryPage:
        flt = DeliveryFilter(statuses=FINISHED_DELIVERY_STATUSES, delivery_person_id=identity.id)
        deliveries = await self.deliveries.find(
            flt, order_by="finished", limit=pagination.limit, offset=pagination.offset
        )
        total = await self.deliveries.count(flt)
        deliveries = await self.with_orders(deliveries, identity, summary=True)
        return DeliveryPage(deliveries=deliveries, pagination=PaginationInfo.create(total, pagination))

    async def list_all(self, pagination: PaginationParams, status: Optional[DeliveryStatus] = None) -> DeliveryPage:
        flt = DeliveryFilter(statuses=[status] if status else None)
        deliveries = await self.deliveries.find(flt, limit=pagination.limit, offset=pagination.offset)
        total = await self.deliveries.count(flt)
        return DeliveryPage(deliveries=deliveries, pagination=PaginationInfo.create(total, pagination))

    async def stats(self, identity: Identity, period: StatsPeriod = StatsPeriod.WEEK) -> DeliveryStats:
        now = self.clock()
        if period == StatsPeriod.DAY:
            since = now.replace(hour=0, minute=0, second=0, microsecond=0)
        elif period == StatsPeriod.MONTH:
            since = now - timedelta(days=30)
        else:
            since = now - timedelta(days=7)

        delivered = await self.deliveries.find(
            DeliveryFilter(
                statuses=[DeliveryStatus.DELIVERED],
                delivery_person_id=identity.id,
                delivered_since=since,
            )
        )

        total_distance = 0.0
        total_earnings = 0.0
        times = []
        for delivery in delivered:
            distance = delivery_distance_km(delivery)
            total_distance += distance
            total_earnings += self.earnings.BASE_PAY + self.earnings.PAY_PER_KM * distance
            if delivery.actual_delivery_time is not None:
                times.append(delivery.actual_delivery_time)

        return DeliveryStats(
            period=period,
            total_deliveries=len(delivered),
            total_earnings=round(total_earnings, 2),
            total_distance_km=round(total_distance, 1),
            avg_rating=None,
            avg_delivery_time=round_half_up(sum(times) / len(times)) if times else 0,
        )

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    async def update_status(self, delivery_id: str, request: UpdateStatusRequest, identity: Identity) -> Delivery:
        if identity.role not in (UserRole.DELIVERY_PERSON, UserRole.ADMIN):
            raise Forbidden("You are not authorized to update this delivery")
        if request.status == DeliveryStatus.ASSIGNED:
            raise ValidationError("Deliveries are assigned through accept or assign, not a status update")

        delivery = await self._get_or_404(delivery_id)
        if not identity.is_admin and delivery.delivery_person_id != identity.id:
            raise Forbidden("You are not authorized to update this delivery")

        return await self.transition(delivery, request.status, identity, notes=request.notes)

    async def transition(
        self,
        delivery: Delivery,
        new_status: DeliveryStatus,
        actor: Identity,
        notes: Optional[str] = None,
        assignee_id: Optional[str] = None,
        assignee_name: Optional[str] = None,
    ) -> Delivery:
        """
        Validates the edge, writes it with a compare-and-set on the status
        the caller read, then runs the after-commit side effects.

        A lost compare-and-set re-reads the record and raises
        InvalidTransition against the status the winner left behind.
        """
        DeliveryStateMachine.ensure_transition(delivery.status, new_status)

        now = self.clock()
        changes: dict[str, Any] = {"status": new_status}

        ts_field = DeliveryStateMachine.TIMESTAMP_FIELDS.get(new_status)
        if ts_field and getattr(delivery, ts_field) is None:
            changes[ts_field] = now

        agent_id = delivery.delivery_person_id
        agent_action = None
        if new_status == DeliveryStatus.ASSIGNED:
            if not assignee_id:
                raise ValidationError("delivery_person_id is required to assign a delivery")
            agent_id = assignee_id
            agent_action = AgentAction.CLAIM
            changes["delivery_person_id"] = assignee_id
            if assignee_name is not None:
                changes["delivery_person_name"] = assignee_name
        elif new_status in DeliveryStateMachine.RELEASING:
            agent_action = AgentAction.RELEASE

        if new_status == DeliveryStatus.IN_TRANSIT:
            changes["estimated_delivery_time"] = await self._estimate_arrival(delivery, now)
        if new_status == DeliveryStatus.DELIVERED and delivery.picked_up_at is not None:
            changes["actual_delivery_time"] = round_half_up((now - delivery.picked_up_at).total_seconds() / 60)

        if notes:
            changes["delivery_notes"] = f"{delivery.delivery_notes}\n{notes}" if delivery.delivery_notes else notes

        updated = await self.deliveries.transition(
            delivery.id,
            expected_status=delivery.status,
            changes=changes,
            now=now,
            agent_id=agent_id,
            agent_action=agent_action,
        )
        if updated is None:
            current = await self._get_or_404(delivery.id)
            raise InvalidTransition(
                current_status=current.status.value,
                requested_status=new_status.value,
                allowed=[s.value for s in DeliveryStateMachine.allowed_next(current.status)],
            )

        await log_info(
            f"Delivery {updated.id} {delivery.status.value} -> {new_status.value} by {actor.role.value} {actor.id}",
            type_msg=TypeMsg.INFO,
        )
        await self._after_commit(delivery, updated, actor)
        return updated

    async def _after_commit(self, before: Delivery, after: Delivery, actor: Identity) -> None:
        order_status = DeliveryStateMachine.ORDER_STATUS_MIRROR.get(after.status)
        if order_status is not None:
            await self.order_client.mirror_order_status(after.order_id, order_status, token=actor.token)

        await self.event_bus.publish(
            DeliveryStatusChanged(
                delivery_id=after.id,
                order_id=after.order_id,
                old_status=before.status.value,
                new_status=after.status.value,
                delivery_person_id=after.delivery_person_id,
                changed_by=actor.id,
            )
        )

        await self.publisher.publish(
            delivery_channel(after.id),
            "statusUpdate",
            {
                "deliveryId": after.id,
                "orderId": after.order_id,
                "status": after.status.value,
                "deliveryPersonId": after.delivery_person_id,
                "estimatedDeliveryTime": after.estimated_delivery_time,
                "timestamp": after.updated_at,
            },
        )

        if actor.is_admin and after.delivery_person_id and after.status != DeliveryStatus.ASSIGNED:
            await self.notifications.notify_agent(
                after.delivery_person_id,
                NotificationType.SYSTEM_ALERT,
                f"Delivery for order {after.order_id} was set to {after.status.value} by an administrator",
                delivery_id=after.id,
                order_id=after.order_id,
                priority=NotificationPriority.HIGH,
            )

    async def _estimate_arrival(self, delivery: Delivery, now: datetime) -> datetime:
        """ETA from the last known courier position (or the pickup point) to the drop-off."""
        speed = None
        if delivery.current_location is not None:
            origin_lat, origin_lng = delivery.current_location.lat, delivery.current_location.lng
        else:
            origin_lat, origin_lng = delivery.pickup_location.coordinates.lat, delivery.pickup_location.coordinates.lng

        if delivery.delivery_person_id:
            agent = await self.agents.get(delivery.delivery_person_id)
            if agent is not None:
                speed = agent.speed
                if delivery.current_location is None and agent.location is not None:
                    origin_lat, origin_lng = agent.location.lat, agent.location.lng

        dropoff = delivery.delivery_location.coordinates
        distance = calculate_distance(origin_lat, origin_lng, dropoff.lat, dropoff.lng)
        minutes = estimate_travel_minutes(
            distance,
            speed,
            default_speed_kmh=self.dispatch.AVERAGE_SPEED_KMH,
            min_speed_kmh=self.dispatch.MIN_REPORTED_SPEED_KMH,
        )
        return estimate_arrival(now, minutes)

    async def _get_or_404(self, delivery_id: str) -> Delivery:
        delivery = await self.deliveries.get_by_id(delivery_id)
        if delivery is None:
            raise NotFound("Delivery not found")
        return delivery
