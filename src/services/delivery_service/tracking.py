from datetime import datetime
from typing import Callable, Optional

from src.common.constants import AgentStatus, UserRole
from src.common.exceptions import Forbidden, NotFound
from src.common.logger import log_error
from src.config.loader import DispatchSettings
from src.services.delivery_service.agent_repository import AgentLocationRepository
from src.services.delivery_service.auth import Identity
from src.services.delivery_service.geo_index import GeoIndex
from src.services.delivery_service.realtime import RealtimePublisher, delivery_channel, role_channel
from src.services.delivery_service.repository import DeliveryRepository
from src.services.delivery_service.service import utcnow
from src.services.utils.geo_utils import (
    calculate_distance,
    estimate_arrival,
    estimate_travel_minutes,
    format_eta,
    validate_coordinates,
)
from src.shared.models.delivery_dto import Delivery
from src.shared.models.location_dto import AgentLocation, DeliveryPosition, LocationUpdateRequest, NearbyAgent


class LocationBroadcaster:
    """Courier heartbeats, proximity queries and live position fan-out."""

    def __init__(
        self,
        agents: AgentLocationRepository,
        deliveries: DeliveryRepository,
        geo_index: GeoIndex,
        publisher: RealtimePublisher,
        dispatch: DispatchSettings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.agents = agents
        self.deliveries = deliveries
        self.geo_index = geo_index
        self.publisher = publisher
        self.dispatch = dispatch
        self.clock = clock

    async def update_position(self, identity: Identity, request: LocationUpdateRequest) -> AgentLocation:
        if identity.role != UserRole.DELIVERY_PERSON:
            raise Forbidden("Only delivery personnel can report a location")

        lat, lng = validate_coordinates(request.lat, request.lng)
        heading = request.heading or 0.0
        speed = request.speed or 0.0
        requested = AgentStatus(request.status) if request.status else AgentStatus.AVAILABLE
        now = self.clock()

        agent = await self.agents.upsert_position(identity.id, lat, lng, heading, speed, requested, now)

        try:
            await self.geo_index.update(identity.id, lat, lng, agent.status)
        except Exception as e:
            # The next heartbeat re-indexes the courier
            await log_error(f"GEO index update for {identity.id} failed: {e}")

        if agent.delivery_id:
            await self._track_delivery(agent, lat, lng, heading, speed, now)

        return agent

    async def _track_delivery(
        self, agent: AgentLocation, lat: float, lng: float, heading: float, speed: float, now: datetime
    ) -> None:
        delivery = await self.deliveries.get_by_id(agent.delivery_id)
        if delivery is None or not delivery.is_active:
            return

        dropoff = delivery.delivery_location.coordinates
        minutes = estimate_travel_minutes(
            calculate_distance(lat, lng, dropoff.lat, dropoff.lng),
            speed,
            default_speed_kmh=self.dispatch.AVERAGE_SPEED_KMH,
            min_speed_kmh=self.dispatch.MIN_REPORTED_SPEED_KMH,
        )
        eta = estimate_arrival(now, minutes)
        await self.deliveries.update_tracking(delivery.id, lat, lng, now, eta)

        location = {"lat": lat, "lng": lng}
        await self.publisher.publish(
            delivery_channel(delivery.id),
            "locationUpdate",
            {
                "deliveryId": delivery.id,
                "location": location,
                "heading": heading,
                "speed": speed,
                "estimatedDeliveryTime": eta,
                "timestamp": now,
            },
        )
        await self.publisher.publish(
            role_channel(UserRole.ADMIN),
            "driverLocationUpdate",
            {
                "driverId": agent.delivery_person_id,
                "location": location,
                "status": agent.status.value,
                "heading": heading,
                "speed": speed,
                "timestamp": now,
            },
        )

    async def get_nearby(
        self,
        lat: float,
        lng: float,
        max_distance: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[NearbyAgent]:
        lat, lng = validate_coordinates(lat, lng)
        radius = max_distance or self.dispatch.NEARBY_DEFAULT_RADIUS_M
        limit = min(limit or self.dispatch.NEARBY_DEFAULT_LIMIT, self.dispatch.NEARBY_MAX_LIMIT)
        return await self.geo_index.nearby_available(lat, lng, radius, limit)

    async def get_delivery_position(self, delivery_id: str, identity: Identity) -> DeliveryPosition:
        delivery = await self.deliveries.get_by_id(delivery_id)
        if delivery is None:
            raise NotFound("Delivery not found")
        if not self._can_track(delivery, identity):
            raise Forbidden("Not authorized to view this delivery location")

        position = DeliveryPosition(
            delivery_id=delivery.id,
            status=delivery.status,
            delivery_person_id=delivery.delivery_person_id,
            estimated_delivery_time=delivery.estimated_delivery_time,
        )
        if not delivery.delivery_person_id:
            position.message = "No delivery person assigned yet"
            return position

        agent = await self.agents.get(delivery.delivery_person_id)
        if agent is None or agent.location is None:
            position.message = "Delivery person location not available"
            return position

        position.location = agent.location
        position.heading = agent.heading
        position.speed = agent.speed
        position.last_updated = agent.last_updated
        if delivery.is_active and delivery.estimated_delivery_time is not None:
            position.eta = format_eta(delivery.estimated_delivery_time, self.clock())
        return position

    async def get_active_locations(self, identity: Identity) -> list[AgentLocation]:
        if not identity.is_admin:
            raise Forbidden()
        return await self.agents.list_active()

    @staticmethod
    def _can_track(delivery: Delivery, identity: Identity) -> bool:
        if identity.role == UserRole.ADMIN:
            return True
        if identity.role == UserRole.CUSTOMER:
            return delivery.customer_id == identity.id
        if identity.role == UserRole.DELIVERY_PERSON:
            return delivery.delivery_person_id == identity.id
        if identity.role == UserRole.RESTAURANT:
            return delivery.restaurant_id == identity.id
        return False
