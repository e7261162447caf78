from typing import Callable

import httpx
from fastapi import Depends, Request

from src.common.constants import UserRole
from src.common.exceptions import Forbidden, Unauthenticated
from src.config import settings
from src.infra.database import DatabaseManager
from src.infra.event_bus import EventBus
from src.infra.redis_client import RedisClient
from src.services.delivery_service.agent_repository import AgentLocationRepository
from src.services.delivery_service.auth import Identity, decode_token, extract_token
from src.services.delivery_service.dispatcher import Dispatcher
from src.services.delivery_service.geo_index import GeoIndex
from src.services.delivery_service.notification_repository import NotificationRepository
from src.services.delivery_service.notifications import NotificationService
from src.services.delivery_service.order_sync import OrderServiceClient
from src.services.delivery_service.realtime import RealtimePublisher
from src.services.delivery_service.repository import DeliveryRepository
from src.services.delivery_service.service import DeliveryService
from src.services.delivery_service.tracking import LocationBroadcaster


# Connections live on app.state, created in the lifespan

def get_db(request: Request) -> DatabaseManager:
    return request.app.state.db


def get_redis(request: Request) -> RedisClient:
    return request.app.state.redis


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_delivery_repository(db: DatabaseManager = Depends(get_db)) -> DeliveryRepository:
    return DeliveryRepository(db)


def get_agent_repository(db: DatabaseManager = Depends(get_db)) -> AgentLocationRepository:
    return AgentLocationRepository(db)


def get_publisher(redis: RedisClient = Depends(get_redis)) -> RealtimePublisher:
    return RealtimePublisher(redis)


def get_geo_index(
    redis: RedisClient = Depends(get_redis),
    agents: AgentLocationRepository = Depends(get_agent_repository),
) -> GeoIndex:
    return GeoIndex(redis, agents)


def get_order_client(http_client: httpx.AsyncClient = Depends(get_http_client)) -> OrderServiceClient:
    return OrderServiceClient(
        http_client,
        settings.order_service.ORDER_SERVICE_URL,
        timeout=settings.order_service.ORDER_SERVICE_TIMEOUT,
    )


def get_notification_service(
    db: DatabaseManager = Depends(get_db),
    event_bus: EventBus = Depends(get_event_bus),
) -> NotificationService:
    return NotificationService(NotificationRepository(db), event_bus)


def get_delivery_service(
    deliveries: DeliveryRepository = Depends(get_delivery_repository),
    agents: AgentLocationRepository = Depends(get_agent_repository),
    notifications: NotificationService = Depends(get_notification_service),
    publisher: RealtimePublisher = Depends(get_publisher),
    event_bus: EventBus = Depends(get_event_bus),
    order_client: OrderServiceClient = Depends(get_order_client),
) -> DeliveryService:
    return DeliveryService(
        deliveries,
        agents,
        notifications,
        publisher,
        event_bus,
        order_client,
        dispatch=settings.dispatch,
        earnings=settings.earnings,
    )


def get_dispatcher(
    deliveries: DeliveryRepository = Depends(get_delivery_repository),
    delivery_service: DeliveryService = Depends(get_delivery_service),
    geo_index: GeoIndex = Depends(get_geo_index),
    notifications: NotificationService = Depends(get_notification_service),
    publisher: RealtimePublisher = Depends(get_publisher),
    event_bus: EventBus = Depends(get_event_bus),
) -> Dispatcher:
    return Dispatcher(
        deliveries,
        delivery_service,
        geo_index,
        notifications,
        publisher,
        event_bus,
        dispatch=settings.dispatch,
    )


def get_location_broadcaster(
    agents: AgentLocationRepository = Depends(get_agent_repository),
    deliveries: DeliveryRepository = Depends(get_delivery_repository),
    geo_index: GeoIndex = Depends(get_geo_index),
    publisher: RealtimePublisher = Depends(get_publisher),
) -> LocationBroadcaster:
    return LocationBroadcaster(agents, deliveries, geo_index, publisher, dispatch=settings.dispatch)


# Identity

async def get_current_identity(request: Request) -> Identity:
    token = extract_token(request, settings.auth.JWT_COOKIE_NAME)
    if not token:
        raise Unauthenticated()
    return await decode_token(token, settings.auth)


def require_roles(*roles: UserRole) -> Callable:
    async def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in roles:
            raise Forbidden(f"Role {identity.role.value} is not authorized to access this route")
        return identity

    return dependency
