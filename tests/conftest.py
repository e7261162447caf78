# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.

In-memory репозитории повторяют семантику SQL (compare-and-set статуса,
claim/release курьера в одной транзакции), поэтому сценарии и гонки
проверяются без PostgreSQL и Redis.
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from jose import jwt

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("CONFIG_PATH", "/nonexistent/config.json")
os.environ.setdefault("DB_PASSWORD", "test_password")

from src.common.constants import AgentStatus, DeliveryStatus, NotificationPriority, UserRole
from src.common.exceptions import AgentBusy
from src.config.loader import AuthSettings, DispatchSettings, EarningsSettings
from src.services.delivery_service.auth import Identity
from src.services.delivery_service.dispatcher import Dispatcher
from src.services.delivery_service.geo_index import GeoIndex
from src.services.delivery_service.notifications import NotificationService
from src.services.delivery_service.realtime import RealtimePublisher
from src.services.delivery_service.repository import UPDATABLE_COLUMNS, AgentAction, DeliveryFilter
from src.services.delivery_service.service import DeliveryService
from src.services.delivery_service.tracking import LocationBroadcaster
from src.services.utils.geo_utils import calculate_distance
from src.shared.models.delivery_dto import Contact, CreateDeliveryRequest, CurrentLocation, Delivery
from src.shared.models.location_dto import AgentLocation
from src.shared.models.notification_dto import DeliveryNotification


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# ЧАСЫ
# =============================================================================

class FakeClock:
    """Управляемое время для сервисов (clock=...)."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# =============================================================================
# IN-MEMORY РЕПОЗИТОРИИ
# =============================================================================

class InMemoryAgentRepository:
    def __init__(self) -> None:
        self.rows: dict[str, AgentLocation] = {}

    async def upsert_position(self, agent_id, lat, lng, heading, speed, status, now) -> AgentLocation:
        current = self.rows.get(agent_id)
        occupied = current is not None and current.delivery_id is not None
        row = AgentLocation(
            delivery_person_id=agent_id,
            location={"lat": lat, "lng": lng},
            status=current.status if occupied else status,
            delivery_id=current.delivery_id if current else None,
            heading=heading,
            speed=speed,
            last_updated=now,
        )
        self.rows[agent_id] = row
        return row.model_copy()

    async def get(self, agent_id: str) -> Optional[AgentLocation]:
        row = self.rows.get(agent_id)
        return row.model_copy() if row else None

    async def get_many(self, agent_ids: Sequence[str]) -> list[AgentLocation]:
        return [self.rows[a].model_copy() for a in agent_ids if a in self.rows]

    async def list_active(self) -> list[AgentLocation]:
        active = [r for r in self.rows.values() if r.status != AgentStatus.OFFLINE and r.location is not None]
        return sorted(active, key=lambda r: r.last_updated, reverse=True)

    # Эквиваленты claim_agent / release_agent
    def can_claim(self, agent_id: str, delivery_id: str) -> bool:
        row = self.rows.get(agent_id)
        return row is None or row.delivery_id in (None, delivery_id)

    def claim(self, agent_id: str, delivery_id: str) -> None:
        row = self.rows.get(agent_id) or AgentLocation(delivery_person_id=agent_id)
        self.rows[agent_id] = row.model_copy(update={"status": AgentStatus.BUSY, "delivery_id": delivery_id})

    def release(self, agent_id: str, delivery_id: str) -> None:
        row = self.rows.get(agent_id)
        if row is not None and row.delivery_id == delivery_id:
            self.rows[agent_id] = row.model_copy(update={"status": AgentStatus.AVAILABLE, "delivery_id": None})


class InMemoryDeliveryRepository:
    def __init__(self, agents: InMemoryAgentRepository) -> None:
        self.agents = agents
        self.rows: dict[str, Delivery] = {}

    async def create(self, request: CreateDeliveryRequest, estimated_delivery_time, now):
        await asyncio.sleep(0)
        for row in self.rows.values():
            if row.order_id == request.order_id:
                return row.model_copy(), False
        delivery = Delivery(
            id=str(uuid4()),
            order_id=request.order_id,
            customer_id=request.customer_id,
            restaurant_id=request.restaurant_id,
            pickup_location=request.pickup_location,
            delivery_location=request.delivery_location,
            customer_contact=request.customer_contact,
            restaurant_contact=request.restaurant_contact,
            special_instructions=request.special_instructions,
            is_priority=request.is_priority,
            estimated_delivery_time=estimated_delivery_time,
            created_at=now,
            updated_at=now,
        )
        self.rows[delivery.id] = delivery
        return delivery.model_copy(), True

    async def get_by_id(self, delivery_id: str) -> Optional[Delivery]:
        await asyncio.sleep(0)
        row = self.rows.get(str(delivery_id))
        return row.model_copy() if row else None

    async def get_by_order_id(self, order_id: str) -> Optional[Delivery]:
        for row in self.rows.values():
            if row.order_id == order_id:
                return row.model_copy()
        return None

    def _match(self, flt: DeliveryFilter) -> list[Delivery]:
        result = []
        for row in self.rows.values():
            if flt.statuses and row.status not in flt.statuses:
                continue
            if flt.delivery_person_id is not None and row.delivery_person_id != flt.delivery_person_id:
                continue
            if flt.delivered_since is not None and (row.delivered_at is None or row.delivered_at < flt.delivered_since):
                continue
            result.append(row.model_copy())
        return result

    async def find(self, flt, order_by="newest", limit=None, offset=0) -> list[Delivery]:
        rows = self._match(flt)
        if order_by == "queue":
            rows.sort(key=lambda r: r.created_at)
            rows.sort(key=lambda r: r.is_priority, reverse=True)
        elif order_by == "finished":
            rows.sort(key=lambda r: r.delivered_at or r.cancelled_at or r.failed_at or r.updated_at, reverse=True)
        else:
            rows.sort(key=lambda r: r.created_at, reverse=True)
        if limit is not None:
            rows = rows[offset:offset + limit]
        return rows

    async def count(self, flt) -> int:
        return len(self._match(flt))

    async def transition(self, delivery_id, expected_status, changes, now, agent_id=None, agent_action=None):
        await asyncio.sleep(0)
        unknown = set(changes) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not writable by a transition: {sorted(unknown)}")

        # Ниже нет await: проверка и запись атомарны, как UPDATE ... WHERE status = $2
        row = self.rows.get(str(delivery_id))
        if row is None or row.status != expected_status:
            return None
        if agent_id and agent_action == AgentAction.CLAIM and not self.agents.can_claim(agent_id, row.id):
            raise AgentBusy(f"Delivery person {agent_id} already has an active delivery")

        updated = row.model_copy(update={**changes, "updated_at": now})
        self.rows[row.id] = updated
        if agent_id and agent_action == AgentAction.CLAIM:
            self.agents.claim(agent_id, row.id)
        elif agent_id and agent_action == AgentAction.RELEASE:
            self.agents.release(agent_id, row.id)
        return updated.model_copy()

    async def update_tracking(self, delivery_id, lat, lng, now, estimated_delivery_time):
        row = self.rows.get(str(delivery_id))
        if row is None or not row.is_active:
            return None
        updated = row.model_copy(update={
            "current_location": CurrentLocation(lat=lat, lng=lng, updated_at=now),
            "estimated_delivery_time": estimated_delivery_time,
            "updated_at": now,
        })
        self.rows[row.id] = updated
        return updated.model_copy()


class InMemoryNotificationRepository:
    def __init__(self) -> None:
        self.rows: dict[str, DeliveryNotification] = {}
        self._seq = 0

    async def create(self, type, message, delivery_person_id=None, target_role=None,
                     delivery_id=None, order_id=None, priority=NotificationPriority.MEDIUM):
        self._seq += 1
        notification = DeliveryNotification(
            id=str(uuid4()),
            delivery_person_id=delivery_person_id,
            target_role=target_role,
            delivery_id=delivery_id,
            order_id=order_id,
            type=type,
            message=message,
            priority=priority,
            created_at=T0 + timedelta(seconds=self._seq),
        )
        self.rows[notification.id] = notification
        return notification

    async def get(self, notification_id):
        return self.rows.get(notification_id)

    def _visible(self, agent_id, role, unread_only):
        rows = [
            n for n in self.rows.values()
            if n.delivery_person_id == agent_id or (n.delivery_person_id is None and n.target_role == role)
        ]
        if unread_only:
            rows = [n for n in rows if not n.is_read]
        return sorted(rows, key=lambda n: n.created_at, reverse=True)

    async def list_for_agent(self, agent_id, role, unread_only, limit, offset):
        return self._visible(agent_id, role, unread_only)[offset:offset + limit]

    async def count_for_agent(self, agent_id, role, unread_only=False):
        return len(self._visible(agent_id, role, unread_only))

    async def mark_read(self, notification_id, agent_id):
        n = self.rows.get(notification_id)
        if n is None or n.delivery_person_id != agent_id:
            return None
        self.rows[notification_id] = n.model_copy(update={"is_read": True})
        return self.rows[notification_id]

    async def mark_all_read(self, agent_id):
        count = 0
        for key, n in list(self.rows.items()):
            if n.delivery_person_id == agent_id and not n.is_read:
                self.rows[key] = n.model_copy(update={"is_read": True})
                count += 1
        return count


class FakeRedis:
    """GEO-набор и pub/sub в памяти с тем же интерфейсом, что у RedisClient."""

    def __init__(self) -> None:
        self.geo: dict[str, dict[str, tuple[float, float]]] = {}
        self.published: list[tuple[str, dict[str, Any]]] = []

    async def geoadd(self, key, longitude, latitude, member):
        self.geo.setdefault(key, {})[member] = (longitude, latitude)
        return 1

    async def geosearch(self, key, longitude, latitude, radius, unit="m", count=None):
        hits = []
        for member, (lng, lat) in self.geo.get(key, {}).items():
            distance = calculate_distance(latitude, longitude, lat, lng) * 1000
            if distance <= radius:
                hits.append((member, distance))
        hits.sort(key=lambda h: h[1])
        return hits[:count] if count else hits

    async def georem(self, key, member):
        return 1 if self.geo.get(key, {}).pop(member, None) else 0

    async def publish(self, channel, payload):
        self.published.append((channel, payload))
        return 1

    def events(self, channel: str) -> list[str]:
        return [p["event"] for c, p in self.published if c == channel]


# =============================================================================
# ФИКСТУРЫ
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatch_settings() -> DispatchSettings:
    return DispatchSettings()


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


@pytest.fixture
def mock_order_client() -> AsyncMock:
    client = AsyncMock()
    client.mirror_order_status = AsyncMock(return_value=True)
    client.get_order = AsyncMock(return_value=None)
    return client


@pytest.fixture
def stack(clock, dispatch_settings, mock_event_bus, mock_order_client) -> SimpleNamespace:
    """Полный набор сервисов доставки поверх in-memory хранилищ."""
    agents = InMemoryAgentRepository()
    deliveries = InMemoryDeliveryRepository(agents)
    notification_repo = InMemoryNotificationRepository()
    redis = FakeRedis()

    publisher = RealtimePublisher(redis)
    notifications = NotificationService(notification_repo, mock_event_bus)
    geo_index = GeoIndex(redis, agents)
    service = DeliveryService(
        deliveries, agents, notifications, publisher, mock_event_bus, mock_order_client,
        dispatch=dispatch_settings, earnings=EarningsSettings(), clock=clock,
    )
    dispatcher = Dispatcher(
        deliveries, service, geo_index, notifications, publisher, mock_event_bus,
        dispatch=dispatch_settings, clock=clock,
    )
    broadcaster = LocationBroadcaster(agents, deliveries, geo_index, publisher, dispatch=dispatch_settings, clock=clock)

    return SimpleNamespace(
        agents=agents,
        deliveries=deliveries,
        notification_repo=notification_repo,
        redis=redis,
        publisher=publisher,
        notifications=notifications,
        geo_index=geo_index,
        service=service,
        dispatcher=dispatcher,
        broadcaster=broadcaster,
        event_bus=mock_event_bus,
        order_client=mock_order_client,
        clock=clock,
    )


@pytest.fixture
def issue_token():
    """Фабрика JWT в формате auth-сервиса (claims id, role, exp)."""
    def factory(
        user_id: str,
        role: UserRole | str,
        config: Optional[AuthSettings] = None,
        expires_delta: timedelta = timedelta(hours=1),
    ) -> str:
        config = config or AuthSettings(JWT_SECRET=os.environ["JWT_SECRET"])
        role_value = role.value if isinstance(role, UserRole) else role
        claims = {"id": user_id, "role": role_value, "exp": datetime.now(timezone.utc) + expires_delta}
        return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)

    return factory


@pytest.fixture
def admin() -> Identity:
    return Identity(id="admin-1", role=UserRole.ADMIN, token="admin-token")


@pytest.fixture
def courier() -> Identity:
    return Identity(id="A1", role=UserRole.DELIVERY_PERSON, token="courier-token")


@pytest.fixture
def other_courier() -> Identity:
    return Identity(id="A2", role=UserRole.DELIVERY_PERSON, token="courier-2-token")


@pytest.fixture
def customer() -> Identity:
    return Identity(id="cust-1", role=UserRole.CUSTOMER)


@pytest.fixture
def restaurant() -> Identity:
    return Identity(id="rest-1", role=UserRole.RESTAURANT)


@pytest.fixture
def make_request():
    """Фабрика тела POST /deliveries."""
    def factory(order_id: str = "O1", pickup=(1.0, 1.0), dropoff=(2.0, 2.0), **kwargs: Any) -> CreateDeliveryRequest:
        data = {
            "order_id": order_id,
            "pickup_location": {"address": "Restaurant st. 1", "coordinates": {"lat": pickup[0], "lng": pickup[1]}},
            "delivery_location": {"address": "Customer ave. 2", "coordinates": {"lat": dropoff[0], "lng": dropoff[1]}},
            "customer_id": "cust-1",
            "restaurant_id": "rest-1",
            "customer_contact": Contact(name="Customer", phone="+100"),
            "restaurant_contact": Contact(name="Pizza Place", phone="+200"),
        }
        data.update(kwargs)
        return CreateDeliveryRequest(**data)

    return factory


@pytest.fixture
def mock_db() -> MagicMock:
    """
    Мок DatabaseManager для SQL-тестов репозиториев.
    db.conn: соединение, которое отдаёт transaction().
    """
    conn = AsyncMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock(return_value="UPDATE 0")

    @asynccontextmanager
    async def transaction():
        yield conn

    db = MagicMock()
    db.conn = conn
    db.transaction = transaction
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=0)
    db.execute = AsyncMock(return_value="UPDATE 0")
    return db


@pytest.fixture
def delivery_row() -> dict[str, Any]:
    """Строка таблицы deliveries."""
    return {
        "id": uuid4(),
        "order_id": "O1",
        "customer_id": "cust-1",
        "restaurant_id": "rest-1",
        "delivery_person_id": None,
        "delivery_person_name": None,
        "status": DeliveryStatus.PENDING_ASSIGNMENT.value,
        "pickup_address": "Restaurant st. 1",
        "pickup_lat": 1.0,
        "pickup_lng": 1.0,
        "delivery_address": "Customer ave. 2",
        "delivery_lat": 2.0,
        "delivery_lng": 2.0,
        "customer_name": "Customer",
        "customer_phone": "+100",
        "restaurant_name": "Pizza Place",
        "restaurant_phone": "+200",
        "special_instructions": "",
        "delivery_notes": "",
        "is_priority": False,
        "current_lat": None,
        "current_lng": None,
        "current_location_updated_at": None,
        "assigned_at": None,
        "picked_up_at": None,
        "delivered_at": None,
        "cancelled_at": None,
        "failed_at": None,
        "estimated_delivery_time": T0 + timedelta(minutes=30),
        "actual_delivery_time": None,
        "created_at": T0,
        "updated_at": T0,
    }
