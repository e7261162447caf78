from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence
from uuid import UUID

from src.common.constants import ACTIVE_DELIVERY_STATUSES, DeliveryStatus
from src.common.exceptions import AgentBusy, StorageError
from src.infra.database import DatabaseManager, storage_errors
from src.services.delivery_service.agent_repository import claim_agent, release_agent
from src.shared.models.delivery_dto import CreateDeliveryRequest, Delivery

TABLE = "delivery_schema.deliveries"

# Columns a status transition is allowed to write
UPDATABLE_COLUMNS = frozenset({
    "status",
    "delivery_person_id",
    "delivery_person_name",
    "assigned_at",
    "picked_up_at",
    "delivered_at",
    "cancelled_at",
    "failed_at",
    "estimated_delivery_time",
    "actual_delivery_time",
    "delivery_notes",
})

ORDERINGS = {
    "newest": "created_at DESC",
    "queue": "is_priority DESC, created_at ASC",
    "finished": "COALESCE(delivered_at, cancelled_at, failed_at, updated_at) DESC",
}


class AgentAction(str, Enum):
    CLAIM = "claim"
    RELEASE = "release"


@dataclass
class DeliveryFilter:
    statuses: Optional[Sequence[DeliveryStatus]] = None
    delivery_person_id: Optional[str] = None
    delivered_since: Optional[datetime] = None


def as_uuid(value: str) -> Optional[UUID]:
    """Delivery ids are UUIDs; anything else cannot exist in the table."""
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _where(flt: DeliveryFilter) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if flt.statuses:
        params.append([s.value for s in flt.statuses])
        clauses.append(f"status = ANY(${len(params)}::text[])")
    if flt.delivery_person_id is not None:
        params.append(flt.delivery_person_id)
        clauses.append(f"delivery_person_id = ${len(params)}")
    if flt.delivered_since is not None:
        params.append(flt.delivered_since)
        clauses.append(f"delivered_at >= ${len(params)}")
    sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return sql, params


class DeliveryRepository:
    def __init__(self, db: DatabaseManager):
        self.db = db

    @storage_errors
    async def create(
        self,
        request: CreateDeliveryRequest,
        estimated_delivery_time: datetime,
        now: datetime,
    ) -> tuple[Delivery, bool]:
        """Inserts a delivery; on a duplicate order_id returns the existing one and False."""
        query = f"""
            INSERT INTO {TABLE} (
                order_id, customer_id, restaurant_id,
                pickup_address, pickup_lat, pickup_lng,
                delivery_address, delivery_lat, delivery_lng,
                customer_name, customer_phone, restaurant_name, restaurant_phone,
                special_instructions, is_priority, estimated_delivery_time,
                created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $17)
            ON CONFLICT (order_id) DO NOTHING
            RETURNING *
        """
        pickup = request.pickup_location
        dropoff = request.delivery_location
        async with self.db.transaction() as conn:
            row = await conn.fetchrow(
                query,
                request.order_id,
                request.customer_id,
                request.restaurant_id,
                pickup.address,
                pickup.coordinates.lat,
                pickup.coordinates.lng,
                dropoff.address,
                dropoff.coordinates.lat,
                dropoff.coordinates.lng,
                request.customer_contact.name,
                request.customer_contact.phone,
                request.restaurant_contact.name,
                request.restaurant_contact.phone,
                request.special_instructions,
                request.is_priority,
                estimated_delivery_time,
                now,
            )
            if row is not None:
                return Delivery.from_row(row), True

            row = await conn.fetchrow(f"SELECT * FROM {TABLE} WHERE order_id = $1", request.order_id)

        if row is None:
            raise StorageError(f"Delivery for order {request.order_id} vanished during create")
        return Delivery.from_row(row), False

    @storage_errors
    async def get_by_id(self, delivery_id: str) -> Optional[Delivery]:
        uid = as_uuid(delivery_id)
        if uid is None:
            return None
        row = await self.db.fetchrow(f"SELECT * FROM {TABLE} WHERE id = $1", uid)
        return Delivery.from_row(row) if row else None

    @storage_errors
    async def get_by_order_id(self, order_id: str) -> Optional[Delivery]:
        row = await self.db.fetchrow(f"SELECT * FROM {TABLE} WHERE order_id = $1", order_id)
        return Delivery.from_row(row) if row else None

    @storage_errors
    async def find(
        self,
        flt: DeliveryFilter,
        order_by: str = "newest",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Delivery]:
        where, params = _where(flt)
        query = f"SELECT * FROM {TABLE} {where} ORDER BY {ORDERINGS[order_by]}"
        if limit is not None:
            params.extend([limit, offset])
            query += f" LIMIT ${len(params) - 1} OFFSET ${len(params)}"
        rows = await self.db.fetch(query, *params)
        return [Delivery.from_row(row) for row in rows]

    @storage_errors
    async def count(self, flt: DeliveryFilter) -> int:
        where, params = _where(flt)
        return await self.db.fetchval(f"SELECT COUNT(*) FROM {TABLE} {where}", *params)

    @storage_errors
    async def transition(
        self,
        delivery_id: str,
        expected_status: DeliveryStatus,
        changes: dict[str, Any],
        now: datetime,
        agent_id: Optional[str] = None,
        agent_action: Optional[AgentAction] = None,
    ) -> Optional[Delivery]:
        """
        Compare-and-set status write plus the agent availability side effect,
        in one transaction.

        Returns None (and writes nothing) if the delivery is no longer in
        expected_status. Raises AgentBusy (rolled back) if the agent to claim
        is occupied by another delivery.
        """
        unknown = set(changes) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not writable by a transition: {sorted(unknown)}")

        uid = as_uuid(delivery_id)
        if uid is None:
            return None

        params: list[Any] = [uid, expected_status.value]
        assignments = []
        for column, value in changes.items():
            params.append(value.value if isinstance(value, Enum) else value)
            assignments.append(f"{column} = ${len(params)}")
        params.append(now)
        assignments.append(f"updated_at = ${len(params)}")

        query = f"""
            UPDATE {TABLE}
            SET {', '.join(assignments)}
            WHERE id = $1 AND status = $2
            RETURNING *
        """

        async with self.db.transaction() as conn:
            row = await conn.fetchrow(query, *params)
            if row is None:
                return None

            if agent_id and agent_action == AgentAction.CLAIM:
                if not await claim_agent(conn, agent_id, uid):
                    raise AgentBusy(
                        f"Delivery person {agent_id} already has an active delivery",
                        details={"delivery_person_id": agent_id},
                    )
            elif agent_id and agent_action == AgentAction.RELEASE:
                await release_agent(conn, agent_id, uid)

        return Delivery.from_row(row)

    @storage_errors
    async def update_tracking(
        self,
        delivery_id: str,
        lat: float,
        lng: float,
        now: datetime,
        estimated_delivery_time: datetime,
    ) -> Optional[Delivery]:
        """Stores the courier position snapshot and ETA while the delivery is active."""
        uid = as_uuid(delivery_id)
        if uid is None:
            return None
        row = await self.db.fetchrow(
            f"""
            UPDATE {TABLE}
            SET current_lat = $2, current_lng = $3, current_location_updated_at = $4,
                estimated_delivery_time = $5, updated_at = $4
            WHERE id = $1 AND status = ANY($6::text[])
            RETURNING *
            """,
            uid,
            lat,
            lng,
            now,
            estimated_delivery_time,
            [s.value for s in ACTIVE_DELIVERY_STATUSES],
        )
        return Delivery.from_row(row) if row else None
