from datetime import datetime
from typing import Optional, Sequence

from asyncpg import Connection

from src.common.constants import AgentStatus
from src.infra.database import DatabaseManager, storage_errors
from src.shared.models.location_dto import AgentLocation

TABLE = "delivery_schema.agent_locations"

# Heartbeat never touches status/delivery_id of an agent occupied by a delivery
_UPSERT_POSITION = f"""
    INSERT INTO {TABLE} AS a (delivery_person_id, lat, lng, heading, speed, status, last_updated)
    VALUES ($1, $2, $3, $4, $5, $6, $7)
    ON CONFLICT (delivery_person_id) DO UPDATE SET
        lat = EXCLUDED.lat,
        lng = EXCLUDED.lng,
        heading = EXCLUDED.heading,
        speed = EXCLUDED.speed,
        last_updated = EXCLUDED.last_updated,
        status = CASE WHEN a.delivery_id IS NOT NULL THEN a.status ELSE EXCLUDED.status END
    RETURNING *
"""

_CLAIM = f"""
    INSERT INTO {TABLE} AS a (delivery_person_id, status, delivery_id)
    VALUES ($1, 'BUSY', $2)
    ON CONFLICT (delivery_person_id) DO UPDATE
        SET status = 'BUSY', delivery_id = EXCLUDED.delivery_id
        WHERE a.delivery_id IS NULL OR a.delivery_id = EXCLUDED.delivery_id
    RETURNING delivery_person_id
"""

_RELEASE = f"""
    UPDATE {TABLE}
    SET status = 'AVAILABLE', delivery_id = NULL
    WHERE delivery_person_id = $1 AND delivery_id = $2
"""


async def claim_agent(conn: Connection, agent_id: str, delivery_id: object) -> bool:
    """Marks the agent BUSY with this delivery. False if another delivery occupies them."""
    row = await conn.fetchrow(_CLAIM, agent_id, delivery_id)
    return row is not None


async def release_agent(conn: Connection, agent_id: str, delivery_id: object) -> None:
    """Frees the agent, only if this delivery is the one occupying them."""
    await conn.execute(_RELEASE, agent_id, delivery_id)


class AgentLocationRepository:
    def __init__(self, db: DatabaseManager):
        self.db = db

    @storage_errors
    async def upsert_position(
        self,
        agent_id: str,
        lat: float,
        lng: float,
        heading: float,
        speed: float,
        status: AgentStatus,
        now: datetime,
    ) -> AgentLocation:
        """Stores a heartbeat; returns the row as it is after the write."""
        row = await self.db.fetchrow(
            _UPSERT_POSITION, agent_id, lat, lng, heading, speed, status.value, now
        )
        return AgentLocation.from_row(row)

    @storage_errors
    async def get(self, agent_id: str) -> Optional[AgentLocation]:
        row = await self.db.fetchrow(f"SELECT * FROM {TABLE} WHERE delivery_person_id = $1", agent_id)
        return AgentLocation.from_row(row) if row else None

    @storage_errors
    async def get_many(self, agent_ids: Sequence[str]) -> list[AgentLocation]:
        if not agent_ids:
            return []
        rows = await self.db.fetch(
            f"SELECT * FROM {TABLE} WHERE delivery_person_id = ANY($1::text[])", list(agent_ids)
        )
        return [AgentLocation.from_row(row) for row in rows]

    @storage_errors
    async def list_active(self) -> list[AgentLocation]:
        """All agents that are not OFFLINE and have reported a position."""
        rows = await self.db.fetch(
            f"""
            SELECT * FROM {TABLE}
            WHERE status <> 'OFFLINE' AND lat IS NOT NULL
            ORDER BY last_updated DESC
            """
        )
        return [AgentLocation.from_row(row) for row in rows]
