from datetime import datetime, timezone
from typing import Optional

from src.common.constants import AgentStatus
from src.common.logger import log_warning
from src.infra.redis_client import RedisClient
from src.services.delivery_service.agent_repository import AgentLocationRepository
from src.shared.models.delivery_dto import Coordinates
from src.shared.models.location_dto import NearbyAgent

GEO_KEY = "agents:geo"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class GeoIndex:
    """
    Agent positions for proximity search.

    Redis GEO answers "who is near"; the agent_locations table is the
    authority on whether that agent is AVAILABLE right now.
    """

    def __init__(self, redis: RedisClient, agents: AgentLocationRepository):
        self.redis = redis
        self.agents = agents

    async def update(self, agent_id: str, lat: float, lng: float, status: AgentStatus) -> None:
        if status == AgentStatus.OFFLINE:
            await self.redis.georem(GEO_KEY, agent_id)
        else:
            await self.redis.geoadd(GEO_KEY, lng, lat, agent_id)

    async def nearby_available(
        self,
        lat: float,
        lng: float,
        radius_m: float,
        limit: Optional[int] = None,
    ) -> list[NearbyAgent]:
        """AVAILABLE agents within radius_m, nearest first, then longest waiting, then by id."""
        hits = await self.redis.geosearch(GEO_KEY, longitude=lng, latitude=lat, radius=radius_m, unit="m")
        if not hits:
            return []

        distances = dict(hits)
        rows = await self.agents.get_many(list(distances))

        result = []
        for agent in rows:
            if agent.status != AgentStatus.AVAILABLE or agent.location is None:
                continue
            result.append(
                NearbyAgent(
                    delivery_person_id=agent.delivery_person_id,
                    location=Coordinates(lat=agent.location.lat, lng=agent.location.lng),
                    distance_m=round(distances[agent.delivery_person_id], 1),
                    heading=agent.heading,
                    speed=agent.speed,
                    last_updated=agent.last_updated,
                )
            )

        stale = set(distances) - {a.delivery_person_id for a in rows}
        if stale:
            await log_warning(f"GEO index holds agents without a location row: {sorted(stale)}")

        result.sort(key=lambda a: (a.distance_m, a.last_updated or _EPOCH, a.delivery_person_id))
        return result[:limit] if limit is not None else result
