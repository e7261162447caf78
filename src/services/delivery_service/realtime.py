from typing import Any

from src.common.constants import UserRole
from src.common.logger import log_debug, log_error
from src.infra.redis_client import RedisClient


def delivery_channel(delivery_id: str) -> str:
    return f"delivery:{delivery_id}"


def role_channel(role: UserRole) -> str:
    return f"role:{role.value}"


class RealtimePublisher:
    """Fire-and-forget push to the live-update channels."""

    def __init__(self, redis: RedisClient):
        self.redis = redis

    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> bool:
        try:
            receivers = await self.redis.publish(channel, {"event": event, "data": payload})
        except Exception as e:
            await log_error(f"Publish {event} to {channel} failed: {e}")
            return False
        await log_debug(f"Published {event} to {channel} ({receivers} receivers)")
        return True
