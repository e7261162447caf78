from typing import Optional

from src.common.constants import NotificationPriority, NotificationType
from src.infra.database import DatabaseManager, storage_errors
from src.services.delivery_service.repository import as_uuid
from src.shared.models.notification_dto import DeliveryNotification

TABLE = "delivery_schema.delivery_notifications"

# Own notifications plus broadcasts to the agent's role
_RECIPIENT = "(delivery_person_id = $1 OR (delivery_person_id IS NULL AND target_role = $2))"


class NotificationRepository:
    def __init__(self, db: DatabaseManager):
        self.db = db

    @storage_errors
    async def create(
        self,
        type: NotificationType,
        message: str,
        delivery_person_id: Optional[str] = None,
        target_role: Optional[str] = None,
        delivery_id: Optional[str] = None,
        order_id: Optional[str] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> DeliveryNotification:
        row = await self.db.fetchrow(
            f"""
            INSERT INTO {TABLE} (delivery_person_id, target_role, delivery_id, order_id, type, message, priority)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING *
            """,
            delivery_person_id,
            target_role,
            as_uuid(delivery_id) if delivery_id else None,
            order_id,
            type.value,
            message,
            priority.value,
        )
        return DeliveryNotification.from_row(row)

    @storage_errors
    async def get(self, notification_id: str) -> Optional[DeliveryNotification]:
        uid = as_uuid(notification_id)
        if uid is None:
            return None
        row = await self.db.fetchrow(f"SELECT * FROM {TABLE} WHERE id = $1", uid)
        return DeliveryNotification.from_row(row) if row else None

    @storage_errors
    async def list_for_agent(
        self, agent_id: str, role: str, unread_only: bool, limit: int, offset: int
    ) -> list[DeliveryNotification]:
        unread = " AND is_read = FALSE" if unread_only else ""
        rows = await self.db.fetch(
            f"""
            SELECT * FROM {TABLE}
            WHERE {_RECIPIENT}{unread}
            ORDER BY created_at DESC
            LIMIT $3 OFFSET $4
            """,
            agent_id,
            role,
            limit,
            offset,
        )
        return [DeliveryNotification.from_row(row) for row in rows]

    @storage_errors
    async def count_for_agent(self, agent_id: str, role: str, unread_only: bool = False) -> int:
        unread = " AND is_read = FALSE" if unread_only else ""
        return await self.db.fetchval(f"SELECT COUNT(*) FROM {TABLE} WHERE {_RECIPIENT}{unread}", agent_id, role)

    @storage_errors
    async def mark_read(self, notification_id: str, agent_id: str) -> Optional[DeliveryNotification]:
        """Only the addressee can mark a notification read."""
        uid = as_uuid(notification_id)
        if uid is None:
            return None
        row = await self.db.fetchrow(
            f"UPDATE {TABLE} SET is_read = TRUE WHERE id = $1 AND delivery_person_id = $2 RETURNING *",
            uid,
            agent_id,
        )
        return DeliveryNotification.from_row(row) if row else None

    @storage_errors
    async def mark_all_read(self, agent_id: str) -> int:
        status = await self.db.execute(
            f"UPDATE {TABLE} SET is_read = TRUE WHERE delivery_person_id = $1 AND is_read = FALSE",
            agent_id,
        )
        # asyncpg returns the command tag, e.g. "UPDATE 3"
        return int(status.split()[-1])
