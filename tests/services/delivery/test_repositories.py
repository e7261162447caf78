# tests/services/delivery/test_repositories.py
"""
Тесты SQL-репозиториев на моке соединения asyncpg.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch
from uuid import UUID, uuid4

import asyncpg
import pytest

from src.common.constants import AgentStatus, DeliveryStatus, NotificationPriority, NotificationType
from src.common.exceptions import AgentBusy, StorageError
from src.services.delivery_service.agent_repository import AgentLocationRepository
from src.services.delivery_service.notification_repository import NotificationRepository
from src.services.delivery_service.repository import (
    AgentAction,
    DeliveryFilter,
    DeliveryRepository,
    as_uuid,
)


def test_as_uuid() -> None:
    uid = uuid4()
    assert as_uuid(str(uid)) == uid
    assert as_uuid("not-a-uuid") is None


# =============================================================================
# DELIVERY REPOSITORY
# =============================================================================

class TestDeliveryRepositoryCreate:
    """Создание с идемпотентностью по order_id."""

    @pytest.mark.asyncio
    async def test_new_row(self, mock_db, delivery_row, make_request, clock) -> None:
        mock_db.conn.fetchrow.return_value = delivery_row
        repo = DeliveryRepository(mock_db)

        delivery, created = await repo.create(make_request(), clock.now + timedelta(minutes=30), clock.now)

        assert created is True
        assert delivery.order_id == "O1"
        assert delivery.pickup_location.coordinates.lat == 1.0
        query = mock_db.conn.fetchrow.call_args[0][0]
        assert "ON CONFLICT (order_id) DO NOTHING" in query

    @pytest.mark.asyncio
    async def test_duplicate_returns_existing(self, mock_db, delivery_row, make_request, clock) -> None:
        mock_db.conn.fetchrow.side_effect = [None, delivery_row]
        repo = DeliveryRepository(mock_db)

        delivery, created = await repo.create(make_request(), clock.now, clock.now)

        assert created is False
        assert delivery.id == str(delivery_row["id"])
        assert mock_db.conn.fetchrow.call_args[0][1] == "O1"

    @pytest.mark.asyncio
    async def test_vanished_row(self, mock_db, make_request, clock) -> None:
        mock_db.conn.fetchrow.side_effect = [None, None]
        repo = DeliveryRepository(mock_db)

        with pytest.raises(StorageError):
            await repo.create(make_request(), clock.now, clock.now)


class TestDeliveryRepositoryRead:
    @pytest.mark.asyncio
    async def test_get_by_id_with_bad_id_skips_query(self, mock_db) -> None:
        repo = DeliveryRepository(mock_db)

        assert await repo.get_by_id("123") is None
        mock_db.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_by_id(self, mock_db, delivery_row) -> None:
        mock_db.fetchrow.return_value = {**delivery_row, "current_lat": 1.5, "current_lng": 1.6,
                                         "current_location_updated_at": delivery_row["created_at"]}
        repo = DeliveryRepository(mock_db)

        delivery = await repo.get_by_id(str(delivery_row["id"]))

        assert delivery.current_location.lng == 1.6
        assert isinstance(mock_db.fetchrow.call_args[0][1], UUID)

    @pytest.mark.asyncio
    async def test_find_builds_filter(self, mock_db, delivery_row, clock) -> None:
        mock_db.fetch.return_value = [delivery_row]
        repo = DeliveryRepository(mock_db)
        flt = DeliveryFilter(
            statuses=[DeliveryStatus.DELIVERED],
            delivery_person_id="A1",
            delivered_since=clock.now,
        )

        result = await repo.find(flt, order_by="finished", limit=10, offset=20)

        assert len(result) == 1
        query, *params = mock_db.fetch.call_args[0]
        assert "status = ANY($1::text[])" in query
        assert "delivery_person_id = $2" in query
        assert "delivered_at >= $3" in query
        assert "COALESCE(delivered_at, cancelled_at, failed_at, updated_at) DESC" in query
        assert "LIMIT $4 OFFSET $5" in query
        assert params == [["DELIVERED"], "A1", clock.now, 10, 20]

    @pytest.mark.asyncio
    async def test_find_queue_order(self, mock_db) -> None:
        repo = DeliveryRepository(mock_db)

        await repo.find(DeliveryFilter(), order_by="queue")

        query = mock_db.fetch.call_args[0][0]
        assert "WHERE" not in query
        assert "is_priority DESC, created_at ASC" in query

    @pytest.mark.asyncio
    async def test_count(self, mock_db) -> None:
        mock_db.fetchval.return_value = 7
        repo = DeliveryRepository(mock_db)

        assert await repo.count(DeliveryFilter(delivery_person_id="A1")) == 7

    @pytest.mark.asyncio
    async def test_driver_error_becomes_storage_error(self, mock_db) -> None:
        mock_db.fetchrow.side_effect = asyncpg.InterfaceError("connection is closed")
        repo = DeliveryRepository(mock_db)

        with patch("src.infra.database.log_error", new_callable=AsyncMock):
            with pytest.raises(StorageError):
                await repo.get_by_order_id("O1")


class TestDeliveryRepositoryTransition:
    """Compare-and-set и claim/release курьера."""

    @pytest.mark.asyncio
    async def test_compare_and_set_query(self, mock_db, delivery_row, clock) -> None:
        mock_db.conn.fetchrow.return_value = {**delivery_row, "status": "PICKED_UP"}
        repo = DeliveryRepository(mock_db)

        updated = await repo.transition(
            str(delivery_row["id"]),
            DeliveryStatus.ASSIGNED,
            {"status": DeliveryStatus.PICKED_UP, "picked_up_at": clock.now},
            clock.now,
        )

        assert updated.status == DeliveryStatus.PICKED_UP
        query, *params = mock_db.conn.fetchrow.call_args[0]
        assert "WHERE id = $1 AND status = $2" in query
        assert "status = $3" in query
        assert "updated_at = $5" in query
        assert params[1:4] == ["ASSIGNED", "PICKED_UP", clock.now]

    @pytest.mark.asyncio
    async def test_lost_race_returns_none(self, mock_db, delivery_row, clock) -> None:
        mock_db.conn.fetchrow.return_value = None
        repo = DeliveryRepository(mock_db)

        result = await repo.transition(
            str(delivery_row["id"]), DeliveryStatus.PENDING_ASSIGNMENT,
            {"status": DeliveryStatus.ASSIGNED}, clock.now,
            agent_id="A1", agent_action=AgentAction.CLAIM,
        )

        assert result is None
        assert mock_db.conn.fetchrow.call_count == 1

    @pytest.mark.asyncio
    async def test_claim_busy_agent_raises(self, mock_db, delivery_row, clock) -> None:
        mock_db.conn.fetchrow.side_effect = [{**delivery_row, "status": "ASSIGNED"}, None]
        repo = DeliveryRepository(mock_db)

        with pytest.raises(AgentBusy):
            await repo.transition(
                str(delivery_row["id"]), DeliveryStatus.PENDING_ASSIGNMENT,
                {"status": DeliveryStatus.ASSIGNED, "delivery_person_id": "A1"}, clock.now,
                agent_id="A1", agent_action=AgentAction.CLAIM,
            )

        claim_query = mock_db.conn.fetchrow.call_args[0][0]
        assert "ON CONFLICT (delivery_person_id) DO UPDATE" in claim_query

    @pytest.mark.asyncio
    async def test_release_on_terminal(self, mock_db, delivery_row, clock) -> None:
        mock_db.conn.fetchrow.return_value = {**delivery_row, "status": "DELIVERED", "delivery_person_id": "A1"}
        repo = DeliveryRepository(mock_db)

        await repo.transition(
            str(delivery_row["id"]), DeliveryStatus.IN_TRANSIT,
            {"status": DeliveryStatus.DELIVERED}, clock.now,
            agent_id="A1", agent_action=AgentAction.RELEASE,
        )

        release_query, agent_id, delivery_id = mock_db.conn.execute.call_args[0]
        assert "SET status = 'AVAILABLE', delivery_id = NULL" in release_query
        assert agent_id == "A1"
        assert delivery_id == delivery_row["id"]

    @pytest.mark.asyncio
    async def test_unknown_column_rejected(self, mock_db, clock) -> None:
        repo = DeliveryRepository(mock_db)

        with pytest.raises(ValueError):
            await repo.transition(str(uuid4()), DeliveryStatus.ASSIGNED, {"order_id": "X"}, clock.now)

    @pytest.mark.asyncio
    async def test_update_tracking_only_active(self, mock_db, clock) -> None:
        repo = DeliveryRepository(mock_db)

        assert await repo.update_tracking(str(uuid4()), 1.0, 2.0, clock.now, clock.now) is None

        params = mock_db.fetchrow.call_args[0][1:]
        assert params[-1] == ["ASSIGNED", "PICKED_UP", "IN_TRANSIT"]


# =============================================================================
# AGENT LOCATIONS
# =============================================================================

class TestAgentLocationRepository:
    @pytest.mark.asyncio
    async def test_upsert_position(self, mock_db, clock) -> None:
        mock_db.fetchrow.return_value = {
            "delivery_person_id": "A1", "lat": 1.0, "lng": 2.0, "heading": 90.0, "speed": 12.0,
            "status": "BUSY", "delivery_id": uuid4(), "last_updated": clock.now,
        }
        repo = AgentLocationRepository(mock_db)

        location = await repo.upsert_position("A1", 1.0, 2.0, 90.0, 12.0, AgentStatus.AVAILABLE, clock.now)

        assert location.status == AgentStatus.BUSY
        assert isinstance(location.delivery_id, str)
        query = mock_db.fetchrow.call_args[0][0]
        assert "CASE WHEN a.delivery_id IS NOT NULL THEN a.status ELSE EXCLUDED.status END" in query

    @pytest.mark.asyncio
    async def test_get_many_empty(self, mock_db) -> None:
        repo = AgentLocationRepository(mock_db)

        assert await repo.get_many([]) == []
        mock_db.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_active(self, mock_db, clock) -> None:
        mock_db.fetch.return_value = [{
            "delivery_person_id": "A1", "lat": None, "lng": None, "heading": None, "speed": None,
            "status": "AVAILABLE", "delivery_id": None, "last_updated": clock.now,
        }]
        repo = AgentLocationRepository(mock_db)

        [agent] = await repo.list_active()

        assert agent.location is None
        assert agent.heading == 0
        assert "status <> 'OFFLINE'" in mock_db.fetch.call_args[0][0]


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class TestNotificationRepository:
    @pytest.fixture
    def notification_row(self, clock) -> dict:
        return {
            "id": uuid4(), "delivery_person_id": "A1", "target_role": None, "delivery_id": None,
            "order_id": "O1", "type": "NEW_ASSIGNMENT", "message": "hi", "is_read": False,
            "priority": "HIGH", "created_at": clock.now,
        }

    @pytest.mark.asyncio
    async def test_create(self, mock_db, notification_row) -> None:
        mock_db.fetchrow.return_value = notification_row
        repo = NotificationRepository(mock_db)

        notification = await repo.create(
            NotificationType.NEW_ASSIGNMENT, "hi", delivery_person_id="A1",
            order_id="O1", priority=NotificationPriority.HIGH,
        )

        assert notification.priority == NotificationPriority.HIGH
        params = mock_db.fetchrow.call_args[0][1:]
        assert params == ("A1", None, None, "O1", "NEW_ASSIGNMENT", "hi", "HIGH")

    @pytest.mark.asyncio
    async def test_list_includes_role_broadcasts(self, mock_db, notification_row) -> None:
        mock_db.fetch.return_value = [notification_row]
        repo = NotificationRepository(mock_db)

        await repo.list_for_agent("A1", "delivery_person", True, 20, 0)

        query, *params = mock_db.fetch.call_args[0]
        assert "delivery_person_id IS NULL AND target_role = $2" in query
        assert "is_read = FALSE" in query
        assert params == ["A1", "delivery_person", 20, 0]

    @pytest.mark.asyncio
    async def test_mark_read_owner_only(self, mock_db) -> None:
        repo = NotificationRepository(mock_db)

        assert await repo.mark_read(str(uuid4()), "A1") is None
        assert "delivery_person_id = $2" in mock_db.fetchrow.call_args[0][0]

    @pytest.mark.asyncio
    async def test_mark_all_read_parses_tag(self, mock_db) -> None:
        mock_db.execute.return_value = "UPDATE 3"
        repo = NotificationRepository(mock_db)

        assert await repo.mark_all_read("A1") == 3
