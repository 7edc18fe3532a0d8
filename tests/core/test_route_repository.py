# tests/core/test_route_repository.py
"""
Тесты репозитория маршрутов (asyncpg замокан).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import asyncpg
import pytest

from src.common.errors import (
    BusinessError,
    DuplicateEventError,
    InvalidStatusTransitionError,
    NotFoundError,
    PersistenceConflictError,
    PersistenceError,
)
from src.core.routes.models import Route
from src.core.routes.repository import RouteRepository
from src.shared.models.enums import RouteStatus
from src.shared.models.route_dto import RouteFilterRequest


@pytest.fixture
def repository(mock_db: MagicMock) -> RouteRepository:
    return RouteRepository(mock_db, conflict_retry_attempts=3, conflict_retry_delay=0)


class TestRead:
    """Чтение и создание."""

    @pytest.mark.asyncio
    async def test_get_by_id(self, repository: RouteRepository, mock_db: MagicMock,
                             sample_route_row: dict[str, Any], route_id: UUID) -> None:
        mock_db.fetchrow.return_value = sample_route_row

        route = await repository.get_by_id(route_id)

        assert route is not None
        assert route.id == route_id
        assert route.status == RouteStatus.PLANNED
        assert route.total_capacity_kg == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_get_missing(self, repository: RouteRepository, mock_db: MagicMock) -> None:
        mock_db.fetchrow.return_value = None

        assert await repository.get_by_id(uuid4()) is None

    @pytest.mark.asyncio
    async def test_create(self, repository: RouteRepository, mock_db: MagicMock,
                          sample_route_row: dict[str, Any]) -> None:
        mock_db.fetchrow.return_value = sample_route_row
        route = Route.model_validate({**sample_route_row, "status": RouteStatus.PLANNED})

        created = await repository.create(route)

        args = mock_db.fetchrow.call_args.args
        assert "INSERT INTO routes" in args[0]
        assert args[12] == "planned"
        assert created.id == route.id


class TestApplyCapacityDelta:
    """Атомарное изменение вместимости."""

    @pytest.mark.asyncio
    async def test_updates_route_and_ledger(
        self, repository: RouteRepository, mock_conn: AsyncMock,
        sample_route_row: dict[str, Any], route_id: UUID,
    ) -> None:
        mock_conn.fetchrow.return_value = sample_route_row
        booking_id = uuid4()

        change = await repository.apply_capacity_delta(
            route_id, Decimal("-400"), event_id=booking_id, event_type="booking.confirmed",
        )

        assert change.previous.available_kg == Decimal("1000.00")
        assert change.current.available_kg == Decimal("600.00")
        assert change.current.status == RouteStatus.BOOKED_PARTIAL
        assert change.status_changed is True
        assert change.booking_id == booking_id

        lock_query = mock_conn.fetchrow.call_args.args[0]
        assert "FOR UPDATE" in lock_query

        update_call, ledger_call = mock_conn.execute.call_args_list
        assert "UPDATE routes" in update_call.args[0]
        assert update_call.args[1:] == (route_id, Decimal("600.00"), Decimal("50.00"), "booked_partial")
        assert "INSERT INTO processed_events" in ledger_call.args[0]
        assert ledger_call.args[1:3] == (booking_id, "booking.confirmed")

    @pytest.mark.asyncio
    async def test_without_event_id_skips_ledger(
        self, repository: RouteRepository, mock_conn: AsyncMock,
        sample_route_row: dict[str, Any], route_id: UUID,
    ) -> None:
        mock_conn.fetchrow.return_value = sample_route_row

        await repository.apply_capacity_delta(route_id, Decimal("-1"))

        assert mock_conn.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_route(self, repository: RouteRepository, mock_conn: AsyncMock) -> None:
        mock_conn.fetchrow.return_value = None

        with pytest.raises(NotFoundError):
            await repository.apply_capacity_delta(uuid4(), Decimal("-1"))

    @pytest.mark.asyncio
    async def test_duplicate_propagates(
        self, repository: RouteRepository, mock_conn: AsyncMock,
        sample_route_row: dict[str, Any], route_id: UUID,
    ) -> None:
        mock_conn.fetchrow.return_value = sample_route_row
        mock_conn.execute.side_effect = ["UPDATE 1", asyncpg.UniqueViolationError("duplicate key")]

        with pytest.raises(DuplicateEventError):
            await repository.apply_capacity_delta(
                route_id, Decimal("-1"), event_id=uuid4(), event_type="booking.confirmed",
            )

    @pytest.mark.asyncio
    async def test_conflict_retried(
        self, repository: RouteRepository, mock_conn: AsyncMock,
        sample_route_row: dict[str, Any], route_id: UUID,
    ) -> None:
        mock_conn.fetchrow.return_value = sample_route_row
        mock_conn.execute.side_effect = [asyncpg.SerializationError("conflict"), "UPDATE 1"]

        change = await repository.apply_capacity_delta(route_id, Decimal("-100"))

        assert change.current.available_kg == Decimal("900.00")
        assert mock_conn.fetchrow.await_count == 2

    @pytest.mark.asyncio
    async def test_conflict_exhausted(
        self, repository: RouteRepository, mock_conn: AsyncMock,
        sample_route_row: dict[str, Any], route_id: UUID,
    ) -> None:
        mock_conn.fetchrow.return_value = sample_route_row
        mock_conn.execute.side_effect = asyncpg.DeadlockDetectedError("deadlock")

        with pytest.raises(PersistenceConflictError):
            await repository.apply_capacity_delta(route_id, Decimal("-100"))

        assert mock_conn.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_connection_loss_is_persistence_error(
        self, repository: RouteRepository, mock_conn: AsyncMock, route_id: UUID,
    ) -> None:
        mock_conn.fetchrow.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(PersistenceError):
            await repository.apply_capacity_delta(route_id, Decimal("-100"))


class TestTransitionStatus:
    """Переходы жизненного цикла."""

    @pytest.mark.asyncio
    async def test_allowed_transition(
        self, repository: RouteRepository, mock_conn: AsyncMock,
        sample_route_row: dict[str, Any], route_id: UUID,
    ) -> None:
        updated = {**sample_route_row, "status": "in_progress"}
        mock_conn.fetchrow.side_effect = [sample_route_row, updated]

        previous, route = await repository.transition_status(
            route_id, RouteStatus.IN_PROGRESS, [RouteStatus.PLANNED],
        )

        assert previous == RouteStatus.PLANNED
        assert route.status == RouteStatus.IN_PROGRESS
        assert mock_conn.fetchrow.call_args.args[1:] == (route_id, "in_progress")

    @pytest.mark.asyncio
    async def test_forbidden_transition(
        self, repository: RouteRepository, mock_conn: AsyncMock,
        sample_route_row: dict[str, Any], route_id: UUID,
    ) -> None:
        mock_conn.fetchrow.return_value = sample_route_row

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            await repository.transition_status(
                route_id, RouteStatus.COMPLETED, [RouteStatus.IN_PROGRESS],
            )

        assert exc_info.value.status_code == 409
        assert exc_info.value.current == "planned"
        assert exc_info.value.target == "completed"
        assert mock_conn.fetchrow.await_count == 1


class TestListRoutes:
    """Отбор маршрутов по фильтру."""

    @pytest.mark.asyncio
    async def test_without_filters(self, repository: RouteRepository, mock_db: MagicMock,
                                   sample_route_row: dict[str, Any]) -> None:
        mock_db.fetch.return_value = [sample_route_row]

        routes = await repository.list_routes(RouteFilterRequest())

        query, *args = mock_db.fetch.call_args.args
        assert "WHERE" not in query
        assert "ORDER BY created_at DESC" in query
        assert "LIMIT $1 OFFSET $2" in query
        assert args == [20, 0]
        assert [r.id for r in routes] == [sample_route_row["id"]]

    @pytest.mark.asyncio
    async def test_filters_become_numbered_conditions(self, repository: RouteRepository,
                                                      mock_db: MagicMock) -> None:
        owner_id = uuid4()
        depart_after = datetime(2030, 5, 1, tzinfo=timezone.utc)
        filters = RouteFilterRequest(
            owner_id=owner_id,
            status=RouteStatus.BOOKED_PARTIAL,
            min_capacity_kg=Decimal("250"),
            depart_after=depart_after,
            page=3,
            page_size=10,
        )

        assert await repository.list_routes(filters) == []

        query, *args = mock_db.fetch.call_args.args
        assert "owner_id = $1" in query
        assert "status = $2" in query
        assert "available_capacity_kg >= $3" in query
        assert "departure_time >= $4" in query
        assert "LIMIT $5 OFFSET $6" in query
        assert args == [owner_id, "booked_partial", Decimal("250"), depart_after, 10, 20]


class TestUpdateDetails:
    """Изменение описания маршрута."""

    @pytest.mark.asyncio
    async def test_updates_only_given_columns(
        self, repository: RouteRepository, mock_conn: AsyncMock,
        sample_route_row: dict[str, Any], route_id: UUID,
    ) -> None:
        updated = {**sample_route_row, "notes": "рампа 4", "origin_address": "Bremen"}
        mock_conn.fetchrow.side_effect = [sample_route_row, updated]

        route = await repository.update_details(
            route_id,
            {"origin_address": "Bremen", "notes": "рампа 4"},
            [RouteStatus.PLANNED],
        )

        query, *args = mock_conn.fetchrow.call_args.args
        assert "notes = $2, origin_address = $3" in query
        assert args == [route_id, "рампа 4", "Bremen"]
        assert route.origin_address == "Bremen"

    @pytest.mark.asyncio
    async def test_not_editable_status(
        self, repository: RouteRepository, mock_conn: AsyncMock,
        sample_route_row: dict[str, Any], route_id: UUID,
    ) -> None:
        mock_conn.fetchrow.return_value = {**sample_route_row, "status": "in_progress"}

        with pytest.raises(BusinessError) as exc_info:
            await repository.update_details(route_id, {"notes": "x"}, [RouteStatus.PLANNED])

        assert exc_info.value.status_code == 409
        assert mock_conn.fetchrow.await_count == 1

    @pytest.mark.asyncio
    async def test_arrival_before_stored_departure(
        self, repository: RouteRepository, mock_conn: AsyncMock,
        sample_route_row: dict[str, Any], route_id: UUID,
    ) -> None:
        mock_conn.fetchrow.return_value = sample_route_row
        too_early = sample_route_row["departure_time"] - timedelta(hours=1)

        with pytest.raises(BusinessError) as exc_info:
            await repository.update_details(route_id, {"arrival_time": too_early}, [RouteStatus.PLANNED])

        assert exc_info.value.status_code == 422
        assert mock_conn.fetchrow.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_route(self, repository: RouteRepository, mock_conn: AsyncMock) -> None:
        mock_conn.fetchrow.return_value = None

        with pytest.raises(NotFoundError):
            await repository.update_details(uuid4(), {"notes": "x"}, [RouteStatus.PLANNED])

    @pytest.mark.asyncio
    async def test_rejects_capacity_columns(self, repository: RouteRepository, mock_conn: AsyncMock) -> None:
        with pytest.raises(ValueError):
            await repository.update_details(uuid4(), {"available_capacity_kg": 0}, [RouteStatus.PLANNED])

        mock_conn.fetchrow.assert_not_called()
