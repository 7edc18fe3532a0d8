# tests/worker/test_capacity_worker.py
"""
Тесты для воркера вместимости и базового воркера.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from src.common.errors import TransientError
from src.core.routes.repository import RouteRepository
from src.core.routes.service import RouteService
from src.infra.event_bus import EventBus
from src.shared.events.booking_events import BookingCancelled, BookingConfirmed
from src.worker.capacity import BookingCapacityWorker


@pytest.fixture
def route_service():
    service = MagicMock()
    service.apply_booking_event = AsyncMock(return_value=MagicMock())
    return service


@pytest.fixture
def worker(route_service, mock_event_bus, mock_db):
    return BookingCapacityWorker(route_service=route_service, event_bus=mock_event_bus, db=mock_db)


def _confirmed() -> BookingConfirmed:
    return BookingConfirmed(booking_id=uuid4(), route_id=uuid4(), booked_weight_kg=Decimal("250"))


def test_handlers_table(worker):
    handlers = worker.handlers

    assert set(handlers) == {"booking.confirmed", "booking.cancelled"}
    assert handlers["booking.confirmed"][0] is BookingConfirmed
    assert handlers["booking.cancelled"][0] is BookingCancelled
    assert worker.name == "BookingCapacityWorker"


@pytest.mark.asyncio
async def test_start_subscribes_each_event(worker, mock_event_bus):
    await worker.start()

    assert worker.is_running is True
    assert mock_event_bus.subscribe.await_count == 2
    subscribed = {c.kwargs["event_type"]: c.kwargs["model"] for c in mock_event_bus.subscribe.call_args_list}
    assert subscribed == {
        "booking.confirmed": BookingConfirmed,
        "booking.cancelled": BookingCancelled,
    }


@pytest.mark.asyncio
async def test_start_twice_subscribes_once(worker, mock_event_bus):
    await worker.start()
    await worker.start()

    assert mock_event_bus.subscribe.await_count == 2


@pytest.mark.asyncio
async def test_guarded_handler_calls_service(worker, mock_event_bus, route_service):
    await worker.start()
    handler = mock_event_bus.subscribe.call_args_list[0].kwargs["handler"]
    event = _confirmed()

    await handler(event)

    route_service.apply_booking_event.assert_awaited_once_with(event)
    assert handler.__qualname__ == "BookingCapacityWorker.handle_booking"


@pytest.mark.asyncio
async def test_stopped_worker_requeues(worker, mock_event_bus, route_service):
    await worker.start()
    handler = mock_event_bus.subscribe.call_args_list[0].kwargs["handler"]
    await worker.stop()

    with pytest.raises(TransientError):
        await handler(_confirmed())

    route_service.apply_booking_event.assert_not_called()
    assert worker.is_running is False


@pytest.mark.asyncio
async def test_duplicate_event_is_quiet(worker, route_service):
    route_service.apply_booking_event.return_value = None

    await worker.handle_booking(_confirmed())

    route_service.apply_booking_event.assert_awaited_once()


@pytest.mark.asyncio
async def test_service_errors_propagate(worker, route_service):
    route_service.apply_booking_event.side_effect = TransientError("db down")

    with pytest.raises(TransientError):
        await worker.handle_booking(_confirmed())


@pytest.mark.asyncio
async def test_ledger_timeout_requeues_message(mock_event_bus, mock_db):
    """Таймаут чтения журнала возвращает сообщение в очередь, маршрут не меняется."""
    mock_db.fetchval.side_effect = asyncio.TimeoutError()
    repository = RouteRepository(mock_db)
    service = RouteService(repository, mock_event_bus, source_service="route_service")
    worker = BookingCapacityWorker(route_service=service, event_bus=mock_event_bus, db=mock_db)
    await worker.start()
    handler = mock_event_bus.subscribe.call_args_list[0].kwargs["handler"]

    EventBus._instance = None
    bus = EventBus()
    bus._handlers["booking.confirmed"] = [(BookingConfirmed, handler)]
    try:
        assert await bus.dispatch("booking.confirmed", _confirmed().to_json().encode()) is False
    finally:
        EventBus._instance = None

    mock_event_bus.publish.assert_not_called()
