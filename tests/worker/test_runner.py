# tests/worker/test_runner.py
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from src.worker.runner import run_workers


@pytest.fixture
def mock_infra():
    with patch("src.worker.runner.init_db", new_callable=AsyncMock) as mock_init_db, \
         patch("src.worker.runner.close_db", new_callable=AsyncMock) as mock_close_db, \
         patch("src.worker.runner.init_event_bus", new_callable=AsyncMock) as mock_init_event_bus, \
         patch("src.worker.runner.close_event_bus", new_callable=AsyncMock) as mock_close_event_bus:
        yield {
            "init_db": mock_init_db,
            "close_db": mock_close_db,
            "init_event_bus": mock_init_event_bus,
            "close_event_bus": mock_close_event_bus,
        }


@pytest.fixture
def mock_workers():
    with patch("src.worker.runner.BookingCapacityWorker") as MockCapacity:
        capacity_instance = MockCapacity.return_value
        capacity_instance.start = AsyncMock()
        capacity_instance.name = "booking_capacity"
        capacity_instance.stop = AsyncMock()

        yield {
            "capacity": capacity_instance,
        }


@pytest.mark.asyncio
async def test_run_workers_success(mock_infra, mock_workers):
    # Цикл ожидания прерывается сразу
    with patch("src.worker.runner.asyncio.sleep", side_effect=asyncio.CancelledError):
        await run_workers()

    mock_infra["init_db"].assert_called_once()
    mock_infra["init_event_bus"].assert_called_once()

    mock_workers["capacity"].start.assert_called_once()
    mock_workers["capacity"].stop.assert_called_once()

    mock_infra["close_event_bus"].assert_called_once()
    mock_infra["close_db"].assert_called_once()


@pytest.mark.asyncio
async def test_run_workers_without_infra(mock_infra, mock_workers):
    with patch("src.worker.runner.asyncio.sleep", side_effect=asyncio.CancelledError):
        await run_workers(init_infra=False)

    mock_infra["init_db"].assert_not_called()
    mock_infra["close_db"].assert_not_called()
    mock_workers["capacity"].stop.assert_called_once()


@pytest.mark.asyncio
async def test_run_workers_init_error(mock_infra, mock_workers):
    mock_infra["init_db"].side_effect = Exception("Init error")

    with pytest.raises(Exception, match="Init error"):
        await run_workers()

    # Инициализация упала до запуска воркеров
    mock_workers["capacity"].start.assert_not_called()


@pytest.mark.asyncio
async def test_run_workers_start_failure_propagates(mock_infra, mock_workers):
    """Сбой подписки не глотается: инфраструктура закрывается, ошибка уходит наверх."""
    mock_workers["capacity"].start.side_effect = RuntimeError("subscribe failed")

    with pytest.raises(RuntimeError, match="subscribe failed"):
        await run_workers()

    # Воркер не успел запуститься, останавливать нечего
    mock_workers["capacity"].stop.assert_not_called()
    mock_infra["close_event_bus"].assert_called_once()
    mock_infra["close_db"].assert_called_once()
