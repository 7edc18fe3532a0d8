# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("RABBITMQ_PASSWORD", "guest")


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "test",
        "PROJECT_NAME": "freight_route_service_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "SERVICE_NAME": "route_service",
        "ROUTE_SERVICE_PORT": 9083,
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "json",
        "DB_HOST": "db.local",
        "DB_PORT": 5433,
        "DB_NAME": "routes_test",
        "DB_USER": "tester",
        "DB_PASSWORD": "secret",
        "DB_CONFLICT_RETRY_ATTEMPTS": 5,
        "RABBITMQ_HOST": "mq.local",
        "RABBITMQ_PORT": 5673,
        "RABBITMQ_USER": "user",
        "RABBITMQ_PASSWORD": "pass",
        "RABBITMQ_VHOST": "/freight",
        "RABBITMQ_EXCHANGE": "freight.test",
        "SERVICE_REGISTRY": {
            "truck_service": "http://truck:8082",
            "user_service": "http://user:8081",
        },
        "HEALTH_CHECK_TIMEOUT": 1.5,
        "RETRY_COUNT": 2,
        "RETRY_BACKOFF_BASE": 1.5,
        "REQUEST_TIMEOUT": 3.0,
        "CIRCUIT_FAILURE_THRESHOLD": 4,
        "CIRCUIT_BREAK_DURATION": 15.0,
        "TRANSIENT_STATUS_CODES": [408, 429],
        "PEER_FAIL_OPEN": False,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_conn() -> AsyncMock:
    """Мок соединения asyncpg внутри транзакции."""
    conn = AsyncMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value="UPDATE 1")
    return conn


@pytest.fixture
def mock_db(mock_conn: AsyncMock) -> MagicMock:
    """Мок менеджера базы данных; transaction() отдаёт mock_conn."""
    db = MagicMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    db.health_check = AsyncMock(return_value=True)

    @asynccontextmanager
    async def transaction():
        yield mock_conn

    db.transaction = transaction
    return db


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.subscribe = AsyncMock(return_value=None)
    event_bus.health_check = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def route_id() -> UUID:
    return uuid4()


@pytest.fixture
def sample_route_row(route_id: UUID) -> dict[str, Any]:
    """Строка таблицы routes: 1000 кг, 50 м3, полностью свободен."""
    now = datetime.now(timezone.utc)
    return {
        "id": route_id,
        "truck_id": uuid4(),
        "owner_id": uuid4(),
        "origin_address": "Hamburg, Hafenstraße 1",
        "destination_address": "Berlin, Alexanderplatz 5",
        "departure_time": now,
        "arrival_time": now + timedelta(hours=6),
        "total_capacity_kg": Decimal("1000.00"),
        "available_capacity_kg": Decimal("1000.00"),
        "total_capacity_m3": Decimal("50.00"),
        "available_capacity_m3": Decimal("50.00"),
        "status": "planned",
        "notes": None,
        "created_at": now,
        "updated_at": now,
    }
