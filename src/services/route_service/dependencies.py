# src/services/route_service/dependencies.py
"""
Зависимости для Route Service.
Объекты процесса создаются один раз в lifespan и отдаются через Depends.
"""

from __future__ import annotations

from typing import Optional

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.core.discovery.registry import ServiceRegistry, get_service_registry, reset_service_registry
from src.core.resilience.circuit_breaker import CircuitBreakerRegistry
from src.core.resilience.client import close_resilient_client, get_resilient_client
from src.core.routes.repository import RouteRepository
from src.core.routes.service import RouteService
from src.infra.database import close_db, get_db, init_db
from src.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from src.services.route_service.clients import TruckServiceClient, UserServiceClient


_route_service: Optional[RouteService] = None


async def init_dependencies() -> None:
    """Инициализация всех зависимостей сервиса."""
    global _route_service

    from src.config import settings

    await init_db()
    await init_event_bus()

    client = get_resilient_client()
    fail_open = settings.resilience.PEER_FAIL_OPEN

    repository = RouteRepository(
        get_db(),
        conflict_retry_attempts=settings.database.DB_CONFLICT_RETRY_ATTEMPTS,
        conflict_retry_delay=settings.database.DB_CONFLICT_RETRY_DELAY,
    )
    _route_service = RouteService(
        repository,
        get_event_bus(),
        truck_client=TruckServiceClient(client, fail_open=fail_open),
        user_client=UserServiceClient(client, fail_open=fail_open),
        source_service=settings.deployment.SERVICE_NAME,
    )

    await log_info("Route Service инициализирован", type_msg=TypeMsg.INFO)


async def close_dependencies() -> None:
    """Закрытие всех ресурсов."""
    global _route_service

    _route_service = None
    await close_resilient_client()
    reset_service_registry()
    await close_event_bus()
    await close_db()


def get_route_service() -> RouteService:
    if _route_service is None:
        raise RuntimeError("RouteService не инициализирован")
    return _route_service


def get_registry() -> ServiceRegistry:
    return get_service_registry()


def get_breakers() -> CircuitBreakerRegistry:
    return get_resilient_client().breakers
