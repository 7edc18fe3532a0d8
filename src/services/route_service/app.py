# src/services/route_service/app.py
"""
FastAPI приложение для Route Service.
"""

from __future__ import annotations

import math
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.common.constants import TypeMsg
from src.common.errors import (
    BusinessError,
    CircuitOpenError,
    NotFoundError,
    TransientError,
)
from src.common.logger import log_error, log_info, log_warning
from src.config import settings
from src.core.discovery.registry import get_service_registry
from src.infra.database import get_db
from src.infra.event_bus import get_event_bus
from src.services.route_service.routes import discovery_router, router
from src.shared.models.common import ErrorResponse, HealthStatus
from src.shared.models.enums import ServiceHealthStatus


_started_at = time.monotonic()


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Жизненный цикл приложения."""
    await log_info("Route Service запускается...", type_msg=TypeMsg.INFO)

    from src.services.route_service.dependencies import init_dependencies, close_dependencies
    await init_dependencies()

    await register_self()

    yield

    await close_dependencies()
    await log_info("Route Service остановлен", type_msg=TypeMsg.INFO)


# =============================================================================
# ПРИЛОЖЕНИЕ
# =============================================================================

app = FastAPI(
    title="Route Service",
    description="Маршруты грузоперевозок: вместимость и жизненный цикл",
    version=settings.system.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")
app.include_router(discovery_router, prefix="/api/v1")


# =============================================================================
# ОБРАБОТЧИКИ ОШИБОК
# =============================================================================

def _error(status_code: int, code: str, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    body = ErrorResponse(error_code=code, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, "not_found", str(exc))


@app.exception_handler(BusinessError)
async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
    await log_warning(f"{request.method} {request.url.path}: {exc}")
    return _error(exc.status_code, "business_error", str(exc))


@app.exception_handler(CircuitOpenError)
async def circuit_open_handler(request: Request, exc: CircuitOpenError) -> JSONResponse:
    await log_warning(f"{request.method} {request.url.path}: {exc}")
    return _error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "circuit_open",
        str(exc),
        headers={"Retry-After": str(math.ceil(exc.retry_after))},
    )


@app.exception_handler(TransientError)
async def transient_error_handler(request: Request, exc: TransientError) -> JSONResponse:
    await log_error(f"{request.method} {request.url.path}: {exc}")
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "service_unavailable", str(exc))


# =============================================================================
# HEALTH CHECK
# =============================================================================

def _as_health(ok: bool) -> ServiceHealthStatus:
    return ServiceHealthStatus.HEALTHY if ok else ServiceHealthStatus.UNHEALTHY


async def _dependency_statuses() -> dict[str, ServiceHealthStatus]:
    return {
        "postgres": _as_health(await get_db().health_check()),
        "rabbitmq": _as_health(await get_event_bus().health_check()),
    }


def _overall(deps: dict[str, ServiceHealthStatus]) -> ServiceHealthStatus:
    if all(state == ServiceHealthStatus.HEALTHY for state in deps.values()):
        return ServiceHealthStatus.HEALTHY
    return ServiceHealthStatus.DEGRADED


async def register_self() -> ServiceHealthStatus:
    """
    Регистрирует Route Service в реестре под SERVICE_NAME.
    Собственный HTTP ещё не принимает запросы, поэтому проверяются зависимости:
    если PostgreSQL или RabbitMQ недоступны, сервис регистрируется как DEGRADED.
    """
    deps = await _dependency_statuses()
    health = _overall(deps)
    if health != ServiceHealthStatus.HEALTHY:
        failed = ", ".join(name for name, state in deps.items() if state != ServiceHealthStatus.HEALTHY)
        await log_warning(f"Самостоятельная регистрация со статусом {health}, недоступны: {failed}")

    await get_service_registry().register(
        settings.deployment.SERVICE_NAME,
        settings.deployment.ROUTE_SERVICE_PUBLIC_URL,
        health,
    )
    return health


@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    deps = await _dependency_statuses()

    return HealthStatus(
        service=settings.deployment.SERVICE_NAME,
        status=_overall(deps),
        version=settings.system.VERSION,
        uptime_seconds=round(time.monotonic() - _started_at, 3),
        dependencies=deps,
    )
