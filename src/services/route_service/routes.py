# src/services/route_service/routes.py
"""
HTTP API маршрутов и обнаружения сервисов.
Ошибки домена переводятся в HTTP-ответы обработчиками в app.py.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from src.core.discovery.registry import ServiceRegistry
from src.core.resilience.circuit_breaker import CircuitBreakerRegistry
from src.core.routes.service import RouteService
from src.services.route_service.dependencies import get_breakers, get_registry, get_route_service
from src.shared.models.common import ErrorResponse
from src.shared.models.enums import RouteStatus
from src.shared.models.route_dto import (
    CreateRouteRequest,
    RouteActionRequest,
    RouteDTO,
    RouteFilterRequest,
    UpdateRouteCapacityRequest,
    UpdateRouteRequest,
)


router = APIRouter(prefix="/routes", tags=["Routes"])
discovery_router = APIRouter(prefix="/service-discovery", tags=["Service Discovery"])

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Маршрут не найден"}}


# =============================================================================
# ROUTES API
# =============================================================================

@router.get("", response_model=list[RouteDTO])
async def list_routes(
    owner_id: Optional[UUID] = None,
    truck_id: Optional[UUID] = None,
    route_status: Optional[RouteStatus] = Query(default=None, alias="status"),
    min_capacity_kg: Optional[Decimal] = Query(default=None, ge=0),
    min_capacity_m3: Optional[Decimal] = Query(default=None, ge=0),
    depart_after: Optional[datetime] = None,
    depart_before: Optional[datetime] = None,
    arrive_after: Optional[datetime] = None,
    arrive_before: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    service: RouteService = Depends(get_route_service),
):
    filters = RouteFilterRequest(
        owner_id=owner_id,
        truck_id=truck_id,
        status=route_status,
        min_capacity_kg=min_capacity_kg,
        min_capacity_m3=min_capacity_m3,
        depart_after=depart_after,
        depart_before=depart_before,
        arrive_after=arrive_after,
        arrive_before=arrive_before,
        page=page,
        page_size=page_size,
    )
    return await service.list_routes(filters)


@router.get("/{route_id}", response_model=RouteDTO, responses=_NOT_FOUND)
async def get_route(
    route_id: UUID,
    service: RouteService = Depends(get_route_service),
):
    return await service.get_route(route_id)


@router.post(
    "",
    response_model=RouteDTO,
    status_code=status.HTTP_201_CREATED,
    responses={
        403: {"model": ErrorResponse, "description": "Грузовик не принадлежит владельцу"},
        503: {"model": ErrorResponse, "description": "Сервис грузовиков недоступен"},
    },
)
async def create_route(
    request: CreateRouteRequest,
    service: RouteService = Depends(get_route_service),
):
    return await service.create_route(request)


@router.put(
    "/{route_id}",
    response_model=RouteDTO,
    responses={
        **_NOT_FOUND,
        403: {"model": ErrorResponse, "description": "Маршрут принадлежит другому владельцу"},
        409: {"model": ErrorResponse, "description": "Маршрут уже начат или закрыт"},
    },
)
async def update_route(
    route_id: UUID,
    request: UpdateRouteRequest,
    service: RouteService = Depends(get_route_service),
):
    return await service.update_route(route_id, request)


@router.patch("/{route_id}/capacity", response_model=RouteDTO, responses=_NOT_FOUND)
async def update_route_capacity(
    route_id: UUID,
    request: UpdateRouteCapacityRequest,
    service: RouteService = Depends(get_route_service),
):
    return await service.update_capacity(
        route_id,
        request.capacity_change_kg,
        request.capacity_change_m3,
        booking_id=request.booking_id,
        reason=request.reason,
    )


# =============================================================================
# ROUTE LIFECYCLE
# =============================================================================

@router.post("/{route_id}/start", response_model=RouteDTO, responses=_NOT_FOUND)
async def start_route(
    route_id: UUID,
    request: RouteActionRequest | None = None,
    service: RouteService = Depends(get_route_service),
):
    reason = request.reason if request else None
    return await service.change_status(route_id, RouteStatus.IN_PROGRESS, reason)


@router.post("/{route_id}/complete", response_model=RouteDTO, responses=_NOT_FOUND)
async def complete_route(
    route_id: UUID,
    request: RouteActionRequest | None = None,
    service: RouteService = Depends(get_route_service),
):
    reason = request.reason if request else None
    return await service.change_status(route_id, RouteStatus.COMPLETED, reason)


@router.post("/{route_id}/cancel", response_model=RouteDTO, responses=_NOT_FOUND)
async def cancel_route(
    route_id: UUID,
    request: RouteActionRequest | None = None,
    service: RouteService = Depends(get_route_service),
):
    reason = request.reason if request else None
    return await service.change_status(route_id, RouteStatus.CANCELLED, reason)


# =============================================================================
# SERVICE DISCOVERY
# =============================================================================

@discovery_router.get("/services", response_model=dict[str, str])
async def list_services(registry: ServiceRegistry = Depends(get_registry)):
    return registry.addresses()


@discovery_router.get("/services/details")
async def list_service_details(
    registry: ServiceRegistry = Depends(get_registry),
    breakers: CircuitBreakerRegistry = Depends(get_breakers),
) -> list[dict[str, Any]]:
    snapshots = breakers.snapshots()
    details = []
    for descriptor in registry.list_all():
        snapshot = snapshots.get(descriptor.name)
        details.append({
            **descriptor.model_dump(mode="json"),
            "circuit": snapshot.model_dump(mode="json") if snapshot else None,
        })
    return details


@discovery_router.get("/check/{service_name}")
async def check_service(
    service_name: str,
    registry: ServiceRegistry = Depends(get_registry),
) -> dict[str, Any]:
    available = await registry.is_available(service_name)
    return {
        "service": service_name,
        "available": available,
        "health_status": str(registry.health_of(service_name)),
    }
