# src/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели для межсервисного взаимодействия.
"""

from src.shared.models.enums import (
    RouteStatus,
    ServiceHealthStatus,
    CircuitState,
)
from src.shared.models.route_dto import (
    RouteDTO,
    CreateRouteRequest,
    UpdateRouteCapacityRequest,
    UpdateRouteRequest,
    RouteFilterRequest,
    RouteActionRequest,
    TruckCapacity,
)
from src.shared.models.common import (
    ErrorResponse,
    HealthStatus,
)

__all__ = [
    # Enums
    "RouteStatus",
    "ServiceHealthStatus",
    "CircuitState",
    # Route
    "RouteDTO",
    "CreateRouteRequest",
    "UpdateRouteCapacityRequest",
    "UpdateRouteRequest",
    "RouteFilterRequest",
    "RouteActionRequest",
    "TruckCapacity",
    # Common
    "ErrorResponse",
    "HealthStatus",
]
