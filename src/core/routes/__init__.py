# src/core/routes/__init__.py
"""
Домен маршрутов.
Вместимость, статусы, журнал обработанных событий.
"""

from src.core.routes.models import CapacityState, CapacityChange, Route
from src.core.routes.reconciler import EPSILON, reconcile, derive_status, capacity_delta_for
from src.core.routes.ledger import IdempotencyLedger
from src.core.routes.repository import RouteRepository
from src.core.routes.service import RouteService, LIFECYCLE_TRANSITIONS

__all__ = [
    "CapacityState",
    "CapacityChange",
    "Route",
    "EPSILON",
    "reconcile",
    "derive_status",
    "capacity_delta_for",
    "IdempotencyLedger",
    "RouteRepository",
    "RouteService",
    "LIFECYCLE_TRANSITIONS",
]
