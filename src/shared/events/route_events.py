# src/shared/events/route_events.py
"""
События домена маршрутов, публикуемые после изменения вместимости или статуса.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal
from uuid import UUID

from src.common.constants import EventTypes
from src.shared.events.base import DomainEvent
from src.shared.models.enums import RouteStatus


class RouteCapacityChanged(DomainEvent):
    """Событие: доступная вместимость маршрута изменилась."""

    event_type: Literal["route.capacity_changed"] = EventTypes.ROUTE_CAPACITY_CHANGED

    route_id: UUID
    previous_capacity_kg: Decimal
    new_capacity_kg: Decimal
    previous_capacity_m3: Decimal | None = None
    new_capacity_m3: Decimal | None = None
    booking_id: UUID | None = None


class RouteStatusUpdated(DomainEvent):
    """Событие: статус маршрута изменился."""

    event_type: Literal["route.status_updated"] = EventTypes.ROUTE_STATUS_UPDATED

    route_id: UUID
    previous_status: RouteStatus
    new_status: RouteStatus
    reason: str | None = None


class RouteUpdated(DomainEvent):
    """Событие: изменено описание маршрута (адреса, время, заметки)."""

    event_type: Literal["route.updated"] = EventTypes.ROUTE_UPDATED

    route_id: UUID
    changed_fields: list[str]
