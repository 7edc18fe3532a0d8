# src/shared/events/__init__.py
"""
Схемы событий для RabbitMQ.

События разделены по доменам:
- booking_events: подтверждение и отмена бронирования (входящие)
- route_events: изменение вместимости, статуса и описания маршрута (исходящие)
"""

from src.shared.events.base import DomainEvent, EventMetadata
from src.shared.events.booking_events import (
    BookingEvent,
    BookingConfirmed,
    BookingCancelled,
)
from src.shared.events.route_events import (
    RouteCapacityChanged,
    RouteStatusUpdated,
    RouteUpdated,
)

__all__ = [
    # Base
    "DomainEvent",
    "EventMetadata",
    # Booking events
    "BookingEvent",
    "BookingConfirmed",
    "BookingCancelled",
    # Route events
    "RouteCapacityChanged",
    "RouteStatusUpdated",
    "RouteUpdated",
]
