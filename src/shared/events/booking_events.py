# src/shared/events/booking_events.py
"""
События домена бронирований, которые потребляет сервис маршрутов.

Ключ идемпотентности: booking_id в паре с типом события:
подтверждение и отмена одного бронирования являются разными операциями.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import Field

from src.common.constants import EventTypes
from src.shared.events.base import DomainEvent


class BookingEvent(DomainEvent):
    """Общие поля событий бронирования."""

    booking_id: UUID
    route_id: UUID
    booked_weight_kg: Decimal = Field(ge=0)
    booked_volume_m3: Decimal | None = Field(default=None, ge=0)

    shipment_id: UUID | None = None
    shipper_id: UUID | None = None
    truck_owner_id: UUID | None = None

    @property
    def idempotency_key(self) -> UUID:
        """Идентификатор для журнала обработанных событий."""
        return self.booking_id


class BookingConfirmed(BookingEvent):
    """Событие: бронирование подтверждено (место на маршруте занято)."""

    event_type: Literal["booking.confirmed"] = EventTypes.BOOKING_CONFIRMED


class BookingCancelled(BookingEvent):
    """Событие: бронирование отменено (место на маршруте освобождено)."""

    event_type: Literal["booking.cancelled"] = EventTypes.BOOKING_CANCELLED
    reason: str | None = None
