# src/worker/capacity.py
"""
Воркер вместимости маршрутов.
Применяет подтверждения и отмены бронирований к свободной вместимости.
"""

from __future__ import annotations

from typing import Dict, Optional

from src.worker.base import BaseWorker
from src.common.constants import EventTypes, TypeMsg
from src.common.logger import log_info
from src.core.routes.repository import RouteRepository
from src.core.routes.service import RouteService
from src.infra.database import DatabaseManager
from src.infra.event_bus import EventBus, HandlerEntry
from src.shared.events.booking_events import BookingCancelled, BookingConfirmed, BookingEvent


class BookingCapacityWorker(BaseWorker):
    """
    Воркер вместимости.
    Подписывается на BOOKING_CONFIRMED и BOOKING_CANCELLED.
    """

    def __init__(
        self,
        route_service: Optional[RouteService] = None,
        event_bus: Optional[EventBus] = None,
        db: Optional[DatabaseManager] = None,
    ) -> None:
        super().__init__(event_bus=event_bus, db=db)

        if route_service is None:
            from src.config import settings

            repository = RouteRepository(
                self.db,
                conflict_retry_attempts=settings.database.DB_CONFLICT_RETRY_ATTEMPTS,
                conflict_retry_delay=settings.database.DB_CONFLICT_RETRY_DELAY,
            )
            route_service = RouteService(
                repository,
                self.event_bus,
                source_service=settings.deployment.SERVICE_NAME,
            )
        self.route_service = route_service

    @property
    def name(self) -> str:
        return "BookingCapacityWorker"

    @property
    def handlers(self) -> Dict[str, HandlerEntry]:
        return {
            EventTypes.BOOKING_CONFIRMED: (BookingConfirmed, self.handle_booking),
            EventTypes.BOOKING_CANCELLED: (BookingCancelled, self.handle_booking),
        }

    async def handle_booking(self, event: BookingEvent) -> None:
        """Обрабатывает подтверждение или отмену бронирования."""
        change = await self.route_service.apply_booking_event(event)
        if change is None:
            return

        await log_info(
            f"Бронирование {event.booking_id} ({event.event_type}) применено к маршруту {event.route_id}",
            type_msg=TypeMsg.INFO,
        )
