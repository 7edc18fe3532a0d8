# src/core/routes/service.py
"""
Сервис маршрутов: бизнес-логика вместимости и жизненного цикла.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from src.common.constants import TypeMsg
from src.common.errors import BusinessError, DuplicateEventError, NotFoundError
from src.common.logger import log_info
from src.core.routes.models import CapacityChange, CapacityState, Route
from src.core.routes.reconciler import capacity_delta_for
from src.core.routes.repository import RouteRepository
from src.infra.event_bus import EventBus
from src.shared.events.base import EventMetadata
from src.shared.events.booking_events import BookingEvent
from src.shared.events.route_events import RouteCapacityChanged, RouteStatusUpdated, RouteUpdated
from src.shared.models.enums import RouteStatus
from src.shared.models.route_dto import CreateRouteRequest, RouteFilterRequest, UpdateRouteRequest

if TYPE_CHECKING:
    from src.services.route_service.clients import TruckServiceClient, UserServiceClient


# Тип операции в журнале для ручного изменения вместимости
MANUAL_CAPACITY_OPERATION = "route.capacity_manual"

_ACTIVE = (RouteStatus.PLANNED, RouteStatus.BOOKED_PARTIAL, RouteStatus.BOOKED_FULL)

# Явные переходы жизненного цикла: целевой статус -> допустимые исходные
LIFECYCLE_TRANSITIONS: dict[RouteStatus, tuple[RouteStatus, ...]] = {
    RouteStatus.IN_PROGRESS: _ACTIVE,
    RouteStatus.COMPLETED: (RouteStatus.IN_PROGRESS,),
    RouteStatus.CANCELLED: _ACTIVE,
}


class RouteService:
    """Сервис маршрутов."""

    def __init__(
        self,
        repository: RouteRepository,
        event_bus: EventBus,
        truck_client: Optional["TruckServiceClient"] = None,
        source_service: str = "route_service",
        user_client: Optional["UserServiceClient"] = None,
    ) -> None:
        """
        Args:
            repository: Репозиторий маршрутов
            event_bus: Шина событий
            truck_client: Клиент сервиса грузовиков (нужен для создания маршрутов)
            source_service: Имя сервиса в метаданных публикуемых событий
            user_client: Клиент сервиса пользователей (проверка активности владельца)
        """
        self._repository = repository
        self._event_bus = event_bus
        self._truck_client = truck_client
        self._user_client = user_client
        self._source_service = source_service

    # =========================================================================
    # СОБЫТИЯ БРОНИРОВАНИЯ
    # =========================================================================

    async def apply_booking_event(self, event: BookingEvent) -> Optional[CapacityChange]:
        """
        Применяет событие бронирования ровно один раз.

        Returns:
            Изменение вместимости или None, если событие уже обработано

        Raises:
            NotFoundError: маршрут не найден
            TransientError: сбой хранилища, событие нужно доставить повторно
        """
        key = event.idempotency_key

        if await self._repository.ledger.has_processed(key, event.event_type):
            await log_info(
                f"Событие {event.event_type} для бронирования {key} уже обработано, пропуск",
                type_msg=TypeMsg.DEBUG,
            )
            return None

        delta_kg, delta_m3 = capacity_delta_for(event)
        return await self.apply_booking_delta(
            event.route_id,
            delta_kg,
            delta_m3,
            booking_id=key,
            operation=event.event_type,
            reason=event.event_type,
            causation_id=event.event_id,
            correlation_id=event.metadata.correlation_id,
        )

    async def apply_booking_delta(
        self,
        route_id: UUID,
        delta_kg: Decimal,
        delta_m3: Optional[Decimal] = None,
        *,
        booking_id: Optional[UUID] = None,
        operation: str = MANUAL_CAPACITY_OPERATION,
        reason: Optional[str] = None,
        causation_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Optional[CapacityChange]:
        """
        Атомарно изменяет вместимость маршрута и публикует производные события.

        Если передан booking_id, изменение защищено журналом обработанных событий.

        Returns:
            Изменение вместимости или None для конкурентного дубля
        """
        try:
            change = await self._repository.apply_capacity_delta(
                route_id,
                delta_kg,
                delta_m3,
                event_id=booking_id,
                event_type=operation if booking_id is not None else None,
            )
        except DuplicateEventError:
            await log_info(
                f"Операция {operation} для бронирования {booking_id} уже зафиксирована конкурентно",
                type_msg=TypeMsg.DEBUG,
            )
            return None

        await log_info(
            f"Маршрут {route_id}: свободно {change.previous.available_kg} -> {change.current.available_kg} кг, "
            f"статус {change.previous.status} -> {change.current.status}",
            type_msg=TypeMsg.INFO,
        )
        await self._publish_change(change, reason, causation_id, correlation_id)
        return change

    async def update_capacity(
        self,
        route_id: UUID,
        capacity_change_kg: Decimal,
        capacity_change_m3: Optional[Decimal] = None,
        *,
        booking_id: Optional[UUID] = None,
        reason: Optional[str] = None,
    ) -> Route:
        """Ручное изменение вместимости через API. Возвращает актуальный маршрут."""
        await self.apply_booking_delta(
            route_id,
            capacity_change_kg,
            capacity_change_m3,
            booking_id=booking_id,
            reason=reason or MANUAL_CAPACITY_OPERATION,
        )
        return await self.get_route(route_id)

    async def _publish_change(
        self,
        change: CapacityChange,
        reason: Optional[str],
        causation_id: Optional[str],
        correlation_id: Optional[str],
    ) -> None:
        """Публикует RouteCapacityChanged всегда и RouteStatusUpdated при смене статуса."""
        await self._event_bus.publish(
            RouteCapacityChanged(
                metadata=self._metadata(causation_id, correlation_id),
                route_id=change.route_id,
                previous_capacity_kg=change.previous.available_kg,
                new_capacity_kg=change.current.available_kg,
                previous_capacity_m3=change.previous.available_m3,
                new_capacity_m3=change.current.available_m3,
                booking_id=change.booking_id,
            )
        )

        if change.status_changed:
            await self._event_bus.publish(
                RouteStatusUpdated(
                    metadata=self._metadata(causation_id, correlation_id),
                    route_id=change.route_id,
                    previous_status=change.previous.status,
                    new_status=change.current.status,
                    reason=reason,
                )
            )

    def _metadata(self, causation_id: Optional[str], correlation_id: Optional[str]) -> EventMetadata:
        return EventMetadata(
            source_service=self._source_service,
            causation_id=causation_id,
            correlation_id=correlation_id,
        )

    # =========================================================================
    # МАРШРУТЫ
    # =========================================================================

    async def get_route(self, route_id: UUID) -> Route:
        """
        Raises:
            NotFoundError: маршрут не найден
        """
        route = await self._repository.get_by_id(route_id)
        if route is None:
            raise NotFoundError(f"Маршрут {route_id} не найден", key=route_id)
        return route

    async def create_route(self, request: CreateRouteRequest) -> Route:
        """
        Создаёт маршрут: проверяет владение грузовиком и берёт его вместимость
        из сервиса грузовиков. Новый маршрут полностью свободен.

        Raises:
            BusinessError: грузовик не принадлежит владельцу или без вместимости
            TransientCallError, CircuitOpenError: сервис грузовиков недоступен
        """
        if self._truck_client is None:
            raise RuntimeError("TruckServiceClient не передан в RouteService")

        if self._user_client is not None and not await self._user_client.validate_user_active(request.owner_id):
            raise BusinessError(
                f"Владелец {request.owner_id} не активен или не имеет роли владельца грузовика",
                status_code=403,
            )

        if not await self._truck_client.verify_truck_ownership(request.truck_id, request.owner_id):
            raise BusinessError(
                f"Владелец {request.owner_id} не владеет грузовиком {request.truck_id}",
                status_code=403,
            )

        capacity = await self._truck_client.get_truck_capacity(request.truck_id)
        if capacity is None or capacity.capacity_kg <= 0:
            raise BusinessError(
                f"Не удалось получить вместимость грузовика {request.truck_id}",
                status_code=422,
            )

        state = CapacityState.full(capacity.capacity_kg, capacity.capacity_m3)
        route = Route(
            truck_id=request.truck_id,
            owner_id=request.owner_id,
            origin_address=request.origin_address,
            destination_address=request.destination_address,
            departure_time=request.departure_time,
            arrival_time=request.arrival_time,
            total_capacity_kg=state.total_kg,
            available_capacity_kg=state.available_kg,
            total_capacity_m3=state.total_m3,
            available_capacity_m3=state.available_m3,
            status=state.status,
            notes=request.notes,
        )
        return await self._repository.create(route)

    async def list_routes(self, filters: RouteFilterRequest) -> list[Route]:
        """Страница маршрутов по фильтру."""
        return await self._repository.list_routes(filters)

    async def update_route(self, route_id: UUID, request: UpdateRouteRequest) -> Route:
        """
        Изменяет описание маршрута от имени владельца грузовика.
        Редактировать можно только маршрут, который ещё не начат.

        Raises:
            NotFoundError: маршрут не найден
            BusinessError: владелец не подтверждён (403), статус не позволяет (409),
                прибытие не позже отправления (422)
        """
        if self._truck_client is None:
            raise RuntimeError("TruckServiceClient не передан в RouteService")

        route = await self.get_route(route_id)
        if not await self._truck_client.verify_truck_ownership(route.truck_id, request.owner_id):
            raise BusinessError(
                f"Владелец {request.owner_id} не может изменять маршрут {route_id}",
                status_code=403,
            )

        changes = request.changes()
        updated = await self._repository.update_details(route_id, changes, _ACTIVE)

        await log_info(f"Маршрут {route_id} изменён: {sorted(changes)}", type_msg=TypeMsg.INFO)
        await self._event_bus.publish(
            RouteUpdated(
                metadata=self._metadata(None, None),
                route_id=route_id,
                changed_fields=sorted(changes),
            )
        )
        return updated

    async def change_status(
        self,
        route_id: UUID,
        target: RouteStatus,
        reason: Optional[str] = None,
    ) -> Route:
        """
        Явный переход жизненного цикла (старт, завершение, отмена).

        Raises:
            NotFoundError: маршрут не найден
            InvalidStatusTransitionError: переход запрещён
        """
        allowed = LIFECYCLE_TRANSITIONS.get(target)
        if allowed is None:
            raise BusinessError(f"Статус {target} нельзя установить вручную", status_code=400)

        previous, route = await self._repository.transition_status(route_id, target, allowed)

        await log_info(f"Маршрут {route_id}: {previous} -> {target}", type_msg=TypeMsg.INFO)
        await self._event_bus.publish(
            RouteStatusUpdated(
                metadata=self._metadata(None, None),
                route_id=route_id,
                previous_status=previous,
                new_status=target,
                reason=reason,
            )
        )
        return route
