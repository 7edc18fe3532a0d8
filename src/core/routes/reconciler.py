# src/core/routes/reconciler.py
"""
Пересчёт вместимости и статуса маршрута.

Чистые функции без ввода-вывода. Знак изменения задаёт вызывающий код:
подтверждение бронирования уменьшает свободное место, отмена увеличивает.

Правила статуса:
- COMPLETED и CANCELLED не меняются никогда
- все учитываемые измерения <= EPSILON -> BOOKED_FULL (кроме IN_PROGRESS)
- хотя бы одно измерение меньше полного -> BOOKED_PARTIAL (кроме IN_PROGRESS)
- вся вместимость свободна -> PLANNED, только если маршрут был забронирован
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from src.core.routes.models import CapacityState
from src.shared.events.booking_events import BookingCancelled, BookingConfirmed, BookingEvent
from src.shared.models.enums import RouteStatus


EPSILON = Decimal("0.01")
ZERO = Decimal("0")

_BOOKED = (RouteStatus.BOOKED_FULL, RouteStatus.BOOKED_PARTIAL)


def _clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(value, high))


def derive_status(
    prior: RouteStatus,
    total_kg: Decimal,
    available_kg: Decimal,
    total_m3: Optional[Decimal],
    available_m3: Optional[Decimal],
) -> RouteStatus:
    """
    Вычисляет статус маршрута по вместимости.

    Объём учитывается, только если задан total_m3. Неизвестный available_m3
    при заданном total_m3 считается полностью свободным.
    """
    if prior.is_terminal:
        return prior

    tracks_m3 = total_m3 is not None
    effective_m3 = available_m3 if available_m3 is not None else total_m3

    is_full = available_kg <= EPSILON and (not tracks_m3 or effective_m3 <= EPSILON)
    if is_full:
        return prior if prior == RouteStatus.IN_PROGRESS else RouteStatus.BOOKED_FULL

    is_partial = available_kg < total_kg or (tracks_m3 and effective_m3 < total_m3)
    if is_partial:
        return prior if prior == RouteStatus.IN_PROGRESS else RouteStatus.BOOKED_PARTIAL

    if prior in _BOOKED:
        return RouteStatus.PLANNED
    return prior


def reconcile(
    current: CapacityState,
    delta_kg: Decimal,
    delta_m3: Optional[Decimal] = None,
) -> CapacityState:
    """
    Применяет изменение вместимости и пересчитывает статус.

    Args:
        current: Текущая вместимость маршрута
        delta_kg: Изменение свободного веса (отрицательное занимает место)
        delta_m3: Изменение свободного объёма (None: объём не меняется)

    Returns:
        Новое состояние; свободное место ограничено диапазоном [0, total]
    """
    available_kg = _clamp(current.available_kg + delta_kg, ZERO, current.total_kg)

    if current.total_m3 is None:
        available_m3 = None
    elif delta_m3 is not None:
        available_m3 = _clamp((current.available_m3 or ZERO) + delta_m3, ZERO, current.total_m3)
    else:
        available_m3 = current.available_m3

    status = derive_status(
        current.status,
        current.total_kg,
        available_kg,
        current.total_m3,
        available_m3,
    )

    return CapacityState(
        total_kg=current.total_kg,
        available_kg=available_kg,
        total_m3=current.total_m3,
        available_m3=available_m3,
        status=status,
    )


def capacity_delta_for(event: BookingEvent) -> tuple[Decimal, Optional[Decimal]]:
    """
    Знаковое изменение вместимости для события бронирования.

    Returns:
        (delta_kg, delta_m3): отрицательные для подтверждения, положительные для отмены
    """
    if isinstance(event, BookingConfirmed):
        sign = Decimal(-1)
    elif isinstance(event, BookingCancelled):
        sign = Decimal(1)
    else:
        raise TypeError(f"Неизвестный тип события бронирования: {type(event).__name__}")

    delta_m3 = sign * event.booked_volume_m3 if event.booked_volume_m3 is not None else None
    return sign * event.booked_weight_kg, delta_m3
