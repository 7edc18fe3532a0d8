# src/core/routes/models.py
"""
Модели данных маршрутов.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.shared.models.enums import RouteStatus


class CapacityState(BaseModel):
    """Вместимость маршрута и производный от неё статус."""

    model_config = ConfigDict(frozen=True)

    total_kg: Decimal = Field(..., ge=0, description="Полная грузоподъёмность, кг")
    available_kg: Decimal = Field(..., ge=0, description="Свободно, кг")
    total_m3: Optional[Decimal] = Field(None, ge=0, description="Полный объём, м3")
    available_m3: Optional[Decimal] = Field(None, ge=0, description="Свободно, м3")
    status: RouteStatus = RouteStatus.PLANNED

    @model_validator(mode="after")
    def check_bounds(self) -> "CapacityState":
        if self.available_kg > self.total_kg:
            raise ValueError("available_kg не может превышать total_kg")
        if self.total_m3 is not None and self.available_m3 is not None:
            if self.available_m3 > self.total_m3:
                raise ValueError("available_m3 не может превышать total_m3")
        return self

    @classmethod
    def full(cls, total_kg: Decimal, total_m3: Optional[Decimal] = None) -> "CapacityState":
        """Свободный маршрут со всей вместимостью."""
        return cls(
            total_kg=total_kg,
            available_kg=total_kg,
            total_m3=total_m3,
            available_m3=total_m3,
            status=RouteStatus.PLANNED,
        )


class Route(BaseModel):
    """Модель маршрута."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4, description="UUID маршрута")
    truck_id: UUID = Field(..., description="Грузовик маршрута")
    owner_id: UUID = Field(..., description="Владелец грузовика")

    origin_address: str = Field(..., description="Адрес отправления")
    destination_address: str = Field(..., description="Адрес назначения")
    departure_time: datetime = Field(..., description="Плановое отправление")
    arrival_time: datetime = Field(..., description="Плановое прибытие")

    total_capacity_kg: Decimal = Field(..., ge=0)
    available_capacity_kg: Decimal = Field(..., ge=0)
    total_capacity_m3: Optional[Decimal] = Field(None, ge=0)
    available_capacity_m3: Optional[Decimal] = Field(None, ge=0)

    status: RouteStatus = Field(RouteStatus.PLANNED, description="Статус маршрута")
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def capacity(self) -> CapacityState:
        """Текущая вместимость маршрута."""
        return CapacityState(
            total_kg=self.total_capacity_kg,
            available_kg=self.available_capacity_kg,
            total_m3=self.total_capacity_m3,
            available_m3=self.available_capacity_m3,
            status=self.status,
        )

    def with_capacity(self, state: CapacityState) -> "Route":
        """Копия маршрута с новой вместимостью и статусом."""
        return self.model_copy(
            update={
                "available_capacity_kg": state.available_kg,
                "available_capacity_m3": state.available_m3,
                "status": state.status,
                "updated_at": datetime.now(timezone.utc),
            }
        )


class CapacityChange(BaseModel):
    """Результат применения изменения вместимости к маршруту."""

    route_id: UUID
    previous: CapacityState
    current: CapacityState
    booking_id: Optional[UUID] = None

    @property
    def status_changed(self) -> bool:
        return self.previous.status != self.current.status
