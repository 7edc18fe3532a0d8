from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator

from src.shared.models.enums import RouteStatus


class RouteDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    truck_id: UUID
    owner_id: UUID

    origin_address: str
    destination_address: str
    departure_time: datetime
    arrival_time: datetime

    total_capacity_kg: Decimal
    available_capacity_kg: Decimal
    total_capacity_m3: Optional[Decimal] = None
    available_capacity_m3: Optional[Decimal] = None

    status: RouteStatus = RouteStatus.PLANNED
    notes: Optional[str] = None

    created_at: datetime
    updated_at: datetime


class CreateRouteRequest(BaseModel):
    # owner_id приходит из тела запроса: аутентификация на шлюзе
    truck_id: UUID
    owner_id: UUID
    origin_address: str = Field(min_length=1, max_length=255)
    destination_address: str = Field(min_length=1, max_length=255)
    departure_time: datetime
    arrival_time: datetime
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_times(self) -> "CreateRouteRequest":
        if self.arrival_time <= self.departure_time:
            raise ValueError("arrival_time must be after departure_time")
        return self


class UpdateRouteCapacityRequest(BaseModel):
    """Ручное изменение вместимости (отрицательное значение занимает место)."""
    capacity_change_kg: Decimal
    capacity_change_m3: Optional[Decimal] = None
    booking_id: Optional[UUID] = None
    reason: Optional[str] = None


class RouteActionRequest(BaseModel):
    reason: Optional[str] = None


class TruckCapacity(BaseModel):
    """Вместимость грузовика по данным сервиса грузовиков (camelCase в ответе)."""
    model_config = ConfigDict(populate_by_name=True)

    capacity_kg: Decimal = Field(ge=0, alias="capacityKg")
    capacity_m3: Optional[Decimal] = Field(default=None, ge=0, alias="capacityM3")


class UpdateRouteRequest(BaseModel):
    """Изменение описания маршрута. Вместимость и статус меняются отдельными операциями."""
    owner_id: UUID
    origin_address: Optional[str] = Field(default=None, min_length=1, max_length=255)
    destination_address: Optional[str] = Field(default=None, min_length=1, max_length=255)
    departure_time: Optional[AwareDatetime] = None
    arrival_time: Optional[AwareDatetime] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_changes(self) -> "UpdateRouteRequest":
        if not self.changes():
            raise ValueError("at least one field must be changed")
        if self.departure_time and self.arrival_time and self.arrival_time <= self.departure_time:
            raise ValueError("arrival_time must be after departure_time")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude={"owner_id"}, exclude_none=True)


class RouteFilterRequest(BaseModel):
    owner_id: Optional[UUID] = None
    truck_id: Optional[UUID] = None
    status: Optional[RouteStatus] = None
    min_capacity_kg: Optional[Decimal] = Field(default=None, ge=0)
    min_capacity_m3: Optional[Decimal] = Field(default=None, ge=0)
    depart_after: Optional[datetime] = None
    depart_before: Optional[datetime] = None
    arrive_after: Optional[datetime] = None
    arrive_before: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
