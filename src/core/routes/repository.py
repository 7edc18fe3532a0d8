# src/core/routes/repository.py
"""
Репозиторий маршрутов.

Изменение вместимости выполняется одной транзакцией:
блокировка строки маршрута (SELECT ... FOR UPDATE) -> пересчёт ->
UPDATE -> запись в журнал обработанных событий.
Блокировка строки сериализует конкурентные изменения одного маршрута.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Optional
from uuid import UUID

from asyncpg import Connection, Record

from src.common.errors import (
    BusinessError,
    InvalidStatusTransitionError,
    NotFoundError,
    PersistenceError,
)
from src.common.logger import log_info
from src.common.constants import TypeMsg
from src.core.routes.ledger import IdempotencyLedger
from src.core.routes.models import CapacityChange, Route
from src.core.routes.reconciler import reconcile
from src.infra.database import CONNECTION_ERRORS, DatabaseManager, retry_on_conflict
from src.shared.models.enums import RouteStatus
from src.shared.models.route_dto import RouteFilterRequest


_ROUTE_COLUMNS = """
    id, truck_id, owner_id, origin_address, destination_address,
    departure_time, arrival_time,
    total_capacity_kg, available_capacity_kg,
    total_capacity_m3, available_capacity_m3,
    status, notes, created_at, updated_at
"""

# Колонки, которые можно менять через update_details
_EDITABLE_COLUMNS = frozenset({
    "origin_address", "destination_address", "departure_time", "arrival_time", "notes",
})


class RouteRepository:
    """Репозиторий маршрутов."""

    def __init__(
        self,
        db: DatabaseManager,
        ledger: IdempotencyLedger | None = None,
        conflict_retry_attempts: int = 3,
        conflict_retry_delay: float = 0.05,
    ) -> None:
        """
        Args:
            db: Менеджер базы данных
            ledger: Журнал обработанных событий
            conflict_retry_attempts: Повторы транзакции при конфликте
            conflict_retry_delay: Базовая пауза между повторами (секунды)
        """
        self._db = db
        self._ledger = ledger or IdempotencyLedger(db)
        self._conflict_retry_attempts = conflict_retry_attempts
        self._conflict_retry_delay = conflict_retry_delay

    @property
    def ledger(self) -> IdempotencyLedger:
        return self._ledger

    # =========================================================================
    # ЧТЕНИЕ / СОЗДАНИЕ
    # =========================================================================

    async def get_by_id(self, route_id: UUID) -> Optional[Route]:
        """Возвращает маршрут или None."""
        row = await self._db.fetchrow(
            f"SELECT {_ROUTE_COLUMNS} FROM routes WHERE id = $1",
            route_id,
        )
        return self._row_to_route(row) if row else None

    async def create(self, route: Route) -> Route:
        """Сохраняет новый маршрут."""
        row = await self._db.fetchrow(
            f"""
            INSERT INTO routes (
                id, truck_id, owner_id, origin_address, destination_address,
                departure_time, arrival_time,
                total_capacity_kg, available_capacity_kg,
                total_capacity_m3, available_capacity_m3,
                status, notes, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
            RETURNING {_ROUTE_COLUMNS}
            """,
            route.id,
            route.truck_id,
            route.owner_id,
            route.origin_address,
            route.destination_address,
            route.departure_time,
            route.arrival_time,
            route.total_capacity_kg,
            route.available_capacity_kg,
            route.total_capacity_m3,
            route.available_capacity_m3,
            route.status.value,
            route.notes,
            route.created_at,
            route.updated_at,
        )
        await log_info(f"Маршрут {route.id} создан", type_msg=TypeMsg.INFO)
        return self._row_to_route(row)

    async def list_routes(self, filters: RouteFilterRequest) -> list[Route]:
        """
        Возвращает страницу маршрутов по фильтру, новые первыми.

        Args:
            filters: Условия отбора и пагинация
        """
        conditions: list[str] = []
        args: list[Any] = []

        def add(condition: str, value: Any) -> None:
            args.append(value)
            conditions.append(condition.format(n=len(args)))

        if filters.owner_id is not None:
            add("owner_id = ${n}", filters.owner_id)
        if filters.truck_id is not None:
            add("truck_id = ${n}", filters.truck_id)
        if filters.status is not None:
            add("status = ${n}", filters.status.value)
        if filters.min_capacity_kg is not None:
            add("available_capacity_kg >= ${n}", filters.min_capacity_kg)
        if filters.min_capacity_m3 is not None:
            add("available_capacity_m3 >= ${n}", filters.min_capacity_m3)
        if filters.depart_after is not None:
            add("departure_time >= ${n}", filters.depart_after)
        if filters.depart_before is not None:
            add("departure_time <= ${n}", filters.depart_before)
        if filters.arrive_after is not None:
            add("arrival_time >= ${n}", filters.arrive_after)
        if filters.arrive_before is not None:
            add("arrival_time <= ${n}", filters.arrive_before)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        args.extend([filters.page_size, (filters.page - 1) * filters.page_size])

        rows = await self._db.fetch(
            f"""
            SELECT {_ROUTE_COLUMNS} FROM routes
            {where}
            ORDER BY created_at DESC
            LIMIT ${len(args) - 1} OFFSET ${len(args)}
            """,
            *args,
        )
        return [self._row_to_route(row) for row in rows]

    # =========================================================================
    # ИЗМЕНЕНИЕ ОПИСАНИЯ
    # =========================================================================

    async def update_details(
        self,
        route_id: UUID,
        changes: dict[str, Any],
        editable_in: Iterable[RouteStatus],
    ) -> Route:
        """
        Изменяет описание маршрута (адреса, время, заметки).

        Args:
            route_id: ID маршрута
            changes: Новые значения по именам колонок
            editable_in: Статусы, в которых маршрут можно редактировать

        Raises:
            NotFoundError: маршрут не найден
            BusinessError: маршрут нельзя редактировать (409) или время некорректно (422)
            PersistenceError: база данных недоступна
        """
        unknown = set(changes) - _EDITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Колонки нельзя изменять: {sorted(unknown)}")

        update = retry_on_conflict(
            max_attempts=self._conflict_retry_attempts,
            delay=self._conflict_retry_delay,
        )(self._update_details_once)

        try:
            return await update(route_id, changes, frozenset(editable_in))
        except CONNECTION_ERRORS as e:
            raise PersistenceError(f"Не удалось изменить маршрут {route_id}: {e}") from e

    async def _update_details_once(
        self,
        route_id: UUID,
        changes: dict[str, Any],
        editable_in: frozenset[RouteStatus],
    ) -> Route:
        async with self._db.transaction() as conn:
            route = await self._lock_route(conn, route_id)
            if route.status not in editable_in:
                raise BusinessError(
                    f"Маршрут {route_id} в статусе {route.status} нельзя изменить",
                    status_code=409,
                )

            departure = changes.get("departure_time", route.departure_time)
            arrival = changes.get("arrival_time", route.arrival_time)
            if arrival <= departure:
                raise BusinessError(
                    f"Прибытие маршрута {route_id} должно быть позже отправления",
                    status_code=422,
                )

            columns = sorted(changes)
            assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(columns, start=2))
            row = await conn.fetchrow(
                f"""
                UPDATE routes SET {assignments}, updated_at = NOW()
                WHERE id = $1
                RETURNING {_ROUTE_COLUMNS}
                """,
                route_id,
                *(changes[column] for column in columns),
            )
        return self._row_to_route(row)

    # =========================================================================
    # ИЗМЕНЕНИЕ ВМЕСТИМОСТИ
    # =========================================================================

    async def apply_capacity_delta(
        self,
        route_id: UUID,
        delta_kg: Decimal,
        delta_m3: Optional[Decimal] = None,
        *,
        event_id: Optional[UUID] = None,
        event_type: Optional[str] = None,
    ) -> CapacityChange:
        """
        Атомарно применяет изменение вместимости и регистрирует событие в журнале.

        Args:
            route_id: ID маршрута
            delta_kg: Изменение свободного веса
            delta_m3: Изменение свободного объёма
            event_id: Ключ идемпотентности (если None, журнал не используется)
            event_type: Тип события для журнала

        Raises:
            NotFoundError: маршрут не найден
            DuplicateEventError: событие уже зарегистрировано конкурентной транзакцией
            PersistenceConflictError: конфликт не разрешился повторами
            PersistenceError: база данных недоступна
        """
        apply = retry_on_conflict(
            max_attempts=self._conflict_retry_attempts,
            delay=self._conflict_retry_delay,
        )(self._apply_capacity_delta_once)

        try:
            return await apply(route_id, delta_kg, delta_m3, event_id, event_type)
        except CONNECTION_ERRORS as e:
            raise PersistenceError(f"Не удалось изменить вместимость маршрута {route_id}: {e}") from e

    async def _apply_capacity_delta_once(
        self,
        route_id: UUID,
        delta_kg: Decimal,
        delta_m3: Optional[Decimal],
        event_id: Optional[UUID],
        event_type: Optional[str],
    ) -> CapacityChange:
        async with self._db.transaction() as conn:
            route = await self._lock_route(conn, route_id)
            previous = route.capacity
            current = reconcile(previous, delta_kg, delta_m3)

            await conn.execute(
                """
                UPDATE routes
                SET available_capacity_kg = $2,
                    available_capacity_m3 = $3,
                    status = $4,
                    updated_at = NOW()
                WHERE id = $1
                """,
                route_id,
                current.available_kg,
                current.available_m3,
                current.status.value,
            )

            if event_id is not None:
                await self._ledger.mark_processed(conn, event_id, event_type or "")

        return CapacityChange(
            route_id=route_id,
            previous=previous,
            current=current,
            booking_id=event_id,
        )

    # =========================================================================
    # ИЗМЕНЕНИЕ СТАТУСА
    # =========================================================================

    async def transition_status(
        self,
        route_id: UUID,
        target: RouteStatus,
        allowed_from: Iterable[RouteStatus],
    ) -> tuple[RouteStatus, Route]:
        """
        Переводит маршрут в новый статус, если текущий статус это допускает.

        Returns:
            (предыдущий статус, обновлённый маршрут)

        Raises:
            NotFoundError: маршрут не найден
            InvalidStatusTransitionError: переход запрещён
        """
        allowed = frozenset(allowed_from)
        transition = retry_on_conflict(
            max_attempts=self._conflict_retry_attempts,
            delay=self._conflict_retry_delay,
        )(self._transition_status_once)

        try:
            return await transition(route_id, target, allowed)
        except CONNECTION_ERRORS as e:
            raise PersistenceError(f"Не удалось изменить статус маршрута {route_id}: {e}") from e

    async def _transition_status_once(
        self,
        route_id: UUID,
        target: RouteStatus,
        allowed: frozenset[RouteStatus],
    ) -> tuple[RouteStatus, Route]:
        async with self._db.transaction() as conn:
            route = await self._lock_route(conn, route_id)
            if route.status not in allowed:
                raise InvalidStatusTransitionError(route.status.value, target.value)

            row = await conn.fetchrow(
                f"""
                UPDATE routes SET status = $2, updated_at = NOW()
                WHERE id = $1
                RETURNING {_ROUTE_COLUMNS}
                """,
                route_id,
                target.value,
            )
        return route.status, self._row_to_route(row)

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    async def _lock_route(self, conn: Connection, route_id: UUID) -> Route:
        row = await conn.fetchrow(
            f"SELECT {_ROUTE_COLUMNS} FROM routes WHERE id = $1 FOR UPDATE",
            route_id,
        )
        if row is None:
            raise NotFoundError(f"Маршрут {route_id} не найден", key=route_id)
        return self._row_to_route(row)

    @staticmethod
    def _row_to_route(row: Record | dict[str, Any]) -> Route:
        data = dict(row)
        data["status"] = RouteStatus(data["status"])
        return Route.model_validate(data)
