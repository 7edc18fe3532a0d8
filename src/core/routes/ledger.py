# src/core/routes/ledger.py
"""
Журнал обработанных событий (idempotency ledger).

Запись добавляется в той же транзакции, что и изменение маршрута.
Первичный ключ (event_id, event_type) гарантирует, что из двух
конкурентных доставок одного события зафиксируется только одна.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import asyncpg
from asyncpg import Connection

from src.common.constants import TypeMsg
from src.common.errors import DuplicateEventError, PersistenceError
from src.common.logger import log_info
from src.infra.database import CONNECTION_ERRORS, DatabaseManager


class IdempotencyLedger:
    """Журнал обработанных событий в таблице processed_events."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных
        """
        self._db = db

    async def has_processed(
        self,
        event_id: UUID,
        event_type: str,
        conn: Connection | None = None,
    ) -> bool:
        """
        Проверяет, обработано ли событие.

        Args:
            event_id: Ключ идемпотентности (идентификатор бронирования)
            event_type: Тип события
            conn: Соединение открытой транзакции (если None, берётся из пула)

        Raises:
            PersistenceError: журнал недоступен, событие нужно доставить повторно
        """
        query = "SELECT EXISTS(SELECT 1 FROM processed_events WHERE event_id = $1 AND event_type = $2)"
        try:
            if conn is not None:
                return bool(await conn.fetchval(query, event_id, event_type))
            return bool(await self._db.fetchval(query, event_id, event_type))
        except CONNECTION_ERRORS as e:
            raise PersistenceError(f"Журнал событий недоступен: {e!r}") from e

    async def mark_processed(
        self,
        conn: Connection,
        event_id: UUID,
        event_type: str,
        processed_at: datetime | None = None,
    ) -> None:
        """
        Регистрирует событие как обработанное в текущей транзакции.

        Raises:
            DuplicateEventError: событие уже зарегистрировано (конкурентный дубль)
        """
        try:
            await conn.execute(
                """
                INSERT INTO processed_events (event_id, event_type, processed_at)
                VALUES ($1, $2, $3)
                """,
                event_id,
                event_type,
                processed_at or datetime.now(timezone.utc),
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateEventError(event_id) from e

    async def prune(self, older_than: datetime) -> int:
        """
        Удаляет записи старше указанного момента.

        Returns:
            Количество удалённых записей
        """
        status = await self._db.execute(
            "DELETE FROM processed_events WHERE processed_at < $1",
            older_than,
        )
        # asyncpg возвращает статус вида "DELETE 42"
        deleted = int(status.split()[-1]) if status else 0
        await log_info(f"Из журнала событий удалено записей: {deleted}", type_msg=TypeMsg.DEBUG)
        return deleted
