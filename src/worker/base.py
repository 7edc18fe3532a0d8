# src/worker/base.py
"""
Базовый класс для воркеров.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, Optional

from src.infra.event_bus import EventBus, HandlerEntry, get_event_bus
from src.infra.database import DatabaseManager, get_db
from src.common.errors import TransientError
from src.common.logger import log_info
from src.common.constants import TypeMsg
from src.shared.events.base import DomainEvent


class BaseWorker(ABC):
    """
    Базовый класс для всех воркеров.
    Подписывается на события по явной таблице обработчиков.
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        db: Optional[DatabaseManager] = None,
    ) -> None:
        """
        Инициализирует воркер.

        Args:
            event_bus: Шина событий
            db: Менеджер БД
        """
        self.event_bus = event_bus or get_event_bus()
        self.db = db or get_db()
        self._running = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя воркера."""
        pass

    @property
    @abstractmethod
    def handlers(self) -> Dict[str, HandlerEntry]:
        """Таблица обработчиков: {event_type: (модель события, обработчик)}."""
        pass

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запускает воркер."""
        if self._running:
            return

        self._running = True
        await log_info(f"Воркер {self.name} запускается...", type_msg=TypeMsg.INFO)

        for event_type, (model, handler) in self.handlers.items():
            await self.event_bus.subscribe(
                event_type=event_type,
                model=model,
                handler=self._guarded(handler),
            )
            await log_info(
                f"Воркер {self.name} подписан на {event_type}",
                type_msg=TypeMsg.DEBUG,
            )

        await log_info(f"Воркер {self.name} запущен", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Останавливает воркер."""
        if not self._running:
            return

        self._running = False
        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    def _guarded(
        self,
        handler: Callable[[DomainEvent], Awaitable[None]],
    ) -> Callable[[DomainEvent], Awaitable[None]]:
        """Оборачивает обработчик: остановленный воркер возвращает сообщения в очередь."""
        async def on_event(event: DomainEvent) -> None:
            if not self._running:
                raise TransientError(f"Воркер {self.name} остановлен")

            await log_info(
                f"Воркер {self.name} получил событие {event.event_type}",
                type_msg=TypeMsg.DEBUG,
            )
            await handler(event)

        on_event.__qualname__ = f"{self.name}.{getattr(handler, '__name__', 'handler')}"
        return on_event
