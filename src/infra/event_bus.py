# src/infra/event_bus.py
"""
Шина событий на базе RabbitMQ.
Реализует паттерн Pub/Sub для асинхронной коммуникации между сервисами.

Подтверждение сообщений:
- обработчик завершился успешно или событие уже обработано -> ack
- TransientError (сбой хранилища, конфликт) -> nack с возвратом в очередь
- некорректное сообщение или бизнес-ошибка -> ack без повторной доставки
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Awaitable, Callable

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractRobustConnection,
)
from pydantic import ValidationError

from src.common.constants import TypeMsg
from src.common.errors import DuplicateEventError, FreightError, TransientError
from src.common.logger import log_error, log_info, log_warning
from src.shared.events.base import DomainEvent


# Тип обработчика событий
EventHandler = Callable[[DomainEvent], Awaitable[None]]

# Запись таблицы обработчиков: (модель события, обработчик)
HandlerEntry = tuple[type[DomainEvent], EventHandler]


class EventBus:
    """
    Шина событий на базе RabbitMQ.

    Реализует:
    - Публикацию событий в topic exchange (routing key = event_type)
    - Подписку на события через долговечные очереди
    - Автоматическое переподключение (connect_robust)
    """

    _instance: EventBus | None = None

    def __new__(cls) -> EventBus:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Инициализация (вызывается только один раз благодаря Singleton)."""
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._handlers: dict[str, list[HandlerEntry]] = {}
        self._queues: dict[str, AbstractQueue] = {}
        self._exchange_name = "freight.events"
        self._queue_prefix = "route_service"

    @property
    def is_connected(self) -> bool:
        """Проверяет, активно ли соединение."""
        return self._connection is not None and not self._connection.is_closed

    async def connect(
        self,
        url: str | None = None,
        exchange_name: str | None = None,
        prefetch_count: int = 10,
        queue_prefix: str | None = None,
    ) -> None:
        """
        Подключается к RabbitMQ.

        Args:
            url: URL RabbitMQ (если None, берётся из конфига)
            exchange_name: Имя exchange
            prefetch_count: Количество сообщений для prefetch
            queue_prefix: Префикс имён очередей этого сервиса
        """
        if self.is_connected:
            return

        if url is None:
            from src.config import settings
            url = settings.rabbitmq.url
            exchange_name = settings.rabbitmq.RABBITMQ_EXCHANGE
            prefetch_count = settings.rabbitmq.RABBITMQ_PREFETCH_COUNT
            queue_prefix = settings.rabbitmq.RABBITMQ_QUEUE_PREFIX

        if exchange_name:
            self._exchange_name = exchange_name
        if queue_prefix:
            self._queue_prefix = queue_prefix

        await log_info("Подключение к RabbitMQ...", type_msg=TypeMsg.INFO)

        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=prefetch_count)

        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )

        await log_info("Подключение к RabbitMQ установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с RabbitMQ."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            self._queues = {}
            self._handlers = {}
            await log_info("Соединение с RabbitMQ закрыто", type_msg=TypeMsg.INFO)

    async def publish(self, event: DomainEvent) -> None:
        """
        Публикует событие в exchange.
        Ошибки публикации логируются и не прерывают вызывающий код.

        Args:
            event: Доменное событие
        """
        if not self.is_connected or self._exchange is None:
            await log_error(f"Не удалось опубликовать {event.event_type}: нет соединения с RabbitMQ")
            return

        try:
            message = Message(
                body=event.to_json().encode(),
                content_type="application/json",
                message_id=event.event_id,
                correlation_id=event.metadata.correlation_id,
                timestamp=datetime.now(timezone.utc),
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            )

            await self._exchange.publish(message, routing_key=event.event_type)

            await log_info(f"Событие опубликовано: {event.event_type}", type_msg=TypeMsg.DEBUG)
        except aio_pika.exceptions.AMQPError as e:
            await log_error(f"Ошибка публикации события {event.event_type}: {e}")

    async def subscribe(
        self,
        event_type: str,
        model: type[DomainEvent],
        handler: EventHandler,
        queue_name: str | None = None,
    ) -> None:
        """
        Подписывается на события определённого типа.

        Args:
            event_type: Тип события (routing key)
            model: Pydantic-модель для разбора тела сообщения
            handler: Асинхронный обработчик события
            queue_name: Имя очереди (если None, строится из префикса и типа)
        """
        if not self.is_connected or self._channel is None or self._exchange is None:
            await log_error("Не удалось подписаться: нет соединения с RabbitMQ")
            return

        self._handlers.setdefault(event_type, []).append((model, handler))

        if queue_name is None:
            queue_name = f"{self._queue_prefix}.{event_type.replace('.', '_')}"

        if queue_name not in self._queues:
            queue = await self._channel.declare_queue(queue_name, durable=True)
            await queue.bind(self._exchange, routing_key=event_type)
            self._queues[queue_name] = queue
            await queue.consume(self._make_consumer(event_type))

        await log_info(f"Подписка на события: {event_type} ({queue_name})", type_msg=TypeMsg.DEBUG)

    def _make_consumer(self, event_type: str) -> Callable[[AbstractIncomingMessage], Awaitable[None]]:
        """Создаёт consumer для обработки сообщений."""
        async def consumer(message: AbstractIncomingMessage) -> None:
            async with message.process(requeue=True, ignore_processed=True):
                if not await self.dispatch(event_type, message.body):
                    await message.nack(requeue=True)

        return consumer

    async def dispatch(self, event_type: str, body: bytes) -> bool:
        """
        Разбирает сообщение и вызывает обработчики.

        Returns:
            False, если сообщение нужно доставить повторно
        """
        for model, handler in self._handlers.get(event_type, []):
            try:
                event = model.model_validate_json(body)
            except ValidationError as e:
                await log_error(
                    f"Некорректное сообщение {event_type}, отброшено: {e}",
                    extra={"body": body[:512].decode(errors="replace")},
                )
                continue

            try:
                await handler(event)
            except DuplicateEventError:
                continue
            except TransientError as e:
                await log_warning(
                    f"Временный сбой обработки {event_type}, сообщение вернётся в очередь: {e}",
                    extra={"handler": getattr(handler, "__qualname__", repr(handler))},
                )
                return False
            except FreightError as e:
                await log_error(
                    f"Событие {event_type} отклонено без повтора: {e}",
                    extra={"handler": getattr(handler, "__qualname__", repr(handler))},
                )
            except Exception as e:
                await log_error(
                    f"Необработанная ошибка в обработчике {event_type}: {e}",
                    extra={"handler": getattr(handler, "__qualname__", repr(handler))},
                    exc_info=True,
                )

        return True

    async def health_check(self) -> bool:
        """
        Проверяет здоровье подключения к RabbitMQ.

        Returns:
            True если подключение работает
        """
        return self.is_connected


# Глобальный экземпляр
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Возвращает глобальный экземпляр EventBus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


async def init_event_bus() -> None:
    """
    Инициализирует подключение к RabbitMQ.
    Использует настройки из конфигурации.
    """
    from src.config import settings

    event_bus = get_event_bus()
    await event_bus.connect(
        url=settings.rabbitmq.url,
        exchange_name=settings.rabbitmq.RABBITMQ_EXCHANGE,
        prefetch_count=settings.rabbitmq.RABBITMQ_PREFETCH_COUNT,
        queue_prefix=settings.rabbitmq.RABBITMQ_QUEUE_PREFIX,
    )
    await log_info(
        f"RabbitMQ подключён: {settings.rabbitmq.RABBITMQ_HOST}:{settings.rabbitmq.RABBITMQ_PORT}",
        type_msg=TypeMsg.INFO,
    )


async def close_event_bus() -> None:
    """Закрывает подключение к RabbitMQ."""
    event_bus = get_event_bus()
    await event_bus.disconnect()
    await log_info("RabbitMQ отключён", type_msg=TypeMsg.INFO)
