"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class EventTypes:
    """Константы типов событий (routing keys)."""
    # Бронирования (входящие)
    BOOKING_CONFIRMED = "booking.confirmed"
    BOOKING_CANCELLED = "booking.cancelled"

    # Маршруты (исходящие)
    ROUTE_CAPACITY_CHANGED = "route.capacity_changed"
    ROUTE_STATUS_UPDATED = "route.status_updated"
    ROUTE_UPDATED = "route.updated"


# Имя логгера проекта по умолчанию
DEFAULT_LOGGER_NAME = "freight"

# Путь эндпоинта проверки здоровья у всех сервисов
HEALTH_PATH = "/health"
