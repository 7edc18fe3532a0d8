from enum import Enum


class RouteStatus(str, Enum):
    """Статусы маршрута."""
    PLANNED = "planned"
    BOOKED_PARTIAL = "booked_partial"
    BOOKED_FULL = "booked_full"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        """Статус не меняется событиями бронирования."""
        return self in (RouteStatus.COMPLETED, RouteStatus.CANCELLED)


class ServiceHealthStatus(str, Enum):
    """Состояние здоровья сервиса в реестре."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


class CircuitState(str, Enum):
    """Состояния автомата защиты."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __str__(self) -> str:
        return self.value
