# src/core/resilience/circuit_breaker.py
"""
Автомат защиты (circuit breaker) для исходящих вызовов.

Один автомат на логическое имя сервиса. Состояния:
- CLOSED: вызовы проходят, считаются подряд идущие сбои
- OPEN: вызовы отклоняются сразу, без сетевой попытки
- HALF_OPEN: после break_duration пропускается ровно один пробный вызов

Переходы выполняются под блокировкой. Логирование и обновление реестра
сервисов выполняются после её освобождения.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from pydantic import BaseModel

from src.common.constants import TypeMsg
from src.common.errors import NotFoundError
from src.common.logger import log_info, log_warning
from src.core.discovery.registry import ServiceRegistry
from src.shared.models.enums import CircuitState, ServiceHealthStatus


Clock = Callable[[], float]

# (старое состояние, новое состояние)
Transition = tuple[CircuitState, CircuitState]


class CircuitBreakerSnapshot(BaseModel):
    """Неизменяемый снимок состояния автомата."""

    service_name: str
    state: CircuitState
    failure_count: int
    failure_threshold: int
    break_duration: float
    opened_at: datetime | None = None
    retry_after: float = 0.0


@dataclass
class CircuitBreaker:
    """Автомат защиты для одного сервиса."""

    name: str
    failure_threshold: int = 5
    break_duration: float = 30.0
    registry: ServiceRegistry | None = None
    clock: Clock = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _opened_at_wall: datetime | None = field(default=None, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold должен быть >= 1")
        if self.break_duration <= 0:
            raise ValueError("break_duration должен быть > 0")

    @property
    def state(self) -> CircuitState:
        """Текущее состояние без ленивого перехода. Для переходов используйте allow_request()."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    # =========================================================================
    # ПЕРЕХОДЫ (вызываются под self._lock)
    # =========================================================================

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self.clock()
        self._opened_at_wall = datetime.now(timezone.utc)
        self._trial_in_flight = False

    def _check_recovery_transition(self) -> Transition | None:
        """OPEN -> HALF_OPEN, если прошло break_duration."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self.clock() - self._opened_at >= self.break_duration:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                return CircuitState.OPEN, CircuitState.HALF_OPEN
        return None

    def _retry_after(self) -> float:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.break_duration - (self.clock() - self._opened_at))

    # =========================================================================
    # ПУБЛИЧНЫЙ API
    # =========================================================================

    async def allow_request(self) -> bool:
        """
        Решает, можно ли выполнить вызов.
        В HALF_OPEN пропускает только один пробный вызов, остальным отказывает.
        """
        with self._lock:
            transition = self._check_recovery_transition()

            if self._state == CircuitState.CLOSED:
                allowed = True
            elif self._state == CircuitState.OPEN:
                allowed = False
            elif self._trial_in_flight:
                allowed = False
            else:
                self._trial_in_flight = True
                allowed = True

        if transition:
            await self._on_transition(transition)
        return allowed

    async def record_success(self) -> None:
        """Успешный вызов: сбрасывает счётчик, HALF_OPEN -> CLOSED."""
        transition: Transition | None = None
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
                self._opened_at = None
                self._opened_at_wall = None
                self._trial_in_flight = False
                transition = CircuitState.HALF_OPEN, CircuitState.CLOSED
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0
            # В OPEN поздний успех вызова, начатого до размыкания, игнорируется

        if transition:
            await self._on_transition(transition)

    async def record_failure(self) -> None:
        """Учитывает сбой: порог в CLOSED или пробный вызов в HALF_OPEN размыкают автомат."""
        transition: Transition | None = None
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._open()
                transition = CircuitState.HALF_OPEN, CircuitState.OPEN
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.failure_threshold:
                    self._open()
                    transition = CircuitState.CLOSED, CircuitState.OPEN

        if transition:
            await self._on_transition(transition)

    def release(self) -> None:
        """
        Освобождает слот пробного вызова без перехода.
        Для исходов, которые не считаются ни успехом, ни сбоем (4xx, отмена).
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False

    def retry_after(self) -> float:
        """Сколько секунд осталось до пробного вызова."""
        with self._lock:
            return self._retry_after()

    def snapshot(self) -> CircuitBreakerSnapshot:
        with self._lock:
            return CircuitBreakerSnapshot(
                service_name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                failure_threshold=self.failure_threshold,
                break_duration=self.break_duration,
                opened_at=self._opened_at_wall,
                retry_after=self._retry_after(),
            )

    async def _on_transition(self, transition: Transition) -> None:
        """Логирует переход и отражает его в реестре сервисов."""
        old_state, new_state = transition
        if new_state == CircuitState.OPEN:
            await log_warning(
                f"Circuit {self.name}: {old_state} -> {new_state} "
                f"(пауза {self.break_duration:.0f} с)",
                extra={"service": self.name, "failures": self._failure_count},
            )
        else:
            await log_info(f"Circuit {self.name}: {old_state} -> {new_state}", type_msg=TypeMsg.INFO)

        if self.registry is None:
            return

        health = {
            CircuitState.OPEN: ServiceHealthStatus.UNHEALTHY,
            CircuitState.CLOSED: ServiceHealthStatus.HEALTHY,
        }.get(new_state)
        if health is None:
            return

        try:
            await self.registry.update_health(self.name, health)
        except NotFoundError:
            await log_warning(f"Circuit {self.name}: сервис отсутствует в реестре, статус не обновлён")


class CircuitBreakerRegistry:
    """Набор автоматов защиты, по одному на имя сервиса."""

    def __init__(
        self,
        failure_threshold: int = 5,
        break_duration: float = 30.0,
        registry: ServiceRegistry | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._break_duration = break_duration
        self._registry = registry
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        """Возвращает автомат для сервиса, создавая его при первом обращении."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name=name,
                    failure_threshold=self._failure_threshold,
                    break_duration=self._break_duration,
                    registry=self._registry,
                    clock=self._clock,
                )
                self._breakers[name] = breaker
            return breaker

    def snapshots(self) -> dict[str, CircuitBreakerSnapshot]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.snapshot() for b in breakers}
