# src/core/resilience/client.py
"""
Устойчивый HTTP-клиент для межсервисных вызовов.

Порядок обработки вызова:
1. Адрес сервиса берётся из реестра
2. Автомат защиты решает, допустим ли вызов (иначе CircuitOpenError)
3. Каждая попытка ограничена таймаутом; временные сбои повторяются
   с экспоненциальной паузой backoff_base ** attempt
4. Итог сообщается автомату защиты и реестру сервисов
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable

import httpx

from src.common.constants import TypeMsg
from src.common.errors import (
    BusinessError,
    CircuitOpenError,
    ServiceTimeoutError,
    TransientCallError,
)
from src.common.logger import log_info, log_warning
from src.core.discovery.registry import ServiceRegistry
from src.core.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from src.shared.models.enums import CircuitState, ServiceHealthStatus


RequestFn = Callable[[httpx.AsyncClient], Awaitable[httpx.Response]]
Sleep = Callable[[float], Awaitable[None]]


class ResilientClient:
    """
    Обёртка retry + circuit breaker + timeout вокруг httpx.AsyncClient.

    Example:
        response = await client.execute(
            "truck_service",
            lambda http: http.get(f"/api/trucks/{truck_id}/capacity"),
        )
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        breakers: CircuitBreakerRegistry,
        retry_count: int = 3,
        backoff_base: float = 2.0,
        timeout: float = 10.0,
        transient_status_codes: Iterable[int] = (408,),
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Args:
            registry: Реестр сервисов
            breakers: Автоматы защиты по именам сервисов
            retry_count: Число повторов после первой попытки
            backoff_base: Основание экспоненциальной паузы (секунды)
            timeout: Жёсткий таймаут одной попытки (секунды)
            transient_status_codes: Коды ответа, считающиеся временным сбоем, кроме 5xx
            transport: Транспорт httpx (подменяется в тестах)
            sleep: Функция паузы между попытками
        """
        self._registry = registry
        self._breakers = breakers
        self._retry_count = retry_count
        self._backoff_base = backoff_base
        self._timeout = timeout
        self._transient_status_codes = frozenset(transient_status_codes)
        self._transport = transport
        self._sleep = sleep
        self._clients: dict[tuple[str, str], httpx.AsyncClient] = {}

    @property
    def registry(self) -> ServiceRegistry:
        return self._registry

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    def is_transient_status(self, status_code: int) -> bool:
        """5xx и сконфигурированные коды (по умолчанию 408) считаются временным сбоем."""
        return status_code >= 500 or status_code in self._transient_status_codes

    def _client_for(self, service_name: str, base_address: str) -> httpx.AsyncClient:
        key = (service_name, base_address)
        client = self._clients.get(key)
        if client is None:
            client = httpx.AsyncClient(
                base_url=base_address,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
            self._clients[key] = client
        return client

    async def execute(self, service_name: str, request_fn: RequestFn) -> httpx.Response:
        """
        Выполняет вызов сервиса с retry, таймаутом и автоматом защиты.

        Args:
            service_name: Логическое имя сервиса в реестре
            request_fn: Корутина, выполняющая запрос через переданный клиент
                (клиент уже привязан к базовому адресу сервиса)

        Returns:
            Ответ с кодом 2xx/3xx

        Raises:
            NotFoundError: адрес сервиса неизвестен
            CircuitOpenError: автомат разомкнут, вызов не выполнялся
            BusinessError: сервис ответил 4xx (без повторов)
            TransientCallError: все попытки завершились временным сбоем
            ServiceTimeoutError: последняя попытка превысила таймаут
            Exception: ошибки самого request_fn пробрасываются без учёта в автомате
        """
        base_address = self._registry.get_base_address(service_name)
        breaker = self._breakers.get(service_name)

        if not await breaker.allow_request():
            raise CircuitOpenError(service_name, breaker.retry_after())

        http = self._client_for(service_name, base_address)
        last_error: TransientCallError | None = None

        try:
            for attempt in range(self._retry_count + 1):
                if attempt > 0:
                    delay = self._backoff_base ** attempt
                    await log_info(
                        f"Повтор вызова {service_name} через {delay:.1f} с "
                        f"(попытка {attempt + 1}/{self._retry_count + 1}): {last_error}",
                        type_msg=TypeMsg.WARNING,
                    )
                    await self._sleep(delay)

                try:
                    response = await asyncio.wait_for(request_fn(http), timeout=self._timeout)
                except (asyncio.TimeoutError, httpx.TimeoutException):
                    last_error = ServiceTimeoutError(
                        f"Сервис {service_name} не ответил за {self._timeout:.1f} с",
                        service_name=service_name,
                    )
                    continue
                except httpx.RequestError as e:
                    # Транспорт, декодирование ответа, цикл редиректов
                    last_error = TransientCallError(
                        f"Сервис {service_name} недоступен: {e!r}",
                        service_name=service_name,
                    )
                    continue

                if self.is_transient_status(response.status_code):
                    last_error = TransientCallError(
                        f"Сервис {service_name} ответил {response.status_code}",
                        service_name=service_name,
                        status_code=response.status_code,
                    )
                    continue

                if response.status_code >= 400:
                    raise BusinessError(
                        f"Сервис {service_name} отклонил запрос: {response.status_code}",
                        status_code=response.status_code,
                        service_name=service_name,
                        body=response.text,
                    )

                await self._on_success(service_name, breaker)
                return response
        except asyncio.CancelledError:
            # Отмена вызывающей стороной не является сбоем сервиса
            breaker.release()
            raise
        except Exception:
            # 4xx и ошибки в request_fn: ни успех, ни сбой
            breaker.release()
            raise

        await self._on_failure(service_name, breaker, last_error)
        raise last_error  # type: ignore

    async def _on_success(self, service_name: str, breaker: CircuitBreaker) -> None:
        await breaker.record_success()
        if self._registry.health_of(service_name) != ServiceHealthStatus.HEALTHY:
            await self._registry.update_health(service_name, ServiceHealthStatus.HEALTHY)

    async def _on_failure(
        self,
        service_name: str,
        breaker: CircuitBreaker,
        error: TransientCallError | None,
    ) -> None:
        await log_warning(
            f"Вызов {service_name} не удался после {self._retry_count + 1} попыток: {error}",
            extra={"service": service_name},
        )
        await breaker.record_failure()
        # UNHEALTHY выставляет сам автомат при размыкании
        if breaker.state == CircuitState.CLOSED:
            await self._registry.update_health(service_name, ServiceHealthStatus.DEGRADED)

    async def aclose(self) -> None:
        """Закрывает все HTTP-клиенты."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()


# =============================================================================
# ГЛОБАЛЬНЫЙ ЭКЗЕМПЛЯР
# =============================================================================

_client: ResilientClient | None = None


def get_resilient_client() -> ResilientClient:
    """Возвращает клиент процесса, собранный из конфигурации."""
    global _client
    if _client is None:
        from src.config import settings
        from src.core.discovery.registry import get_service_registry

        registry = get_service_registry()
        resilience = settings.resilience
        _client = ResilientClient(
            registry=registry,
            breakers=CircuitBreakerRegistry(
                failure_threshold=resilience.CIRCUIT_FAILURE_THRESHOLD,
                break_duration=resilience.CIRCUIT_BREAK_DURATION,
                registry=registry,
            ),
            retry_count=resilience.RETRY_COUNT,
            backoff_base=resilience.RETRY_BACKOFF_BASE,
            timeout=resilience.REQUEST_TIMEOUT,
            transient_status_codes=resilience.TRANSIENT_STATUS_CODES,
        )
    return _client


async def close_resilient_client() -> None:
    """Закрывает глобальный клиент."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
