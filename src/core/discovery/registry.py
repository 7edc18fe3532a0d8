# src/core/discovery/registry.py
"""
Реестр сервисов.

Хранит в памяти соответствие «логическое имя сервиса -> базовый адрес + здоровье».
Адреса берутся из регистраций во время работы, а при их отсутствии
из конфигурации (SERVICE_REGISTRY). Все изменения защищены блокировкой
и видны сразу всем вызывающим.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import httpx
from pydantic import BaseModel, Field, field_validator

from src.common.constants import HEALTH_PATH, TypeMsg
from src.common.errors import NotFoundError
from src.common.logger import log_info, log_warning
from src.shared.models.enums import ServiceHealthStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceDescriptor(BaseModel):
    """Запись реестра об одном сервисе."""

    name: str = Field(min_length=1)
    base_address: str = Field(min_length=1)
    health_status: ServiceHealthStatus = ServiceHealthStatus.UNKNOWN
    last_registered: datetime = Field(default_factory=_utcnow)
    last_health_check: datetime | None = None

    @field_validator("base_address")
    @classmethod
    def validate_base_address(cls, v: str) -> str:
        """Адрес должен быть абсолютным http(s) URL."""
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as e:
            raise ValueError(f"Некорректный адрес сервиса {v!r}: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"Адрес сервиса должен быть http(s) URL: {v!r}")
        return v.rstrip("/")


class ServiceRegistry:
    """
    Потокобезопасный реестр сервисов.

    Сервисы из конфигурации загружаются при создании со статусом UNKNOWN.
    """

    def __init__(
        self,
        configured: dict[str, str] | None = None,
        health_check_timeout: float = 2.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            configured: Статические адреса сервисов (имя -> URL)
            health_check_timeout: Таймаут активной проверки здоровья (секунды)
            http_client: Клиент для проверок (по умолчанию создаётся на каждую проверку)
        """
        self._lock = threading.Lock()
        self._configured: dict[str, str] = dict(configured or {})
        self._services: dict[str, ServiceDescriptor] = {}
        self._health_check_timeout = health_check_timeout
        self._http_client = http_client

        for name, address in self._configured.items():
            self._services[name] = ServiceDescriptor(
                name=name,
                base_address=address,
                health_status=ServiceHealthStatus.UNKNOWN,
            )

    # =========================================================================
    # РЕГИСТРАЦИЯ
    # =========================================================================

    async def register(
        self,
        name: str,
        base_address: str,
        health_status: ServiceHealthStatus = ServiceHealthStatus.HEALTHY,
    ) -> ServiceDescriptor:
        """
        Регистрирует сервис или перезаписывает существующую запись.

        Args:
            name: Логическое имя сервиса
            base_address: Базовый URL сервиса
            health_status: Начальный статус здоровья

        Returns:
            Копия сохранённой записи

        Raises:
            ValueError: пустое имя или некорректный адрес
        """
        if not name or not base_address:
            raise ValueError("Имя сервиса и адрес не могут быть пустыми")

        now = _utcnow()
        descriptor = ServiceDescriptor(
            name=name,
            base_address=base_address.rstrip("/"),
            health_status=health_status,
            last_registered=now,
            last_health_check=None if health_status == ServiceHealthStatus.UNKNOWN else now,
        )
        with self._lock:
            self._services[name] = descriptor

        await log_info(
            f"Сервис {name} зарегистрирован: {descriptor.base_address} ({health_status})",
            type_msg=TypeMsg.INFO,
        )
        return descriptor.model_copy()

    async def update_health(self, name: str, status: ServiceHealthStatus) -> None:
        """
        Явно устанавливает статус здоровья сервиса.

        Raises:
            NotFoundError: сервис не зарегистрирован и не сконфигурирован
        """
        previous = self._set_health(name, status)
        if previous != status:
            await log_info(
                f"Здоровье сервиса {name}: {previous} -> {status}",
                type_msg=TypeMsg.WARNING if status == ServiceHealthStatus.UNHEALTHY else TypeMsg.INFO,
            )

    def _set_health(self, name: str, status: ServiceHealthStatus) -> ServiceHealthStatus:
        """Меняет статус под блокировкой и возвращает предыдущий."""
        with self._lock:
            descriptor = self._services.get(name)
            if descriptor is None:
                raise NotFoundError(f"Сервис '{name}' не найден в реестре", key=name)
            self._services[name] = descriptor.model_copy(
                update={"health_status": status, "last_health_check": _utcnow()}
            )
            return descriptor.health_status

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def get(self, name: str) -> ServiceDescriptor | None:
        """Возвращает копию записи или None."""
        with self._lock:
            descriptor = self._services.get(name)
            return descriptor.model_copy() if descriptor else None

    def get_base_address(self, name: str) -> str:
        """
        Возвращает базовый адрес сервиса.
        Сначала ищет регистрацию, затем конфигурацию.

        Raises:
            NotFoundError: адрес неизвестен
        """
        with self._lock:
            descriptor = self._services.get(name)
            if descriptor is not None:
                return descriptor.base_address

            configured = self._configured.get(name)
            if configured:
                self._services[name] = ServiceDescriptor(name=name, base_address=configured)
                return configured

        raise NotFoundError(f"Адрес сервиса '{name}' не найден", key=name)

    def health_of(self, name: str) -> ServiceHealthStatus:
        """Текущий статус здоровья (UNKNOWN для незнакомого сервиса)."""
        with self._lock:
            descriptor = self._services.get(name)
            return descriptor.health_status if descriptor else ServiceHealthStatus.UNKNOWN

    def list_all(self) -> list[ServiceDescriptor]:
        """Копии всех записей реестра."""
        with self._lock:
            return [d.model_copy() for d in self._services.values()]

    def addresses(self) -> dict[str, str]:
        """Словарь «имя -> базовый адрес»."""
        with self._lock:
            return {name: d.base_address for name, d in self._services.items()}

    # =========================================================================
    # АКТИВНАЯ ПРОВЕРКА
    # =========================================================================

    async def is_available(self, name: str) -> bool:
        """
        Выполняет GET {base}/health и обновляет статус здоровья.
        2xx -> HEALTHY, иначе UNHEALTHY. Никогда не бросает исключений.

        Returns:
            True если сервис ответил 2xx
        """
        try:
            base_address = self.get_base_address(name)
        except NotFoundError:
            await log_warning(f"Проверка здоровья: сервис {name} неизвестен")
            return False

        url = f"{base_address}{HEALTH_PATH}"
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, timeout=self._health_check_timeout)
            else:
                async with httpx.AsyncClient(timeout=self._health_check_timeout) as client:
                    response = await client.get(url)
            healthy = response.is_success
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            await log_warning(f"Проверка здоровья {name} ({url}) не удалась: {e}")
            healthy = False

        await self.update_health(
            name,
            ServiceHealthStatus.HEALTHY if healthy else ServiceHealthStatus.UNHEALTHY,
        )
        return healthy


# =============================================================================
# ГЛОБАЛЬНЫЙ ЭКЗЕМПЛЯР
# =============================================================================

_registry: ServiceRegistry | None = None


def get_service_registry() -> ServiceRegistry:
    """Возвращает реестр процесса, создавая его из конфигурации."""
    global _registry
    if _registry is None:
        from src.config import settings
        _registry = ServiceRegistry(
            configured=settings.service_registry.SERVICES,
            health_check_timeout=settings.service_registry.HEALTH_CHECK_TIMEOUT,
        )
    return _registry


def reset_service_registry() -> None:
    """Сбрасывает глобальный реестр при остановке сервиса."""
    global _registry
    _registry = None
