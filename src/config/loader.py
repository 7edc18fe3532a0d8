# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Секретные данные и адреса хостов переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


def service_url_env_key(service_name: str) -> str:
    """Имя переменной окружения, переопределяющей адрес сервиса."""
    return f"{service_name.upper()}_URL"


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "freight_route_service"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "all"


class DeploymentSettings(BaseModel):
    """Настройки развертывания сервиса маршрутов."""
    SERVICE_NAME: str = "route_service"
    ROUTE_SERVICE_HOST: str = "0.0.0.0"
    ROUTE_SERVICE_PORT: int = 8083
    ROUTE_SERVICE_INSTANCES_COUNT: int = 1
    # Адрес, под которым сервис регистрирует себя в реестре
    ROUTE_SERVICE_PUBLIC_URL: str = "http://route_service:8083"
    WORKER_INSTANCES_COUNT: int = 1


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = True
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "route_service"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0
    # Повторы транзакции при serialization failure / deadlock
    DB_CONFLICT_RETRY_ATTEMPTS: int = 3
    DB_CONFLICT_RETRY_DELAY: float = 0.05

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "freight.events"
    RABBITMQ_QUEUE_PREFIX: str = "route_service"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @field_validator("RABBITMQ_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        env_pass = os.getenv("RABBITMQ_PASSWORD", "")
        if env_pass:
            return env_pass
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class ServiceRegistrySettings(BaseModel):
    """Статически сконфигурированные адреса сервисов."""
    SERVICES: dict[str, str] = Field(default_factory=dict)
    HEALTH_CHECK_TIMEOUT: float = 2.0

    @field_validator("SERVICES", mode="after")
    @classmethod
    def apply_env_overrides(cls, v: dict[str, str]) -> dict[str, str]:
        """Адрес сервиса можно переопределить переменной <NAME>_URL."""
        return {
            name: os.getenv(service_url_env_key(name), url)
            for name, url in v.items()
        }


class ResilienceSettings(BaseModel):
    """Параметры retry, таймаутов и автомата защиты."""
    RETRY_COUNT: int = Field(default=3, ge=0)
    RETRY_BACKOFF_BASE: float = Field(default=2.0, ge=0)
    REQUEST_TIMEOUT: float = Field(default=10.0, gt=0)
    CIRCUIT_FAILURE_THRESHOLD: int = Field(default=5, ge=1)
    CIRCUIT_BREAK_DURATION: float = Field(default=30.0, gt=0)
    # Коды ответа, считающиеся временным сбоем (в дополнение к 5xx)
    TRANSIENT_STATUS_CODES: list[int] = Field(default_factory=lambda: [408])
    # Поведение клиентов проверок при недоступности сервиса
    PEER_FAIL_OPEN: bool = True


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    service_registry: ServiceRegistrySettings = Field(default_factory=ServiceRegistrySettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты переопределяются из переменных окружения.
        """
        return cls.from_dict(load_config_json())

    @classmethod
    def from_dict(cls, config_data: dict[str, Any]) -> "Settings":
        """Раскладывает плоский словарь конфигурации по секциям."""
        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "freight_route_service"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                LOG_LEVEL=data.get("LOG_LEVEL", "DEBUG"),
                ENVIRONMENT=data.get("ENVIRONMENT", "development"),
                COMPONENT_MODE=os.getenv("COMPONENT_MODE", data.get("COMPONENT_MODE", "all")),
            ),
            deployment=DeploymentSettings(
                SERVICE_NAME=os.getenv("SERVICE_NAME", data.get("SERVICE_NAME", "route_service")),
                ROUTE_SERVICE_HOST=os.getenv("ROUTE_SERVICE_HOST", data.get("ROUTE_SERVICE_HOST", "0.0.0.0")),
                ROUTE_SERVICE_PORT=int(os.getenv("ROUTE_SERVICE_PORT", data.get("ROUTE_SERVICE_PORT", 8083))),
                ROUTE_SERVICE_INSTANCES_COUNT=data.get("ROUTE_SERVICE_INSTANCES_COUNT", 1),
                ROUTE_SERVICE_PUBLIC_URL=os.getenv(
                    "ROUTE_SERVICE_PUBLIC_URL",
                    data.get("ROUTE_SERVICE_PUBLIC_URL", "http://route_service:8083"),
                ),
                WORKER_INSTANCES_COUNT=data.get("WORKER_INSTANCES_COUNT", 1),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", True),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "json"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", data.get("DB_NAME", "route_service")),
                DB_USER=os.getenv("DB_USER", data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 5),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 20),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 60),
                DB_RETRY_ATTEMPTS=data.get("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=data.get("DB_RETRY_DELAY", 1.0),
                DB_CONFLICT_RETRY_ATTEMPTS=data.get("DB_CONFLICT_RETRY_ATTEMPTS", 3),
                DB_CONFLICT_RETRY_DELAY=data.get("DB_CONFLICT_RETRY_DELAY", 0.05),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_HOST=os.getenv("RABBITMQ_HOST", data.get("RABBITMQ_HOST", "localhost")),
                RABBITMQ_PORT=int(os.getenv("RABBITMQ_PORT", data.get("RABBITMQ_PORT", 5672))),
                RABBITMQ_USER=os.getenv("RABBITMQ_USER", data.get("RABBITMQ_USER", "guest")),
                RABBITMQ_PASSWORD=os.getenv("RABBITMQ_PASSWORD", data.get("RABBITMQ_PASSWORD", "guest")),
                RABBITMQ_VHOST=data.get("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=data.get("RABBITMQ_EXCHANGE", "freight.events"),
                RABBITMQ_QUEUE_PREFIX=data.get("RABBITMQ_QUEUE_PREFIX", "route_service"),
                RABBITMQ_PREFETCH_COUNT=data.get("RABBITMQ_PREFETCH_COUNT", 10),
            ),
            service_registry=ServiceRegistrySettings(
                SERVICES=data.get("SERVICE_REGISTRY", {}),
                HEALTH_CHECK_TIMEOUT=data.get("HEALTH_CHECK_TIMEOUT", 2.0),
            ),
            resilience=ResilienceSettings(
                RETRY_COUNT=data.get("RETRY_COUNT", 3),
                RETRY_BACKOFF_BASE=data.get("RETRY_BACKOFF_BASE", 2.0),
                REQUEST_TIMEOUT=data.get("REQUEST_TIMEOUT", 10.0),
                CIRCUIT_FAILURE_THRESHOLD=data.get("CIRCUIT_FAILURE_THRESHOLD", 5),
                CIRCUIT_BREAK_DURATION=data.get("CIRCUIT_BREAK_DURATION", 30.0),
                TRANSIENT_STATUS_CODES=data.get("TRANSIENT_STATUS_CODES", [408]),
                PEER_FAIL_OPEN=data.get("PEER_FAIL_OPEN", True),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
