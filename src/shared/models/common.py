# src/shared/models/common.py
"""
Модели ответов, общие для всех эндпоинтов Route Service.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.shared.models.enums import ServiceHealthStatus


class ErrorResponse(BaseModel):
    """Тело ответа обработчиков исключений: машинный код и текст ошибки."""

    error_code: str
    message: str
    details: dict[str, Any] | None = None


class HealthStatus(BaseModel):
    """Ответ /health. Статус DEGRADED, если недоступна хотя бы одна зависимость."""

    service: str
    status: ServiceHealthStatus = ServiceHealthStatus.HEALTHY
    version: str | None = None
    uptime_seconds: float | None = None
    dependencies: dict[str, ServiceHealthStatus] = Field(default_factory=dict)
