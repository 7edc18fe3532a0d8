# src/core/discovery/__init__.py
"""
Обнаружение сервисов: реестр адресов и здоровья.
"""

from src.core.discovery.registry import (
    ServiceDescriptor,
    ServiceRegistry,
    get_service_registry,
    reset_service_registry,
)

__all__ = [
    "ServiceDescriptor",
    "ServiceRegistry",
    "get_service_registry",
    "reset_service_registry",
]
