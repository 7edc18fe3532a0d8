# src/core/resilience/__init__.py
"""
Устойчивость межсервисных вызовов: автомат защиты, retry, таймауты.
"""

from src.core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerSnapshot,
)
from src.core.resilience.client import (
    ResilientClient,
    get_resilient_client,
    close_resilient_client,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerSnapshot",
    "ResilientClient",
    "get_resilient_client",
    "close_resilient_client",
]
