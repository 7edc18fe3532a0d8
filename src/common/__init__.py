# src/common/__init__.py
"""
Общие утилиты, константы, исключения и логгер.
"""

from src.common.logger import get_logger, log_info, log_error, log_warning, log_debug
from src.common.constants import TypeMsg, EventTypes
from src.common.errors import (
    FreightError,
    NotFoundError,
    BusinessError,
    InvalidStatusTransitionError,
    CircuitOpenError,
    DuplicateEventError,
    TransientError,
    TransientCallError,
    ServiceTimeoutError,
    PersistenceError,
    PersistenceConflictError,
)

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "EventTypes",
    "FreightError",
    "NotFoundError",
    "BusinessError",
    "InvalidStatusTransitionError",
    "CircuitOpenError",
    "DuplicateEventError",
    "TransientError",
    "TransientCallError",
    "ServiceTimeoutError",
    "PersistenceError",
    "PersistenceConflictError",
]
