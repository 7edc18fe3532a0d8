# src/common/errors.py
"""
Иерархия доменных исключений.

Исключения разделены по тому, как на них реагирует вызывающая сторона:
- TransientError: временный сбой, повторная попытка имеет смысл
- BusinessError: запрос отклонён по бизнес-правилам, повтор бесполезен
- CircuitOpenError: сервис временно отключён автоматом защиты
- DuplicateEventError: событие уже обработано (считается успехом)
"""

from __future__ import annotations

from typing import Any


class FreightError(Exception):
    """Базовое исключение платформы."""
    pass


class NotFoundError(FreightError):
    """Запрошенный объект (сервис, маршрут) не найден."""

    def __init__(self, message: str, *, key: Any = None) -> None:
        super().__init__(message)
        self.key = key


class BusinessError(FreightError):
    """
    Ошибка бизнес-логики или отказ удалённого сервиса с кодом 4xx.
    Не повторяется и не учитывается автоматом защиты.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 400,
        service_name: str | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.service_name = service_name
        self.body = body


class InvalidStatusTransitionError(BusinessError):
    """Недопустимый переход статуса маршрута."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Недопустимый переход статуса: {current} -> {target}",
            status_code=409,
        )
        self.current = current
        self.target = target


class CircuitOpenError(FreightError):
    """Автомат защиты разомкнут: вызов отклонён без сетевой попытки."""

    def __init__(self, service_name: str, retry_after: float = 0.0) -> None:
        super().__init__(
            f"Circuit для сервиса '{service_name}' разомкнут, "
            f"повтор через {retry_after:.1f} с"
        )
        self.service_name = service_name
        self.retry_after = retry_after


class DuplicateEventError(FreightError):
    """Событие уже зарегистрировано в журнале обработанных."""

    def __init__(self, event_id: Any) -> None:
        super().__init__(f"Событие {event_id} уже обработано")
        self.event_id = event_id


class TransientError(FreightError):
    """Временный сбой. Сообщение брокера должно быть доставлено повторно."""
    pass


class TransientCallError(TransientError):
    """Удалённый вызов не удался: сеть, 5xx, 408."""

    def __init__(
        self,
        message: str,
        *,
        service_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.service_name = service_name
        self.status_code = status_code


class ServiceTimeoutError(TransientCallError):
    """Удалённый вызов превысил таймаут."""
    pass


class PersistenceError(TransientError):
    """Сбой хранилища (потеря соединения, таймаут пула)."""
    pass


class PersistenceConflictError(PersistenceError):
    """Конфликт конкурентного обновления, не разрешённый повторами."""
    pass
