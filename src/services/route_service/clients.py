# src/services/route_service/clients.py
"""
Клиенты соседних сервисов (грузовики, пользователи).

Все вызовы идут через ResilientClient. Если сервис недоступен или его автомат
защиты разомкнут, проверки возвращают результат по политике PEER_FAIL_OPEN
(по умолчанию True: операция не блокируется).
"""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from pydantic import ValidationError

from src.common.errors import BusinessError, CircuitOpenError, NotFoundError, TransientCallError
from src.common.logger import log_error, log_warning
from src.core.resilience.client import ResilientClient
from src.shared.models.route_dto import TruckCapacity


# Ошибки "сервис недоступен": к ним применяется политика fail-open
UNREACHABLE_ERRORS = (TransientCallError, CircuitOpenError, NotFoundError)


def _json_or_none(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class TruckServiceClient:
    """Клиент сервиса грузовиков."""

    SERVICE_NAME = "truck_service"

    def __init__(self, client: ResilientClient, fail_open: bool = True) -> None:
        self._client = client
        self._fail_open = fail_open

    async def verify_truck_ownership(self, truck_id: UUID, owner_id: UUID) -> bool:
        """
        Проверяет, что грузовик принадлежит владельцу.

        Returns:
            True для 2xx (если тело содержит isOwner, используется его значение),
            False для 4xx, политика fail-open если сервис недоступен
        """
        try:
            response = await self._client.execute(
                self.SERVICE_NAME,
                lambda http: http.get(f"/api/trucks/{truck_id}/owner/{owner_id}"),
            )
        except BusinessError as e:
            await log_warning(
                f"Проверка владения грузовиком {truck_id} (владелец {owner_id}) отклонена: {e.status_code}",
            )
            return False
        except UNREACHABLE_ERRORS as e:
            await log_warning(
                f"Сервис грузовиков недоступен при проверке владения {truck_id}: {e}; "
                f"fail_open={self._fail_open}",
            )
            return self._fail_open

        data = _json_or_none(response)
        if isinstance(data, dict) and "isOwner" in data:
            is_owner = bool(data["isOwner"])
            if not is_owner:
                await log_warning(
                    f"Проверка владения грузовиком {truck_id} (владелец {owner_id}) вернула isOwner=false",
                )
            return is_owner
        return True

    async def get_truck_capacity(self, truck_id: UUID) -> Optional[TruckCapacity]:
        """
        Получает вместимость грузовика.

        Returns:
            Вместимость или None (грузовик не найден, некорректный ответ)

        Raises:
            TransientCallError, CircuitOpenError: сервис грузовиков недоступен
        """
        try:
            response = await self._client.execute(
                self.SERVICE_NAME,
                lambda http: http.get(f"/api/trucks/{truck_id}/capacity"),
            )
        except BusinessError as e:
            await log_warning(f"Вместимость грузовика {truck_id} не получена: {e.status_code}")
            return None

        data = _json_or_none(response)
        if data is None:
            await log_warning(f"Сервис грузовиков вернул пустой ответ для {truck_id}")
            return None

        try:
            return TruckCapacity.model_validate(data)
        except ValidationError as e:
            await log_error(f"Некорректный ответ вместимости для грузовика {truck_id}: {e}")
            return None


class UserServiceClient:
    """Клиент сервиса пользователей."""

    SERVICE_NAME = "user_service"

    def __init__(self, client: ResilientClient, fail_open: bool = True) -> None:
        self._client = client
        self._fail_open = fail_open

    async def validate_user_active(self, user_id: UUID, role: str = "TruckOwner") -> bool:
        """
        Проверяет, что пользователь активен и имеет роль.

        Returns:
            True для 2xx, False для 4xx, политика fail-open если сервис недоступен
        """
        try:
            await self._client.execute(
                self.SERVICE_NAME,
                lambda http: http.get(f"/api/users/validate/{user_id}/role/{role}"),
            )
        except BusinessError as e:
            await log_warning(f"Пользователь {user_id} не прошёл проверку роли {role}: {e.status_code}")
            return False
        except UNREACHABLE_ERRORS as e:
            await log_warning(
                f"Сервис пользователей недоступен при проверке {user_id}: {e}; fail_open={self._fail_open}",
            )
            return self._fail_open
        return True
