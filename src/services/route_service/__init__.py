# src/services/route_service/__init__.py
"""
Route Service: HTTP API маршрутов, обнаружение сервисов, клиенты соседних сервисов.
"""

from src.services.route_service.clients import TruckServiceClient, UserServiceClient

__all__ = ["TruckServiceClient", "UserServiceClient"]
