# src/services/__init__.py
"""
HTTP-сервисы приложения.

Архитектура:
- Каждый сервис является независимым FastAPI-приложением
- PostgreSQL хранит маршруты и журнал обработанных событий
- Коммуникация через RabbitMQ (события) и HTTP (синхронно, через ResilientClient)

Сервисы:
- route_service: маршруты, вместимость, жизненный цикл, обнаружение сервисов
"""

__all__: list[str] = []
