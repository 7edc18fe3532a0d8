# src/core/__init__.py
"""
Доменный слой (Core Domain).
Бизнес-логика маршрутов, обнаружение сервисов и устойчивость вызовов.
"""
