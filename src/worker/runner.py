# src/worker/runner.py
"""
Процесс воркеров: подписка обработчиков событий бронирования и ожидание остановки.
"""

from __future__ import annotations

import asyncio
from typing import List

from src.worker.base import BaseWorker
from src.worker.capacity import BookingCapacityWorker
from src.infra.database import init_db, close_db
from src.infra.event_bus import init_event_bus, close_event_bus
from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg


def build_workers() -> List[BaseWorker]:
    return [BookingCapacityWorker()]


async def run_workers(init_infra: bool = True) -> None:
    """
    Запускает воркеры и держит их до отмены задачи.

    Args:
        init_infra: Поднять пул БД и шину событий. В режиме 'all' их уже
                    инициализировал main.py, тогда передаётся False.

    Raises:
        Exception: ошибка запуска воркера; уже запущенные воркеры останавливаются
    """
    if init_infra:
        await log_info("Инициализация инфраструктуры для воркеров...", type_msg=TypeMsg.DEBUG)
        await init_db()
        await init_event_bus()

    workers = build_workers()
    started: List[BaseWorker] = []

    try:
        for worker in workers:
            await worker.start()
            started.append(worker)

        await log_info(
            f"Воркеры запущены: {', '.join(w.name for w in started)}",
            type_msg=TypeMsg.INFO,
        )

        while True:
            await asyncio.sleep(1)

    except asyncio.CancelledError:
        await log_info("Получен сигнал остановки воркеров", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Воркеры остановлены из-за ошибки: {e!r}", exc_info=True)
        raise
    finally:
        for worker in reversed(started):
            await worker.stop()

        if init_infra:
            await close_event_bus()
            await close_db()

        await log_info(f"Остановлено воркеров: {len(started)}", type_msg=TypeMsg.INFO)


def main() -> None:
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
