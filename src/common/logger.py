# src/common/logger.py
"""
Структурированное логирование сервиса маршрутов.

Консольный вывод в JSON или цветном виде, общий файловый хендлер с ротацией
по размеру и отдельный файл ошибок. Идентификаторы маршрута, бронирования
и события поднимаются в JSON на верхний уровень, чтобы по ним можно было
фильтровать записи без разбора поля extra.
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from src.common.constants import DEFAULT_LOGGER_NAME, TypeMsg


# =============================================================================
# ПАРАМЕТРЫ
# =============================================================================

# Ключи extra, которые выносятся в запись отдельными полями
CONTEXT_KEYS: tuple[str, ...] = ("service", "route_id", "booking_id", "event_type", "handler")

_NOISY_LOGGERS: tuple[str, ...] = ("asyncpg", "aio_pika", "aiormq", "httpx", "uvicorn.access")


@dataclass(frozen=True)
class _LogOptions:
    level: str = "DEBUG"
    fmt: str = "colored"
    to_file: bool = False
    file_path: str = "logs/app.log"
    max_bytes: int = 10 * 1024 * 1024


def _read_options() -> _LogOptions:
    """Читает LoggingSettings; без конфигурации остаётся консольный DEBUG."""
    try:
        from src.config import settings
    except ImportError:
        return _LogOptions()

    cfg = settings.logging
    return _LogOptions(
        level=cfg.LOG_LEVEL,
        fmt=cfg.LOG_FORMAT,
        to_file=cfg.LOG_TO_FILE,
        file_path=cfg.LOG_FILE_PATH,
        max_bytes=cfg.LOG_MAX_BYTES,
    )


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    extra = getattr(record, "extra_data", None) or {}
    return {key: extra[key] for key in CONTEXT_KEYS if extra.get(key) is not None}


# =============================================================================
# ФОРМАТТЕРЫ И ХЕНДЛЕРЫ
# =============================================================================

class JsonFormatter(logging.Formatter):
    """Одна запись лога на строку JSON."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data: dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update(_context_of(record))

        if getattr(record, "extra_data", None):
            log_data["extra"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Читаемый вывод для консоли при локальном запуске."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    GRAY = "\033[90m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.GRAY)
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        extra = getattr(record, "extra_data", None) or {}

        parts = [f"{timestamp} {color}[{record.levelname}]{self.RESET}"]
        if extra.get("caller_function"):
            parts.append(
                f"{self.GRAY}[{extra.get('caller_module')}.{extra['caller_function']}() "
                f"{extra.get('caller_file')}:{extra.get('caller_line')}]{self.RESET}"
            )
        parts.append(record.getMessage())

        context = _context_of(record)
        if context:
            parts.append(self.GRAY + " ".join(f"{k}={v}" for k, v in context.items()) + self.RESET)

        message = " ".join(parts)
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class SizeRotatingFileHandler(RotatingFileHandler):
    """
    Пишет в <log_dir>/<logger_name>.log.

    При достижении max_bytes текущий файл переименовывается в
    <logger_name>_<дата>_<время>.log, запись продолжается в новый файл.
    Архивы не удаляются.
    """

    def __init__(self, log_dir: str, max_bytes: int, logger_name: str = "app", encoding: str = "utf-8"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.logger_name = logger_name

        super().__init__(
            filename=str(self.log_dir / f"{logger_name}.log"),
            maxBytes=max_bytes,
            backupCount=0,
            encoding=encoding,
        )

    def shouldRollover(self, record: logging.LogRecord) -> bool:
        if self.maxBytes <= 0:
            return False
        if self.stream is None:
            self.stream = self._open()
        self.stream.seek(0, 2)
        return self.stream.tell() >= self.maxBytes

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        archive = self.log_dir / f"{self.logger_name}_{timestamp}.log"

        if os.path.exists(self.baseFilename):
            try:
                os.rename(self.baseFilename, archive)
            except OSError as e:
                sys.stderr.write(f"Не удалось ротировать лог {self.baseFilename}: {e}\n")

        self.stream = self._open()


def _formatter(fmt: str) -> logging.Formatter:
    return JsonFormatter() if fmt == "json" else ColoredFormatter()


# =============================================================================
# ЛОГГЕРЫ
# =============================================================================

_loggers: dict[str, logging.Logger] = {}

# Файловые хендлеры общие для всех логгеров процесса
_file_handler: logging.Handler | None = None
_error_handler: logging.Handler | None = None

_initialized = False


def setup_logging() -> None:
    """Создаёт логгер по умолчанию и приглушает библиотеки. Повторный вызов ничего не делает."""
    global _initialized

    if _initialized:
        return
    _initialized = True

    get_logger(DEFAULT_LOGGER_NAME)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _file_handlers(options: _LogOptions) -> list[logging.Handler]:
    global _file_handler, _error_handler

    log_path = Path(options.file_path)

    if _file_handler is None:
        # Процессы сервиса и воркера пишут в разные файлы
        name = log_path.stem
        service_name = os.getenv("SERVICE_NAME")
        if service_name:
            name = f"{name}_{service_name}"

        _file_handler = SizeRotatingFileHandler(str(log_path.parent), options.max_bytes, name)
        _file_handler.setFormatter(_formatter(options.fmt))

    if _error_handler is None:
        _error_handler = SizeRotatingFileHandler(str(log_path.parent), options.max_bytes, "error")
        _error_handler.setLevel(logging.ERROR)
        _error_handler.setFormatter(_formatter(options.fmt))

    return [_file_handler, _error_handler]


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Возвращает настроенный логгер из кэша или создаёт новый.

    Args:
        name: Имя логгера

    Returns:
        Логгер с консольным и, если включено, файловыми хендлерами
    """
    if name in _loggers:
        return _loggers[name]

    options = _read_options()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, str(options.level).upper(), logging.DEBUG))

    if not logger.handlers:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(_formatter(options.fmt))
        logger.addHandler(console)

        if options.to_file:
            for handler in _file_handlers(options):
                logger.addHandler(handler)

    logger.propagate = False
    _loggers[name] = logger
    return logger


# =============================================================================
# ФУНКЦИИ ЛОГИРОВАНИЯ
# =============================================================================

def _get_caller_info(depth: int = 2) -> dict[str, Any]:
    """
    Описывает фрейм на depth уровней выше текущего.

    Returns:
        caller_function, caller_module, caller_file, caller_line
        или пустой словарь, если стек короче
    """
    frame = inspect.currentframe()
    target = frame
    try:
        for _ in range(depth):
            if target is None:
                return {}
            target = target.f_back
        if target is None:
            return {}

        module = inspect.getmodule(target)
        filename = target.f_code.co_filename
        return {
            "caller_function": target.f_code.co_name,
            "caller_module": module.__name__ if module else "unknown",
            "caller_file": Path(filename).name if filename else "unknown",
            "caller_line": target.f_lineno,
        }
    finally:
        del frame
        del target


def _emit(
    level: int,
    message: str,
    logger_name: str,
    extra: dict[str, Any] | None,
    exc_info: bool = False,
) -> None:
    logger = get_logger(logger_name)
    # _emit -> log_* -> вызывающий код
    extra_data = {**_get_caller_info(depth=3), **(extra or {})}
    logger.log(level, message, extra={"extra_data": extra_data}, exc_info=exc_info)


_LEVELS: dict[TypeMsg, int] = {
    TypeMsg.DEBUG: logging.DEBUG,
    TypeMsg.INFO: logging.INFO,
    TypeMsg.WARNING: logging.WARNING,
    TypeMsg.ERROR: logging.ERROR,
    TypeMsg.CRITICAL: logging.CRITICAL,
}


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Основная точка логирования.

    Args:
        message: Текст записи
        type_msg: Уровень записи
        logger_name: Имя логгера
        extra: Контекст (route_id, booking_id, event_type и т.п.)
    """
    _emit(_LEVELS.get(type_msg, logging.INFO), message, logger_name, extra)


async def log_debug(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logging.DEBUG, message, logger_name, extra)


async def log_warning(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logging.WARNING, message, logger_name, extra)


async def log_error(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """Запись уровня ERROR; exc_info=True добавляет трейсбек текущего исключения."""
    _emit(logging.ERROR, message, logger_name, extra, exc_info=exc_info)
