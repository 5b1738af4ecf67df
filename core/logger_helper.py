"""
Logger Helper - простой wrapper для логирования в core компонентах.

Компоненты ядра (broker, scheduler, manager) получают runtime и пишут логи через:
    log_error(runtime, "message", component="state_broker", entity_id="light.kitchen")

Использует RuntimeLogger из runtime.logger.
Fallback на stderr - только для случаев, когда runtime ещё не создан
(или компонент создан в тестах без runtime).
"""

import sys
from typing import Optional, Any


def log(runtime: Optional[Any], level: str, message: str, **context: Any) -> None:
    """
    Записать лог сообщение через RuntimeLogger.

    Args:
        runtime: экземпляр CoreRuntime (если None - используется print как fallback)
        level: уровень логирования (debug, info, warning, error)
        message: сообщение
        **context: дополнительный контекст
    """
    # Нормализуем уровень
    level = (level or "info").lower()
    if level not in ("debug", "info", "warning", "error"):
        level = "info"

    logger = getattr(runtime, "logger", None) if runtime is not None else None
    if logger is not None:
        try:
            logger.log(level, message, **context)
            return
        except Exception:
            # Если logger сломан - fallback на print
            pass

    # Fallback только для случаев до инициализации runtime
    if level == "debug":
        return
    log_message = f"[{level.upper()}] {message}"
    if context:
        log_message += f" {context}"
    print(log_message, file=sys.stderr)


def debug(runtime: Optional[Any], message: str, **context: Any) -> None:
    """Логировать debug сообщение."""
    log(runtime, "debug", message, **context)


def info(runtime: Optional[Any], message: str, **context: Any) -> None:
    """Логировать info сообщение."""
    log(runtime, "info", message, **context)


def warning(runtime: Optional[Any], message: str, **context: Any) -> None:
    """Логировать warning сообщение."""
    log(runtime, "warning", message, **context)


def error(runtime: Optional[Any], message: str, **context: Any) -> None:
    """Логировать error сообщение."""
    log(runtime, "error", message, **context)
