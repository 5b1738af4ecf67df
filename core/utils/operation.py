"""
Helper для вызова пользовательского кода с чёткими границами (operation boundaries).

Любая ошибка внутри границы логируется и НЕ пробрасывается дальше:
один упавший обработчик не должен ломать остальных.
"""

import asyncio
import inspect
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Optional

from core.logger_helper import error as log_error


# Ссылки на фоновые задачи, чтобы их не собрал GC до завершения
_background_tasks: set[asyncio.Task] = set()


@contextmanager
def operation(name: str, runtime: Optional[Any] = None, **context: Any):
    """
    Context manager для изолированного шага.

    При ошибке:
    - Записывает лог "<name> failed" с текстом исключения
    - НЕ пробрасывает исключение

    Args:
        name: имя операции (например, "destroy.clear_timeout")
        runtime: экземпляр CoreRuntime (опционально, для логирования)
        **context: дополнительный контекст для лога

    Example:
        with operation("destroy.unsubscribe_state", runtime, automation="Hallway"):
            broker.clear_on_state(entity_id, sub_id)
    """
    try:
        yield
    except Exception as e:
        log_error(
            runtime,
            f"{name} failed: {type(e).__name__}: {e}",
            error=str(e),
            error_type=type(e).__name__,
            **context,
        )


def spawn(runtime: Optional[Any], awaitable: Awaitable[Any], name: str, **context: Any) -> asyncio.Task:
    """
    Запустить awaitable как фоновую задачу; ошибка задачи логируется.

    Args:
        runtime: экземпляр CoreRuntime (для логирования)
        awaitable: корутина или future
        name: имя операции для лога
        **context: дополнительный контекст для лога

    Returns:
        созданная задача
    """
    task = asyncio.ensure_future(awaitable)
    _background_tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            log_error(
                runtime,
                f"{name} failed: {type(exc).__name__}: {exc}",
                error=str(exc),
                error_type=type(exc).__name__,
                **context,
            )

    task.add_done_callback(_done)
    return task


def call_isolated(
    runtime: Optional[Any],
    callback: Callable[..., Any],
    *args: Any,
    name: str = "callback",
    **context: Any,
) -> bool:
    """
    Вызвать обработчик синхронно, изолируя его ошибки.

    Если обработчик вернул awaitable (async функция), он запускается фоновой
    задачей - диспетчеризация не ждёт его завершения.

    Returns:
        True если синхронная часть обработчика отработала без исключения
    """
    with operation(name, runtime, **context):
        result = callback(*args)
        if inspect.isawaitable(result):
            spawn(runtime, result, name, **context)
        return True
    return False
