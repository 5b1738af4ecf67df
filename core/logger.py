"""
RuntimeLogger - централизованное логирование ядра.

Использует уровни стандартного модуля `logging` для фильтрации, выводит в stdout.
Формат логов:
- text (по умолчанию) - [LEVEL] [component] message (context)
- json - одна строка JSON на событие (для production / ELK / Loki)

Не меняет глобальное состояние logging (не трогает root logger).
"""

import json
import logging
import sys
from typing import Any, TextIO


LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class RuntimeLogger:
    """
    Логгер runtime.

    Вызовы синхронные: логирование происходит прямо в месте диспетчеризации
    событий, которое не должно ожидать I/O.
    """

    def __init__(self, level: str = "INFO", log_format: str = "text", stream: TextIO | None = None):
        self._log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
        self._log_format = log_format if log_format in ("text", "json") else "text"
        self._stream = stream

    @property
    def level(self) -> int:
        return self._log_level

    def log(self, level: str, message: str, **context: Any) -> None:
        """
        Записать сообщение.

        Args:
            level: уровень логирования (debug, info, warning, error)
            message: сообщение
            **context: дополнительный контекст (component, automation, entity_id и др.)
        """
        lvl = (level or "").lower()
        if lvl not in LEVEL_MAP:
            lvl = "info"

        # Лог ниже установленного уровня - пропускаем
        if LEVEL_MAP[lvl] < self._log_level:
            return

        stream = self._stream or sys.stdout
        component = context.pop("component", None)

        if self._log_format == "json":
            event: dict[str, Any] = {
                "level": lvl.upper(),
                "message": message,
            }
            if component:
                event["component"] = component
            safe_ctx: dict[str, Any] = {}
            for k, v in context.items():
                # базовые типы + dict/list (json сможет)
                if isinstance(v, (str, int, float, bool, type(None), dict, list)):
                    safe_ctx[k] = v
                else:
                    safe_ctx[k] = str(v)
            if safe_ctx:
                event["context"] = safe_ctx
            print(json.dumps(event, ensure_ascii=False, default=str), file=stream, flush=True)
            return

        parts = [f"[{lvl.upper()}]"]
        if component:
            parts.append(f"[{component}]")
        parts.append(message)
        important_context = {
            key: value for key, value in context.items()
            if isinstance(value, (str, int, float, bool, type(None)))
        }
        if important_context:
            context_str = " ".join(f"{k}={v}" for k, v in important_context.items())
            parts.append(f"({context_str})")
        print(" ".join(parts), file=stream, flush=True)

    def debug(self, message: str, **context: Any) -> None:
        self.log("debug", message, **context)

    def info(self, message: str, **context: Any) -> None:
        self.log("info", message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self.log("warning", message, **context)

    def error(self, message: str, **context: Any) -> None:
        self.log("error", message, **context)
