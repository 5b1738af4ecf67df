"""
Исключения Core Runtime.

Все ошибки ядра наследуются от RuntimeCoreError, чтобы вызывающий код
мог ловить их одной веткой.
"""

from typing import Optional


class RuntimeCoreError(Exception):
    """Базовая ошибка ядра."""


class EntityNotFoundError(RuntimeCoreError, LookupError):
    """Состояние сущности ещё ни разу не наблюдалось."""

    def __init__(self, entity_id: str):
        super().__init__(f"{entity_id} state not available")
        self.entity_id = entity_id


class StateWriteError(RuntimeCoreError, OSError):
    """HTTP запрос изменения состояния вернул неуспешный ответ."""

    def __init__(self, entity_id: str, status: int, reason: Optional[str]):
        super().__init__(
            f"Error when setting state for entity {entity_id} - {status} {reason or ''}".rstrip()
        )
        self.entity_id = entity_id
        self.status = status
        self.reason = reason


class ServiceCallError(RuntimeCoreError):
    """Home Assistant вернул success=false на запрос через websocket."""

    def __init__(self, code: Optional[str], message: Optional[str]):
        super().__init__(f"{code or 'unknown_error'}: {message or ''}".rstrip(": "))
        self.code = code
        self.message = message


class ConnectionClosedError(RuntimeCoreError):
    """Websocket недоступен, или запрос прерван разрывом соединения."""


class AuthenticationError(RuntimeCoreError):
    """Home Assistant отклонил токен (auth_invalid)."""


class AutomationLoadError(RuntimeCoreError):
    """Файл автоматизации не удалось импортировать или в нём нет класса автоматизации."""
