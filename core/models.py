"""
Модели данных ядра: состояние сущности, подписки, отложенные задачи.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Разобрать ISO-время Home Assistant (или вернуть datetime как есть)."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        # Home Assistant отдаёт "+00:00", но на всякий случай принимаем и "Z"
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


@dataclass
class EntityState:
    """
    Состояние сущности Home Assistant.

    Заменяется в кэше целиком при каждом событии state_changed.
    """
    entity_id: str
    state: str
    attributes: dict[str, Any] = field(default_factory=dict)
    last_changed: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EntityState":
        """
        Создать состояние из payload Home Assistant.

        Raises:
            ValueError: если в payload нет entity_id
        """
        entity_id = data.get("entity_id")
        if not entity_id:
            raise ValueError(f"state payload without entity_id: {data!r}")
        return cls(
            entity_id=entity_id,
            state=str(data.get("state", "")),
            attributes=dict(data.get("attributes") or {}),
            last_changed=_parse_timestamp(data.get("last_changed")),
            last_updated=_parse_timestamp(data.get("last_updated")),
        )

    @property
    def friendly_name(self) -> str:
        return self.attributes.get("friendly_name") or self.entity_id


# Обработчик изменения состояния: (new_state, old_state)
StateCallback = Callable[[EntityState, Optional[EntityState]], Optional[Awaitable[None]]]
# Обработчик срабатывания автоматизации HA: без аргументов
TriggerCallback = Callable[[], Optional[Awaitable[None]]]
# Отложенная задача: синхронная или async функция без аргументов
TaskCallback = Callable[[], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class Subscription:
    """Информация о подписке, возвращаемая брокером."""
    id: str
    entity_id: str


@dataclass
class Listener:
    """Запись в реестре слушателей брокера."""
    id: str
    callback: Callable[..., Any]


@dataclass
class DelayedTask:
    """Одноразовая задача на конкретное время (run_at)."""
    id: str
    run_at: datetime
    callback: TaskCallback


@dataclass
class EachMinuteTask:
    """Задача, вызываемая один раз на каждой смене минуты."""
    id: str
    callback: Callable[[], Awaitable[None]]
