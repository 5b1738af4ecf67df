"""
StateBroker - кэш состояний сущностей и реестры слушателей.

Единственный владелец:
- кэша состояний (entity_id -> EntityState)
- реестра слушателей state_changed (entity_id -> list[Listener])
- реестра слушателей automation_triggered (entity_id -> list[Listener])

Автоматизации только читают кэш и добавляют/удаляют слушателей через API брокера.

Lifecycle:
- connection "ready" → sync_states() → manager.bootstrap() → подписка на события
- connection "close" → manager.unload_all()
"""

import re
from typing import Any, Optional, Pattern, Union

from core.exceptions import EntityNotFoundError
from core.ids import new_id
from core.logger_helper import debug, error as log_error, info
from core.models import EntityState, Listener, StateCallback, Subscription, TriggerCallback
from core.utils.operation import call_isolated


STATE_CHANGED = "state_changed"
AUTOMATION_TRIGGERED = "automation_triggered"


class StateBroker:
    """
    Брокер состояний и событий Home Assistant.

    Один экземпляр на процесс; создаётся CoreRuntime и передаётся
    менеджеру автоматизаций и каждой автоматизации явно.
    """

    def __init__(self, runtime: Optional[Any] = None, connection: Any = None, rest_client: Any = None):
        """
        Args:
            runtime: экземпляр CoreRuntime (для логирования)
            connection: websocket соединение (get_states, subscribe_event, call_service)
            rest_client: клиент REST API (set_state)
        """
        self._runtime = runtime
        self._connection = connection
        self._rest = rest_client
        self._manager: Any = None

        self._states: dict[str, EntityState] = {}
        self._state_listeners: dict[str, list[Listener]] = {}
        self._automation_listeners: dict[str, list[Listener]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def bind(self, manager: Any) -> None:
        """
        Подключить брокер к событиям соединения.

        Args:
            manager: AutomationManager (bootstrap() при ready, unload_all() при close)
        """
        self._manager = manager
        self._connection.on_ready(self._handle_ready)
        self._connection.on_close(self._handle_close)

    async def _handle_ready(self) -> None:
        """Соединение готово: синхронизировать состояния, загрузить автоматизации, слушать события."""
        info(self._runtime, "Connection ready", component="state_broker")
        try:
            await self.sync_states()
        except Exception as e:
            log_error(
                self._runtime,
                f"State sync failed: {e}",
                component="state_broker",
                error_type=type(e).__name__,
            )
            return
        info(self._runtime, "States synced", component="state_broker", count=len(self._states))

        if self._manager is not None:
            await self._manager.bootstrap()

        await self._subscribe_events()

    async def _subscribe_events(self) -> None:
        for event_type, handler in (
            (STATE_CHANGED, self._on_state_changed_event),
            (AUTOMATION_TRIGGERED, self._on_automation_triggered_event),
        ):
            try:
                await self._connection.subscribe_event(event_type, handler)
            except Exception as e:
                log_error(
                    self._runtime,
                    f"Subscribe to {event_type} failed: {e}",
                    component="state_broker",
                    event_type=event_type,
                )

    async def _handle_close(self) -> None:
        """Соединение закрыто: выгрузить все автоматизации (они сами снимут своих слушателей)."""
        info(self._runtime, "Connection closed, unloading automations", component="state_broker")
        if self._manager is not None:
            await self._manager.unload_all()

    # ------------------------------------------------------------------
    # Состояния
    # ------------------------------------------------------------------

    async def sync_states(self) -> None:
        """
        Загрузить все состояния из Home Assistant, заменив кэш целиком.

        Raises:
            Exception: ошибка соединения пробрасывается вызывающему
        """
        raw_states = await self._connection.get_states()
        states: dict[str, EntityState] = {}
        for raw in raw_states or []:
            try:
                state = EntityState.from_dict(raw)
            except (ValueError, TypeError, AttributeError) as e:
                log_error(self._runtime, f"Skipping malformed state: {e}", component="state_broker")
                continue
            states[state.entity_id] = state
        self._states = states

    def get_state(self, entity_id: str) -> EntityState:
        """
        Получить текущее состояние сущности из кэша.

        Raises:
            EntityNotFoundError: если сущность ни разу не наблюдалась
        """
        state = self._states.get(entity_id)
        if state is None:
            raise EntityNotFoundError(entity_id)
        return state

    async def set_state(self, entity_id: str, state: dict[str, Any]) -> None:
        """
        Изменить состояние сущности через REST API.

        Кэш НЕ обновляется: следующее событие state_changed является источником истины.

        Args:
            entity_id: сущность
            state: тело запроса, обязательно содержит ключ "state"

        Raises:
            ValueError: если в теле нет "state"
            StateWriteError: если Home Assistant вернул неуспешный ответ
        """
        if "state" not in state:
            raise ValueError("state body must contain 'state' key")
        await self._rest.set_state(entity_id, state)

    def search_entities(self, pattern: Union[str, Pattern[str]]) -> list[EntityState]:
        """
        Найти сущности, entity_id которых совпадает с шаблоном.

        Строка компилируется как регулярное выражение; поиск не заякорен
        (совпадение в любом месте entity_id).

        Returns:
            состояния в порядке кэша
        """
        exp = re.compile(pattern) if isinstance(pattern, str) else pattern
        return [state for state in self._states.values() if exp.search(state.entity_id)]

    @property
    def entity_ids(self) -> list[str]:
        """Список entity_id в кэше."""
        return list(self._states.keys())

    # ------------------------------------------------------------------
    # Сервисы
    # ------------------------------------------------------------------

    async def call_service(
        self,
        domain: str,
        service: str,
        entity_id: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Вызвать сервис Home Assistant.

        Ключ entity_id отсутствует в options, если entity_id=None
        (пустая строка передаётся как есть).

        Args:
            domain: домен, например "light"
            service: сервис, например "turn_on"
            entity_id: сущность или None
            data: дополнительные атрибуты сервиса

        Returns:
            результат от Home Assistant

        Raises:
            Exception: ошибка соединения/сервиса пробрасывается вызывающему
        """
        options: dict[str, Any] = {} if entity_id is None else {"entity_id": entity_id}
        if data:
            options.update(data)

        try:
            return await self._connection.call_service(domain, service, options)
        except Exception as e:
            log_error(
                self._runtime,
                f"Service {domain}.{service} failed: {e}",
                component="state_broker",
                entity_id=entity_id,
            )
            raise

    # ------------------------------------------------------------------
    # Слушатели
    # ------------------------------------------------------------------

    def on_state(self, entity_id: str, callback: StateCallback) -> Subscription:
        """
        Подписаться на изменение состояния сущности.

        Args:
            entity_id: сущность
            callback: функция (new_state, old_state), может быть async

        Returns:
            Subscription для последующей отписки
        """
        listener = Listener(id=new_id("state"), callback=callback)
        self._state_listeners.setdefault(entity_id, []).append(listener)
        return Subscription(id=listener.id, entity_id=entity_id)

    def on_automation(self, entity_id: str, callback: TriggerCallback) -> Subscription:
        """
        Подписаться на срабатывание автоматизации Home Assistant.

        Args:
            entity_id: entity_id автоматизации (automation.xxx)
            callback: функция без аргументов, может быть async

        Returns:
            Subscription для последующей отписки
        """
        listener = Listener(id=new_id("automation"), callback=callback)
        self._automation_listeners.setdefault(entity_id, []).append(listener)
        return Subscription(id=listener.id, entity_id=entity_id)

    def clear_on_state(self, entity_id: str, subscription_id: str) -> None:
        """Отписаться от изменения состояния. Неизвестный id - no-op."""
        self._remove_listener(self._state_listeners, entity_id, subscription_id)

    def clear_on_automation(self, entity_id: str, subscription_id: str) -> None:
        """Отписаться от срабатывания автоматизации. Неизвестный id - no-op."""
        self._remove_listener(self._automation_listeners, entity_id, subscription_id)

    @staticmethod
    def _remove_listener(registry: dict[str, list[Listener]], entity_id: str, subscription_id: str) -> None:
        listeners = registry.get(entity_id)
        if not listeners:
            return
        # Новый список: идущая диспетчеризация итерирует старый снимок
        remaining = [l for l in listeners if l.id != subscription_id]
        if remaining:
            registry[entity_id] = remaining
        else:
            del registry[entity_id]

    @staticmethod
    def _is_registered(registry: dict[str, list[Listener]], entity_id: str, listener: Listener) -> bool:
        return any(l is listener for l in registry.get(entity_id, ()))

    def get_listener_count(self, entity_id: str) -> int:
        """Количество слушателей state_changed для сущности."""
        return len(self._state_listeners.get(entity_id, []))

    def get_automation_listener_count(self, entity_id: str) -> int:
        """Количество слушателей automation_triggered для сущности."""
        return len(self._automation_listeners.get(entity_id, []))

    # ------------------------------------------------------------------
    # Диспетчеризация событий
    # ------------------------------------------------------------------

    def _on_state_changed_event(self, event: dict[str, Any]) -> None:
        self.handle_state_changed(event.get("data") or {})

    def _on_automation_triggered_event(self, event: dict[str, Any]) -> None:
        self.handle_automation_triggered(event.get("data") or {})

    def handle_state_changed(self, data: dict[str, Any]) -> None:
        """
        Обработать событие state_changed.

        Payload: {entity_id, new_state: dict|None, old_state: dict|None}.
        new_state=None игнорируется (ни кэша, ни слушателей).
        Кэш обновляется ДО вызова слушателей.
        """
        raw_new = data.get("new_state")
        if not raw_new:
            return
        try:
            new_state = EntityState.from_dict(raw_new)
            raw_old = data.get("old_state")
            old_state = EntityState.from_dict(raw_old) if raw_old else None
        except (ValueError, TypeError, AttributeError) as e:
            log_error(self._runtime, f"Malformed state_changed payload: {e}", component="state_broker")
            return

        entity_id = new_state.entity_id
        debug(
            self._runtime,
            f"New state of {new_state.friendly_name} ({entity_id}): {new_state.state}",
            component="state_broker",
        )
        self._states[entity_id] = new_state

        # Снимок: слушатели, добавленные во время диспетчеризации, получат только следующее событие
        for listener in list(self._state_listeners.get(entity_id, ())):
            # Слушатель, снятый во время диспетчеризации, больше не вызывается
            if not self._is_registered(self._state_listeners, entity_id, listener):
                continue
            call_isolated(
                self._runtime,
                listener.callback,
                new_state,
                old_state,
                name="state listener",
                component="state_broker",
                entity_id=entity_id,
            )

    def handle_automation_triggered(self, data: dict[str, Any]) -> None:
        """
        Обработать событие automation_triggered.

        Payload: {entity_id, name}. Слушатели вызываются без аргументов.
        """
        entity_id = data.get("entity_id")
        if not entity_id:
            return
        debug(
            self._runtime,
            f'Automation "{data.get("name")}" triggered ({entity_id})',
            component="state_broker",
        )

        for listener in list(self._automation_listeners.get(entity_id, ())):
            if not self._is_registered(self._automation_listeners, entity_id, listener):
                continue
            call_isolated(
                self._runtime,
                listener.callback,
                name="automation listener",
                component="state_broker",
                entity_id=entity_id,
            )
