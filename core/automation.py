"""
Базовый класс для модулей автоматизаций (Automation).

Automation - это горячо перезагружаемый модуль бизнес-логики
из каталога automations/. Каждый файл определяет один подкласс Automation.

КОНТРАКТ LIFECYCLE:
- __init__(runtime) - создаёт подписки и задачи; запускает два цикла опроса
- destroy() - снимает ВСЁ, что автоматизация создала, ровно один раз
- Порядок: CONSTRUCTED → ACTIVE → DESTROYED
- Из DESTROYED возврата нет: перезагрузка создаёт новый экземпляр

КОНТРАКТ OWNERSHIP:
- Автоматизация владеет только своими подписками и задачами
- Кэш состояний и реестры слушателей принадлежат StateBroker
- AutomationManager вызывает только destroy()

Пример:
    class HallwayLight(Automation):
        def __init__(self, runtime):
            super().__init__(runtime, "Hallway Light")
            self.on_state_change("input_boolean.litter_box", self.on_input_change)

        async def on_input_change(self, new_state, old_state):
            await self.light_turn_on("light.hallway_light", {"brightness": 150})
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Pattern, Union

from core.logger_helper import debug, error as log_error, info
from core.models import EntityState, StateCallback, Subscription, TaskCallback, TriggerCallback
from core.scheduler import AutomationScheduler
from core.utils.operation import operation


class AutomationState(Enum):
    """Состояния экземпляра автоматизации."""
    CONSTRUCTED = "constructed"
    ACTIVE = "active"
    DESTROYED = "destroyed"


class Automation:
    """
    Базовый класс автоматизации.

    Предоставляет подклассам:
    - подписки на состояния и срабатывания автоматизаций HA
    - timeouts / intervals / run_at / each_minute
    - доступ к состояниям и сервисам через StateBroker
    - MQTT publish/subscribe

    Всё созданное через эти методы снимается в destroy().
    """

    title: str = ""
    description: str = ""

    def __init__(self, runtime: Any, title: Optional[str] = None, description: Optional[str] = None):
        """
        Инициализация автоматизации.

        Args:
            runtime: экземпляр CoreRuntime (broker, mqtt, config, clock)
            title: человекочитаемое название
            description: описание
        """
        self.runtime = runtime
        self._broker = runtime.broker
        self._mqtt = getattr(runtime, "mqtt", None)
        self._state = AutomationState.CONSTRUCTED

        if title:
            self.title = title
        if description:
            self.description = description

        self._mqtt_subscriptions: list[tuple[str, str]] = []
        self._state_subscriptions: list[Subscription] = []
        self._automation_subscriptions: list[Subscription] = []

        config = getattr(runtime, "config", None)
        self._scheduler = AutomationScheduler(
            runtime,
            owner=self.name,
            clock=getattr(runtime, "clock", None),
            queue_poll_interval=getattr(config, "queue_poll_interval", 1.0),
            minute_poll_interval=getattr(config, "minute_poll_interval", 0.5),
        )

        if self.title:
            info(runtime, f'Loaded "{self.title}": {self.description}', component="automation")

        self._scheduler.start()

    @property
    def name(self) -> str:
        """Имя для логов: title или имя класса."""
        return self.title or self.__class__.__name__

    @property
    def state(self) -> AutomationState:
        return self._state

    def activate(self) -> None:
        """Перевести в ACTIVE (вызывается AutomationManager после регистрации)."""
        if self._state is AutomationState.CONSTRUCTED:
            self._state = AutomationState.ACTIVE

    # ------------------------------------------------------------------
    # Подписки
    # ------------------------------------------------------------------

    def on_state_change(self, entity_id: str, callback: StateCallback) -> Subscription:
        """Подписаться на изменение состояния сущности."""
        subscription = self._broker.on_state(entity_id, callback)
        self._state_subscriptions.append(subscription)
        return subscription

    def on_automation_trigger(self, entity_id: str, callback: TriggerCallback) -> Subscription:
        """Подписаться на срабатывание автоматизации Home Assistant."""
        subscription = self._broker.on_automation(entity_id, callback)
        self._automation_subscriptions.append(subscription)
        return subscription

    def on_concrete_state(self, entity_id: str, state: str, callback: StateCallback) -> Subscription:
        """
        Подписаться на конкретное значение состояния сущности.

        callback вызывается только если new_state.state == state.
        """
        def _filtered(new_state: EntityState, old_state: Optional[EntityState]) -> Any:
            if new_state.state == state:
                return callback(new_state, old_state)
            return None

        return self.on_state_change(entity_id, _filtered)

    # ------------------------------------------------------------------
    # MQTT
    # ------------------------------------------------------------------

    def mqtt_publish(self, topic: str, payload: Union[str, bytes], qos: int = 0, retain: bool = False) -> None:
        """Опубликовать сообщение в MQTT топик."""
        if self._mqtt is None:
            raise RuntimeError("MQTT is not configured")
        self._mqtt.publish(topic, payload, qos=qos, retain=retain)

    def mqtt_subscribe(self, topic: str, callback: Callable[[str, bytes], Any], qos: int = 0) -> Optional[str]:
        """
        Подписаться на MQTT топик.

        Ошибка подписки (например, MQTT не настроен) логируется и не пробрасывается.

        Returns:
            id подписки или None при ошибке
        """
        try:
            if self._mqtt is None:
                raise RuntimeError("MQTT is not configured")
            subscription_id = self._mqtt.subscribe(topic, callback, qos=qos)
        except Exception as e:
            log_error(self.runtime, f"MQTT subscribe to {topic} failed: {e}", component="automation", automation=self.name)
            return None
        self._mqtt_subscriptions.append((topic, subscription_id))
        return subscription_id

    # ------------------------------------------------------------------
    # Планировщик
    # ------------------------------------------------------------------

    def set_timeout(self, callback: Callable[[], Any], seconds: float) -> asyncio.TimerHandle:
        """Вызвать callback один раз через seconds секунд."""
        return self._scheduler.set_timeout(callback, seconds)

    def clear_timeout(self, handle: asyncio.TimerHandle) -> None:
        self._scheduler.clear_timeout(handle)

    def set_interval(self, callback: Callable[[], Any], seconds: float) -> asyncio.Task:
        """Вызывать callback каждые seconds секунд."""
        return self._scheduler.set_interval(callback, seconds)

    def clear_interval(self, handle: asyncio.Task) -> None:
        self._scheduler.clear_interval(handle)

    def run_at(self, when: datetime, callback: TaskCallback) -> str:
        """Выполнить callback (sync или async) в заданное время. Возвращает id задачи."""
        return self._scheduler.run_at(when, callback)

    def clear_run_at(self, task_id: str) -> None:
        self._scheduler.clear_run_at(task_id)

    def set_each_minute(self, callback: Callable[[], Awaitable[None]]) -> str:
        """Вызывать async callback на каждой смене минуты. Возвращает id."""
        return self._scheduler.set_each_minute(callback)

    def clear_each_minute(self, task_id: str) -> None:
        self._scheduler.clear_each_minute(task_id)

    # ------------------------------------------------------------------
    # Состояния и сервисы
    # ------------------------------------------------------------------

    def get_state(self, entity_id: str) -> EntityState:
        return self._broker.get_state(entity_id)

    async def set_state(self, entity_id: str, state: dict[str, Any]) -> None:
        await self._broker.set_state(entity_id, state)

    def search_entities(self, pattern: Union[str, Pattern[str]]) -> list[EntityState]:
        return self._broker.search_entities(pattern)

    async def call_service(
        self,
        domain: str,
        service: str,
        entity_id: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> Any:
        return await self._broker.call_service(domain, service, entity_id, data)

    async def light_turn_on(self, entity_id: str, data: Optional[dict[str, Any]] = None) -> Any:
        return await self.call_service("light", "turn_on", entity_id, data)

    async def light_turn_off(self, entity_id: str, data: Optional[dict[str, Any]] = None) -> Any:
        return await self.call_service("light", "turn_off", entity_id, data)

    async def light_toggle(self, entity_id: str) -> Any:
        return await self.call_service("light", "toggle", entity_id, {})

    async def switch_turn_on(self, entity_id: str) -> Any:
        return await self.call_service("switch", "turn_on", entity_id, {})

    async def switch_turn_off(self, entity_id: str) -> Any:
        return await self.call_service("switch", "turn_off", entity_id, {})

    async def switch_toggle(self, entity_id: str) -> Any:
        return await self.call_service("switch", "toggle", entity_id, {})

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------

    def destroy(self) -> None:
        """
        Снять все timeouts, intervals, задачи run_at, MQTT подписки,
        подписки на состояния и срабатывания, затем очистить each_minute.

        Каждый шаг изолирован: ошибка одного не прерывает остальные.
        Повторный вызов - no-op. Безопасен для частично сконструированного
        экземпляра (если __init__ подкласса упал).
        """
        if getattr(self, "_state", None) is AutomationState.DESTROYED:
            return
        scheduler: Optional[AutomationScheduler] = getattr(self, "_scheduler", None)
        runtime = getattr(self, "runtime", None)
        self._state = AutomationState.DESTROYED

        if scheduler is not None:
            with operation("destroy.timeouts", runtime, component="automation", automation=self.name):
                scheduler.clear_all_timeouts()
            with operation("destroy.intervals", runtime, component="automation", automation=self.name):
                scheduler.clear_all_intervals()
            with operation("destroy.queue", runtime, component="automation", automation=self.name):
                scheduler.clear_queue()

        for topic, subscription_id in getattr(self, "_mqtt_subscriptions", []):
            debug(runtime, f"Unsubscribing from mqtt topic: {topic} with id {subscription_id}", component="automation")
            with operation("destroy.mqtt", runtime, component="automation", automation=self.name, topic=topic):
                self._mqtt.unsubscribe(topic, subscription_id)
        self._mqtt_subscriptions = []

        for sub in getattr(self, "_state_subscriptions", []):
            with operation("destroy.state_subscription", runtime, component="automation", entity_id=sub.entity_id):
                self._broker.clear_on_state(sub.entity_id, sub.id)
        self._state_subscriptions = []

        for sub in getattr(self, "_automation_subscriptions", []):
            with operation("destroy.automation_subscription", runtime, component="automation", entity_id=sub.entity_id):
                self._broker.clear_on_automation(sub.entity_id, sub.id)
        self._automation_subscriptions = []

        if scheduler is not None:
            scheduler.clear_each_minutes()

        debug(runtime, f"Destroyed {self.name}", component="automation")
