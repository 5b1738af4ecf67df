"""
AutomationScheduler - планировщик одной автоматизации.

Хранит все таймеры, интервалы и задачи, созданные автоматизацией,
чтобы destroy() мог гарантированно их снять.

Типы задач:
- timeout  - однократный вызов через N секунд (asyncio.TimerHandle)
- interval - периодический вызов каждые N секунд (asyncio.Task)
- run_at   - однократный вызов в заданное время (очередь, опрос раз в queue_poll_interval)
- each_minute - async вызов на каждой смене минуты (опрос раз в minute_poll_interval)

Два опрашивающих цикла (очередь и минуты) - обычные интервалы,
снимаются в destroy() вместе с остальными.
"""

import asyncio
import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from core.ids import new_id
from core.logger_helper import debug
from core.models import DelayedTask, EachMinuteTask, TaskCallback
from core.utils.operation import call_isolated, operation


Clock = Callable[[], datetime]


class AutomationScheduler:
    """
    Планировщик задач одной автоматизации.

    Все вызовы происходят в event loop runtime; потоков нет.
    """

    def __init__(
        self,
        runtime: Optional[Any] = None,
        owner: str = "",
        clock: Optional[Clock] = None,
        queue_poll_interval: float = 1.0,
        minute_poll_interval: float = 0.5,
    ):
        """
        Args:
            runtime: экземпляр CoreRuntime (для логирования)
            owner: имя автоматизации-владельца (для логов)
            clock: источник текущего времени (по умолчанию datetime.now)
            queue_poll_interval: период опроса очереди run_at (секунды)
            minute_poll_interval: период проверки смены минуты (секунды)
        """
        self._runtime = runtime
        self._owner = owner
        self._clock: Clock = clock or datetime.now
        self._queue_poll_interval = queue_poll_interval
        self._minute_poll_interval = minute_poll_interval

        self._timeouts: list[asyncio.TimerHandle] = []
        self._intervals: list[asyncio.Task] = []
        self._queue: list[DelayedTask] = []
        self._each_minutes: list[EachMinuteTask] = []
        self._last_minute = self._clock().minute

    def start(self) -> None:
        """Запустить циклы опроса очереди run_at и смены минуты."""
        self.set_interval(self.check_queue, self._queue_poll_interval)
        self.set_interval(self.check_each_minute, self._minute_poll_interval)

    # ------------------------------------------------------------------
    # Timeouts / intervals
    # ------------------------------------------------------------------

    def set_timeout(self, callback: Callable[[], Any], seconds: float) -> asyncio.TimerHandle:
        """
        Вызвать callback один раз через seconds секунд.

        Returns:
            handle для clear_timeout()
        """
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def _fire() -> None:
            # Сработавший таймер больше не отслеживаем
            if handle in self._timeouts:
                self._timeouts.remove(handle)
            call_isolated(self._runtime, callback, name="timeout", component="scheduler", automation=self._owner)

        handle = loop.call_later(seconds, _fire)
        self._timeouts.append(handle)
        return handle

    def clear_timeout(self, handle: asyncio.TimerHandle) -> None:
        """Отменить timeout и убрать его из отслеживания."""
        handle.cancel()
        if handle in self._timeouts:
            self._timeouts.remove(handle)

    def set_interval(self, callback: Callable[[], Any], seconds: float) -> asyncio.Task:
        """
        Вызывать callback каждые seconds секунд.

        Async callback дожидается завершения до следующего тика,
        так что тики одного интервала не перекрываются.

        Returns:
            handle для clear_interval()
        """
        task = asyncio.create_task(self._interval_loop(callback, seconds))
        self._intervals.append(task)
        return task

    async def _interval_loop(self, callback: Callable[[], Any], seconds: float) -> None:
        while True:
            await asyncio.sleep(seconds)
            await self._invoke(callback, "interval")

    def clear_interval(self, handle: asyncio.Task) -> None:
        """Отменить interval и убрать его из отслеживания."""
        handle.cancel()
        if handle in self._intervals:
            self._intervals.remove(handle)

    async def _invoke(self, callback: Callable[[], Any], name: str) -> None:
        """Вызвать callback (sync или async), изолируя ошибки."""
        with operation(name, self._runtime, component="scheduler", automation=self._owner):
            result = callback()
            if inspect.isawaitable(result):
                await result

    # ------------------------------------------------------------------
    # run_at
    # ------------------------------------------------------------------

    def run_at(self, when: datetime, callback: TaskCallback) -> str:
        """
        Выполнить callback в заданное время.

        Время в прошлом - задача выполнится на ближайшем опросе.
        Aware datetime приводится к локальному naive времени.

        Returns:
            id задачи для clear_run_at()
        """
        if when.tzinfo is not None:
            when = when.astimezone().replace(tzinfo=None)
        task = DelayedTask(id=new_id("run_at"), run_at=when, callback=callback)
        self._queue.append(task)
        return task.id

    def clear_run_at(self, task_id: str) -> None:
        """Отменить задачу run_at. Уже выполненная или неизвестная - no-op."""
        self._queue = [task for task in self._queue if task.id != task_id]

    async def check_queue(self) -> None:
        """
        Выполнить все задачи, время которых наступило.

        Просроченные задачи не пропускаются, независимо от опоздания опроса.
        Задача удаляется из очереди ДО вызова: повторного срабатывания нет,
        а отмена ещё не вызванной задачи из соседнего callback'а соблюдается.
        """
        now = self._clock()
        while True:
            due = next((task for task in self._queue if now >= task.run_at), None)
            if due is None:
                return
            self._queue = [task for task in self._queue if task is not due]
            await self._invoke(due.callback, "run_at")

    @property
    def pending_tasks(self) -> list[str]:
        """id задач run_at, ожидающих выполнения."""
        return [task.id for task in self._queue]

    # ------------------------------------------------------------------
    # each_minute
    # ------------------------------------------------------------------

    def set_each_minute(self, callback: Callable[[], Awaitable[None]]) -> str:
        """
        Вызывать async callback один раз на каждой смене минуты.

        Returns:
            id для clear_each_minute()
        """
        task = EachMinuteTask(id=new_id("each_minute"), callback=callback)
        self._each_minutes.append(task)
        return task.id

    def clear_each_minute(self, task_id: str) -> None:
        """Отменить вызов каждую минуту. Неизвестный id - no-op."""
        self._each_minutes = [task for task in self._each_minutes if task.id != task_id]

    def check_each_minute(self) -> None:
        """Если минута сменилась - вызвать все callback'и, независимо друг от друга."""
        current = self._clock().minute
        if current == self._last_minute:
            return
        self._last_minute = current

        for task in list(self._each_minutes):
            call_isolated(self._runtime, task.callback, name="each_minute", component="scheduler", automation=self._owner)

    # ------------------------------------------------------------------
    # Cleanup (вызывается из Automation.destroy)
    # ------------------------------------------------------------------

    def clear_all_timeouts(self) -> None:
        for handle in reversed(list(self._timeouts)):
            debug(self._runtime, f"Destroying timeout {handle}", component="scheduler", automation=self._owner)
            with operation("destroy.timeout", self._runtime, component="scheduler", automation=self._owner):
                self.clear_timeout(handle)

    def clear_all_intervals(self) -> None:
        for handle in reversed(list(self._intervals)):
            debug(self._runtime, f"Destroying interval {handle.get_name()}", component="scheduler", automation=self._owner)
            with operation("destroy.interval", self._runtime, component="scheduler", automation=self._owner):
                self.clear_interval(handle)

    def clear_queue(self) -> None:
        for task in reversed(list(self._queue)):
            debug(self._runtime, f"Destroying queue {task.id}", component="scheduler", automation=self._owner)
            self.clear_run_at(task.id)

    def clear_each_minutes(self) -> None:
        self._each_minutes = []

    @property
    def active_counts(self) -> dict[str, int]:
        """Количество активных timeouts/intervals/run_at/each_minute."""
        return {
            "timeouts": len(self._timeouts),
            "intervals": len(self._intervals),
            "queue": len(self._queue),
            "each_minute": len(self._each_minutes),
        }
