"""
FileWatcher - рекурсивное наблюдение за каталогом через опрос.

Раз в interval секунд сравнивает снимок (path -> mtime, size) с предыдущим
и сообщает о событиях "add", "change", "remove".
"""

import asyncio
import contextlib
import os
from pathlib import Path
from typing import Any, Callable, Optional

from core.logger_helper import debug
from core.utils.operation import operation


FileEventHandler = Callable[[str, str], Any]

Snapshot = dict[str, tuple[int, int]]


class FileWatcher:
    """
    Опрашивающий наблюдатель за деревом файлов.

    Обработчик вызывается в event loop, события одного опроса - последовательно:
    сначала remove, затем add, затем change (внутри группы - по пути).
    """

    def __init__(self, root: str, handler: FileEventHandler, interval: float = 1.0, runtime: Optional[Any] = None):
        """
        Args:
            root: каталог наблюдения
            handler: функция (event, path), event in {"add", "change", "remove"}
            interval: период опроса (секунды)
            runtime: экземпляр CoreRuntime (для логирования)
        """
        self._root = Path(root)
        self._handler = handler
        self._interval = interval
        self._runtime = runtime
        self._snapshot: Snapshot = {}
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def scan(self) -> Snapshot:
        """Снимок дерева: абсолютный путь -> (mtime_ns, size)."""
        snapshot: Snapshot = {}
        if not self._root.is_dir():
            return snapshot
        for dirpath, _dirnames, filenames in os.walk(self._root):
            for filename in filenames:
                path = os.path.join(dirpath, filename)
                try:
                    st = os.stat(path)
                except OSError:
                    # Файл удалён между walk и stat
                    continue
                snapshot[os.path.abspath(path)] = (st.st_mtime_ns, st.st_size)
        return snapshot

    def start(self) -> None:
        """Запомнить текущее состояние дерева и начать опрос."""
        if self.is_running:
            return
        self._snapshot = self.scan()
        self._task = asyncio.create_task(self._run())
        debug(self._runtime, f"Watching {self._root}", component="file_watcher")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            with operation("file_watcher.poll", self._runtime, component="file_watcher"):
                self.poll()

    def poll(self) -> list[tuple[str, str]]:
        """
        Сравнить дерево с предыдущим снимком и вызвать обработчик для каждого отличия.

        Returns:
            список событий (event, path) этого опроса
        """
        current = self.scan()
        previous = self._snapshot
        self._snapshot = current

        events: list[tuple[str, str]] = []
        events += [("remove", path) for path in sorted(previous.keys() - current.keys())]
        events += [("add", path) for path in sorted(current.keys() - previous.keys())]
        events += [
            ("change", path)
            for path in sorted(current.keys() & previous.keys())
            if current[path] != previous[path]
        ]

        for event, path in events:
            with operation("file_watcher.handler", self._runtime, component="file_watcher", path=path):
                self._handler(event, path)
        return events
