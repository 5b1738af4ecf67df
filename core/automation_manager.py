"""
AutomationManager - менеджер модулей автоматизаций.

Управляет жизненным циклом Automation:
- обнаружение файлов в каталоге automations/
- создание экземпляров
- наблюдение за каталогом и горячая перезагрузка

КОНТРАКТ RELOAD:
- add/change → сброс закэшированного модуля → destroy() старого экземпляра →
  удаление из реестра → создание нового экземпляра
- remove → destroy() старого экземпляра, без пересоздания
- Старый экземпляр полностью снимает подписки ДО того, как новый создаёт свои:
  событие на границе перезагрузки получает ровно один из них
- Не больше одного живого экземпляра на файл

КОНТРАКТ ОШИБОК:
- Ошибка импорта или конструктора логируется, слот остаётся пустым
- Ресурсы, которые успел зарегистрировать упавший конструктор, освобождаются
- Ошибка destroy() одного модуля не мешает остальным
"""

import importlib
import importlib.util
import inspect
import re
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from core.automation import Automation
from core.exceptions import AutomationLoadError
from core.file_watcher import FileWatcher
from core.logger_helper import debug, error as log_error, info, warning
from core.utils.operation import operation


class AutomationManager:
    """
    Менеджер модулей автоматизаций.

    Хранит только соответствие path -> экземпляр для перезагрузки и выгрузки;
    внутренности автоматизаций не трогает, кроме вызова destroy().
    """

    def __init__(
        self,
        runtime: Any,
        automations_dir: str,
        library_dir_name: str = "lib",
        extension: str = ".py",
        watch_interval: float = 1.0,
        watcher_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            runtime: экземпляр CoreRuntime (передаётся в конструктор автоматизаций)
            automations_dir: корневой каталог автоматизаций
            library_dir_name: зарезервированное имя каталога библиотек (также ".<имя>")
            extension: расширение файлов автоматизаций
            watch_interval: период опроса каталога (секунды)
            watcher_factory: фабрика наблюдателя (root, handler, interval, runtime) - для тестов
        """
        self._runtime = runtime
        self._root = Path(automations_dir).resolve()
        self._library_names = {library_dir_name.lstrip("."), "." + library_dir_name.lstrip(".")}
        self._extension = extension
        self._watch_interval = watch_interval
        self._watcher_factory = watcher_factory or FileWatcher
        self._watcher: Any = None
        self._automations: Dict[str, Automation] = {}

    @property
    def root(self) -> Path:
        return self._root

    async def bootstrap(self) -> None:
        """
        Загрузить все автоматизации и начать наблюдение за каталогом.

        Повторный вызов (после переподключения) загружает автоматизации заново,
        наблюдатель не дублируется.
        """
        if not self._root.is_dir():
            warning(self._runtime, f"Automations directory not found: {self._root}", component="automation_manager")
        else:
            # Автоматизации могут импортировать свои библиотеки: from lib.helpers import ...
            if str(self._root) not in sys.path:
                sys.path.insert(0, str(self._root))

            for path in sorted(self._root.rglob(f"*{self._extension}")):
                if self.is_eligible(path) and str(path) not in self._automations:
                    self.load(str(path))

        if self._watcher is None:
            self._watcher = self._watcher_factory(
                str(self._root), self.handle_file_event, self._watch_interval, self._runtime
            )
        self._watcher.start()
        info(
            self._runtime,
            f"Automations loaded: {len(self._automations)}",
            component="automation_manager",
        )

    def is_eligible(self, path: Any) -> bool:
        """
        Подходит ли файл для загрузки как автоматизация.

        - расширение совпадает с расширением модулей
        - файл не лежит в каталоге библиотек (lib/ или .lib/ на любом уровне)
        - не служебный файл (__init__.py и т.п.)
        """
        p = Path(path)
        if p.suffix != self._extension or p.name.startswith("__"):
            return False
        try:
            parts = p.resolve().relative_to(self._root).parts[:-1]
        except ValueError:
            # Вне каталога автоматизаций
            return False
        return not any(part in self._library_names for part in parts)

    def handle_file_event(self, event: str, path: str) -> None:
        """
        Обработать событие наблюдателя.

        Args:
            event: "add", "change" или "remove"
            path: путь к файлу
        """
        if not self.is_eligible(path):
            return
        path = str(Path(path).resolve())
        debug(self._runtime, f"Automation file {event}: {path}", component="automation_manager")

        self._invalidate(path)
        self.unload(path)
        if event in ("add", "change"):
            self.load(path)

    def load(self, path: str) -> Optional[Automation]:
        """
        Импортировать файл и создать экземпляр автоматизации.

        Returns:
            экземпляр или None, если загрузка не удалась (ошибка залогирована)
        """
        path = str(Path(path).resolve())
        if path in self._automations:
            # Не больше одного экземпляра на файл
            self.unload(path)

        try:
            automation_class = self._discover_automation(path)
        except AutomationLoadError as e:
            log_error(self._runtime, str(e), component="automation_manager", path=path)
            return None

        instance = self._create_instance(automation_class, path)
        if instance is None:
            return None

        self._automations[path] = instance
        instance.activate()
        return instance

    def unload(self, path: str) -> None:
        """Уничтожить экземпляр автоматизации для файла (если есть) и убрать его из реестра."""
        instance = self._automations.get(path)
        if instance is None:
            return
        debug(self._runtime, f"Unloading {path}", component="automation_manager")
        try:
            with operation("automation.destroy", self._runtime, component="automation_manager", path=path):
                instance.destroy()
        finally:
            del self._automations[path]

    async def unload_all(self) -> None:
        """Уничтожить все экземпляры; ошибка одного не мешает остальным."""
        for path in list(self._automations):
            self.unload(path)

    async def stop(self) -> None:
        """Выгрузить все автоматизации и остановить наблюдение."""
        await self.unload_all()
        if self._watcher is not None:
            await self._watcher.stop()

    def get_automation(self, path: str) -> Optional[Automation]:
        return self._automations.get(str(Path(path).resolve()))

    def list_automations(self) -> List[str]:
        return list(self._automations.keys())

    def _module_name(self, path: str) -> str:
        """Имя модуля в sys.modules для файла автоматизации."""
        try:
            relative = Path(path).relative_to(self._root).with_suffix("")
        except ValueError:
            relative = Path(path).with_suffix("")
        return "_automation_" + re.sub(r"\W", "_", relative.as_posix())

    def _invalidate(self, path: str) -> None:
        """Сбросить закэшированное определение модуля."""
        sys.modules.pop(self._module_name(path), None)
        importlib.invalidate_caches()

    def _discover_automation(self, path: str) -> type:
        """
        Импортировать файл и найти в нём класс автоматизации.

        Исходник компилируется напрямую (без .pyc), чтобы быстрое повторное
        сохранение файла никогда не подхватило устаревший байткод.

        Raises:
            AutomationLoadError: ошибка импорта, или классов Automation не ровно один
        """
        module_name = self._module_name(path)
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None:
            raise AutomationLoadError(f"Cannot load automation from {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            source = Path(path).read_text(encoding="utf-8")
            exec(compile(source, path, "exec"), module.__dict__)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise AutomationLoadError(f"Failed to import automation '{path}': {type(e).__name__}: {e}") from e

        classes = [
            obj for _, obj in inspect.getmembers(module, inspect.isclass)
            if issubclass(obj, Automation) and obj is not Automation and obj.__module__ == module_name
        ]
        if not classes:
            raise AutomationLoadError(f"No Automation subclass found in '{path}'")
        if len(classes) > 1:
            names = [cls.__name__ for cls in classes]
            raise AutomationLoadError(f"More than one Automation subclass in '{path}': {names}")
        return classes[0]

    def _create_instance(self, automation_class: type, path: str) -> Optional[Automation]:
        """
        Создать экземпляр автоматизации.

        Конструктор вызывается отдельно от __new__, чтобы при его падении
        можно было освободить уже зарегистрированные подписки и задачи.
        """
        instance = automation_class.__new__(automation_class)
        try:
            instance.__init__(self._runtime)
        except Exception as e:
            log_error(
                self._runtime,
                f"Failed to create automation {automation_class.__name__}: {type(e).__name__}: {e}",
                component="automation_manager",
                path=path,
            )
            with operation("automation.destroy_partial", self._runtime, component="automation_manager", path=path):
                instance.destroy()
            return None
        return instance
