import asyncio
import io
import sys
import pathlib
from datetime import datetime, timedelta

import pytest

# Ensure repository root is on sys.path so packages (core, automations) import correctly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config import Config
from core.logger import RuntimeLogger
from core.mqtt_hub import MqttHub
from core.runtime import CoreRuntime


class FakeConnection:
    """Websocket Home Assistant в памяти: записывает запросы, события отдаются вручную."""

    def __init__(self):
        self.ready_callbacks = []
        self.close_callbacks = []
        self.states: list[dict] = []
        self.subscribed: list[str] = []
        self.handlers: dict[str, object] = {}
        self.service_calls: list[tuple] = []
        self.service_error: Exception | None = None
        self.get_states_error: Exception | None = None
        self.started = False
        self.stopped = False

    def on_ready(self, callback):
        self.ready_callbacks.append(callback)

    def on_close(self, callback):
        self.close_callbacks.append(callback)

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def subscribe_event(self, event_type, handler):
        self.subscribed.append(event_type)
        self.handlers[event_type] = handler
        return len(self.subscribed)

    async def call_service(self, domain, service, data=None):
        self.service_calls.append((domain, service, data))
        if self.service_error is not None:
            raise self.service_error
        return {"context": {"id": "ctx"}}

    async def get_states(self):
        if self.get_states_error is not None:
            raise self.get_states_error
        return list(self.states)

    async def emit_ready(self):
        for callback in list(self.ready_callbacks):
            await callback()

    async def emit_close(self):
        for callback in list(self.close_callbacks):
            await callback()

    def emit_event(self, event_type, data):
        self.handlers[event_type]({"event_type": event_type, "data": data})


class FakeRestClient:
    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.closed = False

    async def set_state(self, entity_id, body):
        self.calls.append((entity_id, body))
        return {"entity_id": entity_id, **body}

    async def close(self):
        self.closed = True


class FakeMqttHub(MqttHub):
    """MqttHub без сети: реестр подписок настоящий, publish записывается."""

    def __init__(self, runtime=None):
        super().__init__(runtime, host="broker.test")
        self.published: list[tuple] = []
        self.started = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))


class FakeWatcher:
    instances: list["FakeWatcher"] = []

    def __init__(self, root, handler, interval=1.0, runtime=None):
        self.root = root
        self.handler = handler
        self.interval = interval
        self.start_calls = 0
        self.stopped = False
        FakeWatcher.instances.append(self)

    def start(self):
        self.start_calls += 1

    async def stop(self):
        self.stopped = True


class ManualClock:
    """Часы, которые двигаются только вручную."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingLogger(RuntimeLogger):
    """RuntimeLogger, который запоминает записи (вывод в буфер)."""

    def __init__(self):
        super().__init__("DEBUG", "text", stream=io.StringIO())
        self.records: list[tuple[str, str, dict]] = []

    def log(self, level, message, **context):
        self.records.append((level, message, dict(context)))
        super().log(level, message, **context)

    def messages(self, level=None):
        return [m for lvl, m, _ in self.records if level is None or lvl == level]


async def drain(cycles: int = 5) -> None:
    """Дать отработать фоновым задачам (async слушателям)."""
    for _ in range(cycles):
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def isolated_imports(monkeypatch):
    """Каждый тест видит чистые sys.path и кэш модулей автоматизаций."""
    monkeypatch.setattr(sys, "path", list(sys.path))

    def _purge():
        for name in list(sys.modules):
            if name == "lib" or name.startswith("lib.") or name.startswith("_automation_"):
                del sys.modules[name]

    _purge()
    yield
    _purge()


@pytest.fixture
def clock():
    return ManualClock(datetime(2024, 5, 1, 10, 59, 30))


@pytest.fixture
def make_runtime(tmp_path, clock):
    """Фабрика CoreRuntime с фейковыми соединением, REST, MQTT и наблюдателем."""
    FakeWatcher.instances.clear()

    def _make(automations_dir=None, **overrides):
        config = Config(automations_dir=str(automations_dir or tmp_path), **overrides)
        return CoreRuntime(
            config=config,
            connection=FakeConnection(),
            rest_client=FakeRestClient(),
            mqtt=FakeMqttHub(),
            clock=clock,
            logger=RecordingLogger(),
            watcher_factory=FakeWatcher,
        )

    return _make


@pytest.fixture
def runtime(make_runtime):
    return make_runtime()
