"""
Тесты для AutomationManager: обнаружение, загрузка, горячая перезагрузка.
"""

import textwrap

import pytest

from core.automation import AutomationState

from conftest import FakeWatcher, drain


PROBE = """
from core.automation import Automation


class Probe(Automation):
    def __init__(self, runtime):
        super().__init__(runtime, "Probe {version}")
        self.on_state_change("sensor.probe", self.on_probe)

    def on_probe(self, new_state, old_state):
        self.runtime.received.append(("{version}", new_state.state))
"""


def write(path, source):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(source), encoding="utf-8")
    return path


def probe_event(state):
    return {
        "entity_id": "sensor.probe",
        "new_state": {"entity_id": "sensor.probe", "state": state, "attributes": {}},
        "old_state": None,
    }


@pytest.fixture
def rt(runtime):
    runtime.received = []
    return runtime


# ----------------------------------------------------------------------
# Обнаружение
# ----------------------------------------------------------------------


def test_is_eligible(rt, tmp_path):
    manager = rt.automations

    assert manager.is_eligible(tmp_path / "hallway.py")
    assert manager.is_eligible(tmp_path / "rooms" / "kitchen.py")
    assert not manager.is_eligible(tmp_path / "lib" / "helpers.py")
    assert not manager.is_eligible(tmp_path / "rooms" / "lib" / "helpers.py")
    assert not manager.is_eligible(tmp_path / "rooms" / ".lib" / "helpers.py")
    assert not manager.is_eligible(tmp_path / "__init__.py")
    assert not manager.is_eligible(tmp_path / "notes.txt")
    assert not manager.is_eligible(tmp_path.parent / "outside.py")
    # "library" - не зарезервированное имя
    assert manager.is_eligible(tmp_path / "library" / "x.py")


@pytest.mark.asyncio
async def test_bootstrap_loads_eligible_files_and_starts_watcher(rt, tmp_path):
    write(tmp_path / "probe.py", PROBE.format(version="v1"))
    write(tmp_path / "lib" / "probe_copy.py", PROBE.format(version="lib"))
    write(tmp_path / "notes.txt", "not python")

    await rt.automations.bootstrap()

    assert rt.automations.list_automations() == [str((tmp_path / "probe.py").resolve())]
    assert rt.automations.get_automation(tmp_path / "probe.py").state is AutomationState.ACTIVE
    assert len(FakeWatcher.instances) == 1
    watcher = FakeWatcher.instances[0]
    assert watcher.start_calls == 1
    assert watcher.handler == rt.automations.handle_file_event
    assert "Automations loaded: 1" in rt.logger.messages("info")
    await rt.automations.stop()


@pytest.mark.asyncio
async def test_bootstrap_twice_does_not_duplicate(rt, tmp_path):
    write(tmp_path / "probe.py", PROBE.format(version="v1"))

    await rt.automations.bootstrap()
    await rt.automations.bootstrap()

    assert len(rt.automations.list_automations()) == 1
    assert rt.broker.get_listener_count("sensor.probe") == 1
    assert len(FakeWatcher.instances) == 1
    await rt.automations.stop()
    assert FakeWatcher.instances[0].stopped


@pytest.mark.asyncio
async def test_bootstrap_with_missing_directory(make_runtime, tmp_path):
    runtime = make_runtime(automations_dir=tmp_path / "missing")

    await runtime.automations.bootstrap()

    assert runtime.automations.list_automations() == []
    assert any("not found" in m for m in runtime.logger.messages("warning"))


@pytest.mark.asyncio
async def test_automation_can_import_from_library(rt, tmp_path):
    write(tmp_path / "lib" / "helpers.py", "def double(x):\n    return x * 2\n")
    write(tmp_path / "uses_lib.py", """
        from core.automation import Automation
        from lib.helpers import double


        class UsesLib(Automation):
            def __init__(self, runtime):
                super().__init__(runtime, "Uses lib")
                self.value = double(21)
    """)

    await rt.automations.bootstrap()

    assert rt.automations.get_automation(tmp_path / "uses_lib.py").value == 42
    await rt.automations.stop()


# ----------------------------------------------------------------------
# Горячая перезагрузка
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_change_replaces_instance_and_exactly_one_receives_event(rt, tmp_path):
    path = write(tmp_path / "probe.py", PROBE.format(version="v1"))
    await rt.automations.bootstrap()
    old = rt.automations.get_automation(path)

    write(path, PROBE.format(version="v2"))
    rt.automations.handle_file_event("change", str(path))
    rt.broker.handle_state_changed(probe_event("on"))

    new = rt.automations.get_automation(path)
    assert new is not old
    assert old.state is AutomationState.DESTROYED
    assert new.title == "Probe v2"
    assert rt.received == [("v2", "on")]
    assert rt.broker.get_listener_count("sensor.probe") == 1
    await rt.automations.stop()


@pytest.mark.asyncio
async def test_add_event_loads_new_file(rt, tmp_path):
    await rt.automations.bootstrap()
    path = write(tmp_path / "probe.py", PROBE.format(version="v1"))

    rt.automations.handle_file_event("add", str(path))
    rt.broker.handle_state_changed(probe_event("on"))

    assert rt.received == [("v1", "on")]
    await rt.automations.stop()


@pytest.mark.asyncio
async def test_remove_event_unloads_without_reload(rt, tmp_path):
    path = write(tmp_path / "probe.py", PROBE.format(version="v1"))
    await rt.automations.bootstrap()

    path.unlink()
    rt.automations.handle_file_event("remove", str(path))
    rt.broker.handle_state_changed(probe_event("on"))

    assert rt.automations.list_automations() == []
    assert rt.broker.get_listener_count("sensor.probe") == 0
    assert rt.received == []


@pytest.mark.asyncio
async def test_events_for_library_files_are_ignored(rt, tmp_path):
    path = write(tmp_path / "lib" / "probe.py", PROBE.format(version="lib"))
    await rt.automations.bootstrap()

    rt.automations.handle_file_event("add", str(path))

    assert rt.automations.list_automations() == []


# ----------------------------------------------------------------------
# Ошибки загрузки
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_constructor_failure_leaves_no_trace(rt, tmp_path):
    write(tmp_path / "broken.py", """
        from core.automation import Automation


        class Broken(Automation):
            def __init__(self, runtime):
                super().__init__(runtime, "Broken")
                self.on_state_change("sensor.probe", lambda n, o: self.runtime.received.append("broken"))
                self.on_automation_trigger("automation.button", lambda: None)
                raise RuntimeError("constructor exploded")
    """)

    await rt.automations.bootstrap()
    rt.broker.handle_state_changed(probe_event("on"))

    assert rt.automations.list_automations() == []
    assert rt.broker.get_listener_count("sensor.probe") == 0
    assert rt.broker.get_automation_listener_count("automation.button") == 0
    assert rt.received == []
    assert any("constructor exploded" in m for m in rt.logger.messages("error"))


@pytest.mark.asyncio
async def test_failed_reload_leaves_slot_empty(rt, tmp_path):
    path = write(tmp_path / "probe.py", PROBE.format(version="v1"))
    await rt.automations.bootstrap()

    write(path, "this is not python(\n")
    rt.automations.handle_file_event("change", str(path))

    assert rt.automations.get_automation(path) is None
    assert rt.broker.get_listener_count("sensor.probe") == 0
    assert any("Failed to import automation" in m for m in rt.logger.messages("error"))

    write(path, PROBE.format(version="v3"))
    rt.automations.handle_file_event("change", str(path))
    assert rt.automations.get_automation(path).title == "Probe v3"
    await rt.automations.stop()


@pytest.mark.asyncio
async def test_file_without_automation_class(rt, tmp_path):
    path = write(tmp_path / "plain.py", "VALUE = 1\n")

    assert rt.automations.load(str(path)) is None
    assert any("No Automation subclass" in m for m in rt.logger.messages("error"))


@pytest.mark.asyncio
async def test_file_with_two_automation_classes(rt, tmp_path):
    path = write(tmp_path / "two.py", """
        from core.automation import Automation


        class First(Automation):
            pass


        class Second(Automation):
            pass
    """)

    assert rt.automations.load(str(path)) is None
    assert any("More than one Automation subclass" in m for m in rt.logger.messages("error"))


@pytest.mark.asyncio
async def test_imported_automation_class_is_not_counted(rt, tmp_path):
    write(tmp_path / "lib" / "base.py", """
        from core.automation import Automation


        class Base(Automation):
            def __init__(self, runtime, title):
                super().__init__(runtime, title)
    """)
    path = write(tmp_path / "child.py", """
        from lib.base import Base


        class Child(Base):
            def __init__(self, runtime):
                super().__init__(runtime, "Child")
    """)
    await rt.automations.bootstrap()

    assert rt.automations.get_automation(path).title == "Child"
    await rt.automations.stop()


# ----------------------------------------------------------------------
# Выгрузка
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unload_all_continues_after_failing_destroy(rt, tmp_path):
    write(tmp_path / "a_broken.py", """
        from core.automation import Automation


        class BrokenDestroy(Automation):
            def __init__(self, runtime):
                super().__init__(runtime, "Broken destroy")

            def destroy(self):
                raise RuntimeError("destroy exploded")
    """)
    write(tmp_path / "b_probe.py", PROBE.format(version="v1"))
    await rt.automations.bootstrap()
    assert len(rt.automations.list_automations()) == 2

    await rt.automations.unload_all()

    assert rt.automations.list_automations() == []
    assert rt.broker.get_listener_count("sensor.probe") == 0
    assert any("destroy exploded" in m for m in rt.logger.messages("error"))


@pytest.mark.asyncio
async def test_connection_close_unloads_and_ready_reloads(rt, tmp_path):
    write(tmp_path / "probe.py", PROBE.format(version="v1"))
    rt.connection.states = [{"entity_id": "sensor.probe", "state": "off", "attributes": {}}]

    await rt.connection.emit_ready()
    assert len(rt.automations.list_automations()) == 1

    await rt.connection.emit_close()
    assert rt.automations.list_automations() == []
    assert rt.broker.get_listener_count("sensor.probe") == 0

    await rt.connection.emit_ready()
    rt.broker.handle_state_changed(probe_event("on"))
    await drain()

    assert rt.received == [("v1", "on")]
    assert len(FakeWatcher.instances) == 1
    await rt.automations.stop()
