"""
Тесты для FileWatcher (опрос дерева файлов).
"""

import asyncio
import os

import pytest

from core.file_watcher import FileWatcher


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, event, path):
        self.events.append((event, os.path.basename(path)))


def test_scan_is_recursive(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "a.py").write_text("a")
    (tmp_path / "sub" / "b.py").write_text("bb")

    snapshot = FileWatcher(str(tmp_path), Recorder()).scan()

    assert set(snapshot) == {str(tmp_path / "a.py"), str(tmp_path / "sub" / "b.py")}
    assert snapshot[str(tmp_path / "sub" / "b.py")][1] == 2


def test_scan_of_missing_directory_is_empty(tmp_path):
    assert FileWatcher(str(tmp_path / "missing"), Recorder()).scan() == {}


def test_poll_reports_remove_add_change_in_order(tmp_path):
    recorder = Recorder()
    (tmp_path / "changed.py").write_text("v1")
    (tmp_path / "removed.py").write_text("x")
    watcher = FileWatcher(str(tmp_path), recorder)
    watcher._snapshot = watcher.scan()

    (tmp_path / "removed.py").unlink()
    (tmp_path / "added.py").write_text("new")
    (tmp_path / "changed.py").write_text("version 2")

    events = watcher.poll()

    assert recorder.events == [("remove", "removed.py"), ("add", "added.py"), ("change", "changed.py")]
    assert [e for e, _ in events] == ["remove", "add", "change"]


def test_poll_without_changes_reports_nothing(tmp_path):
    recorder = Recorder()
    (tmp_path / "a.py").write_text("a")
    watcher = FileWatcher(str(tmp_path), recorder)
    watcher._snapshot = watcher.scan()

    assert watcher.poll() == []
    assert recorder.events == []


def test_handler_error_does_not_stop_other_events(tmp_path):
    seen = []

    def handler(event, path):
        seen.append(os.path.basename(path))
        if path.endswith("a.py"):
            raise RuntimeError("handler failed")

    watcher = FileWatcher(str(tmp_path), handler)
    (tmp_path / "a.py").write_text("a")
    (tmp_path / "b.py").write_text("b")

    watcher.poll()

    assert seen == ["a.py", "b.py"]


@pytest.mark.asyncio
async def test_start_polls_until_stopped(tmp_path):
    recorder = Recorder()
    watcher = FileWatcher(str(tmp_path), recorder, interval=0.01)

    watcher.start()
    assert watcher.is_running
    (tmp_path / "new.py").write_text("x")
    for _ in range(100):
        if recorder.events:
            break
        await asyncio.sleep(0.01)
    await watcher.stop()

    assert recorder.events == [("add", "new.py")]
    assert not watcher.is_running
