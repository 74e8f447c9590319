from __future__ import annotations

from pathlib import Path

import allure
from watchdog.events import (
    DirModifiedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from devloop.watch import FileWatcher

pytestmark = [
    allure.epic("Watch Mode"),
    allure.feature("Filesystem events"),
]


def _watcher(tmp_path: Path, changes: list[Path]) -> FileWatcher:
    (tmp_path / "lib" / "src").mkdir(parents=True)
    return FileWatcher([tmp_path / "lib", tmp_path / "lib" / "src"], changes.append)


def test_nested_roots_are_watched_once(tmp_path: Path) -> None:
    watcher = _watcher(tmp_path, [])

    assert watcher.roots == [(tmp_path / "lib").resolve()]


def test_file_events_are_forwarded_and_noise_is_ignored(tmp_path: Path) -> None:
    changes: list[Path] = []
    watcher = _watcher(tmp_path, changes)
    root = watcher.roots[0]

    watcher.on_any_event(FileModifiedEvent(str(root / "src" / "app.py")))
    watcher.on_any_event(FileCreatedEvent(str(root / ".git" / "index")))
    watcher.on_any_event(FileCreatedEvent(str(root / ".devloop" / "cache.db")))
    watcher.on_any_event(FileModifiedEvent(str(root / "__pycache__" / "app.pyc")))
    watcher.on_any_event(DirModifiedEvent(str(root / "src")))
    watcher.on_any_event(FileClosedEvent(str(root / "src" / "app.py")))

    assert changes == [root / "src" / "app.py"]


def test_moves_report_both_paths(tmp_path: Path) -> None:
    changes: list[Path] = []
    watcher = _watcher(tmp_path, changes)
    root = watcher.roots[0]

    watcher.on_any_event(FileMovedEvent(str(root / "old.txt"), str(root / "new.txt")))

    assert changes == [root / "old.txt", root / "new.txt"]


def test_start_and_stop_observer(tmp_path: Path) -> None:
    watcher = _watcher(tmp_path, [])

    watcher.start()
    watcher.stop()

    assert not watcher.observer.is_alive()


def test_add_roots_watches_only_uncovered_directories(tmp_path: Path) -> None:
    watcher = _watcher(tmp_path, [])
    (tmp_path / "tools").mkdir()

    watcher.start()
    try:
        added = watcher.add_roots([tmp_path / "lib" / "src", tmp_path / "tools"])
        again = watcher.add_roots([tmp_path / "tools"])
    finally:
        watcher.stop()

    assert added == [(tmp_path / "tools").resolve()]
    assert again == []
    assert watcher.roots == [(tmp_path / "lib").resolve(), (tmp_path / "tools").resolve()]
