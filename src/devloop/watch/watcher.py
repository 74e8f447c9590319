"""Filesystem observer feeding changed paths into the watch loop."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from devloop.project.models import UNTRACKED_DIRS

logger = logging.getLogger(__name__)


class FileWatcher(FileSystemEventHandler):
    """Recursively watch module roots and report changed file paths.

    ``on_change`` is called from the observer thread; pass a thread-safe
    callable such as :meth:`WatchLoop.submit_threadsafe`.
    """

    def __init__(self, roots: Iterable[Path], on_change: Callable[[Path], None]) -> None:
        super().__init__()
        self.roots = _collapse_roots(roots)
        self.on_change = on_change
        self.observer = Observer()
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        for root in self.roots:
            self._schedule(root)
        self.observer.start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self.observer.stop()
        self.observer.join()
        self._started = False

    def add_roots(self, roots: Iterable[Path]) -> list[Path]:
        """Watch roots not covered yet, such as modules added by a project reload."""

        added: list[Path] = []
        for root in _collapse_roots(roots):
            if _covered(root, self.roots):
                continue
            self.roots.append(root)
            added.append(root)
            if self._started:
                self._schedule(root)
        return added

    def _schedule(self, root: Path) -> None:
        if not root.is_dir():
            logger.warning("Not watching missing directory %s", root)
            return
        self.observer.schedule(self, str(root), recursive=True)
        logger.debug("Watching %s", root)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in ("opened", "closed", "closed_no_write"):
            return
        paths = [event.src_path]
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            paths.append(dest_path)
        for raw_path in paths:
            path = Path(os.fsdecode(raw_path))
            if is_ignored(path, self.roots):
                continue
            self.on_change(path)


def is_ignored(path: Path, roots: Iterable[Path]) -> bool:
    """Hidden entries, VCS metadata and devloop state below a watched root never trigger passes."""

    for root in roots:
        if path == root or root in path.parents:
            relative = path.relative_to(root).parts
            return any(part in UNTRACKED_DIRS or part.startswith(".") for part in relative)
    return False


def _covered(root: Path, roots: Iterable[Path]) -> bool:
    return any(root == kept or kept in root.parents for kept in roots)


def _collapse_roots(roots: Iterable[Path]) -> list[Path]:
    resolved = sorted({root.resolve() for root in roots}, key=lambda p: len(p.parts))
    collapsed: list[Path] = []
    for root in resolved:
        if not _covered(root, collapsed):
            collapsed.append(root)
    return collapsed
