"""Watch mode: filesystem observation and change-driven passes."""

from devloop.watch.loop import PassReport, WatchLoop, WatchState
from devloop.watch.watcher import FileWatcher

__all__ = ["FileWatcher", "PassReport", "WatchLoop", "WatchState"]
