"""Filesystem watcher feeding the change tracker."""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from vault_sync.core.logging import get_logger

if TYPE_CHECKING:
    from vault_sync.tracker.tracker import ChangeTracker

logger = get_logger(__name__)


class WorkspaceEventHandler(FileSystemEventHandler):
    """Translate watchdog callbacks (observer thread) into tracker calls on the loop."""

    def __init__(self, root: Path, tracker: "ChangeTracker", loop: asyncio.AbstractEventLoop) -> None:
        super().__init__()
        self.root = root
        self.tracker = tracker
        self.loop = loop

    def relative(self, raw: str | bytes) -> str | None:
        path = Path(raw.decode() if isinstance(raw, bytes) else raw)
        try:
            return path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None

    def _dispatch(self, callback, *args: str) -> None:
        self.loop.call_soon_threadsafe(callback, *args)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and (path := self.relative(event.src_path)):
            self._dispatch(self.tracker.handle_create, path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and (path := self.relative(event.src_path)):
            self._dispatch(self.tracker.handle_modify, path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory and (path := self.relative(event.src_path)):
            self._dispatch(self.tracker.handle_delete, path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        old_path = self.relative(event.src_path)
        new_path = self.relative(event.dest_path)
        if old_path and new_path:
            self._dispatch(self.tracker.handle_rename, old_path, new_path)
        elif old_path:
            self._dispatch(self.tracker.handle_delete, old_path)
        elif new_path:
            self._dispatch(self.tracker.handle_create, new_path)


class Watcher:
    """Recursive watchdog observer over one workspace root."""

    def __init__(self, root: Path, tracker: "ChangeTracker") -> None:
        self.root = root.expanduser().resolve()
        self.tracker = tracker
        self._observer: BaseObserver | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        with self._lock:
            if self._observer is not None:
                return
            handler = WorkspaceEventHandler(self.root, self.tracker, loop or asyncio.get_running_loop())
            observer = Observer()
            observer.schedule(handler, str(self.root), recursive=True)
            observer.start()
            self._observer = observer
        logger.info("Watching %s", self.root)

    def stop(self) -> None:
        with self._lock:
            if self._observer is None:
                return
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


__all__ = ["Watcher", "WorkspaceEventHandler"]
