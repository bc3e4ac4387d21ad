# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Cross-process change notification for FileStorage.

Several processes (the equivalent of several browser tabs) may share one
FileStorage file. Writes are last-write-wins with no lock; this watcher makes
another process's writes visible promptly instead of on the next access.

Design Decisions:
- Watchdog observes the file's parent directory (non-recursive), since
  FileStorage replaces the file atomically and the file itself may not exist yet
- Events for our own writes are ignored by comparing the file mtime with the
  one FileStorage recorded when it last loaded or saved
- Callbacks run on the observer thread unless an event loop is given, in
  which case they are handed over with call_soon_threadsafe

Known Limitations:
- Two writes within the filesystem's mtime resolution look like one
"""

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

from watchdog.events import FileMovedEvent, FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from delorean_cache.storage import FileStorage

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

# Callback signature: () -> None
ChangeCallback = Callable[[], None]


class StorageWatcher:
    """Reload a FileStorage when another process rewrites its file.

    Usage:
        watcher = StorageWatcher(storage)
        watcher.register_change_callback(controller.sync_from_cache, loop=loop)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(self, storage: FileStorage) -> None:
        self.storage = storage
        self._path = Path(storage.path).resolve()
        self._callbacks: List[Tuple[ChangeCallback, Optional[asyncio.AbstractEventLoop]]] = []

        self._observer: Optional["BaseObserver"] = None
        self._event_handler = _StorageEventHandler(self)

    @property
    def path(self) -> Path:
        return self._path

    def register_change_callback(
        self,
        callback: ChangeCallback,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """Register a callback invoked after an external change is loaded.

        Args:
            callback: Function with no arguments. Should return quickly.
            loop: If given, the callback is scheduled on this loop instead of
                running on the watcher thread.
        """
        self._callbacks.append((callback, loop))
        logger.debug(f"Registered change callback: {callback}")

    def unregister_change_callback(self, callback: ChangeCallback) -> None:
        self._callbacks = [(cb, loop) for cb, loop in self._callbacks if cb != callback]

    def handle_file_event(self, file_path: str) -> None:
        """Reload storage and notify callbacks if file_path is the storage file
        and its content changed outside this process's FileStorage.
        """
        if Path(file_path).resolve() != self._path:
            return

        if not self.storage.has_external_changes():
            return

        try:
            self.storage.reload()
        except Exception as e:
            logger.warning(f"Failed to reload storage {self._path}: {e}")
            return

        logger.debug(f"Reloaded storage after external change: {self._path}")
        self._notify_callbacks()

    def _notify_callbacks(self) -> None:
        for callback, loop in list(self._callbacks):
            if loop is not None:
                if loop.is_closed():
                    continue
                loop.call_soon_threadsafe(callback)
                continue

            try:
                callback()
            except Exception as e:
                # One failing callback must not starve the others
                logger.error(f"Storage change callback failed: {e}")

    def start(self) -> None:
        """Start watching.

        Raises:
            RuntimeError: If watcher is already running
        """
        if self._observer is not None and self._observer.is_alive():
            raise RuntimeError("StorageWatcher is already running")

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._observer = Observer()
        self._observer.schedule(  # type: ignore  # watchdog types vary by version
            self._event_handler, str(self._path.parent), recursive=False
        )
        self._observer.start()  # type: ignore  # watchdog types vary by version

        logger.info(f"StorageWatcher started, monitoring {self._path}")

    def stop(self) -> None:
        """Stop watching. Blocks until the observer thread terminates (with timeout)."""
        if self._observer is not None and self._observer.is_alive():
            self._observer.stop()  # type: ignore  # watchdog types vary by version
            self._observer.join(timeout=5.0)
            logger.info("StorageWatcher stopped")

    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()


class _StorageEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for the storage file to StorageWatcher."""

    def __init__(self, watcher: StorageWatcher):
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.handle_file_event(str(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.handle_file_event(str(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic replace shows up as a move from the temp file onto the storage file
        if event.is_directory or not isinstance(event, FileMovedEvent):
            return
        self.watcher.handle_file_event(str(event.dest_path))
