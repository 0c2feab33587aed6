"""
WatchX File Watcher.

Cross-platform file system monitoring using watchdog.
Requires Python 3.11+.
"""

import queue
from pathlib import Path
from typing import Any

from watchdog.events import (
    DirModifiedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from watcher.models import ChangeKind, WatchEvent
from utils.logger import LoggerMixin


class WatchAttachError(Exception):
    """Raised when the watcher cannot attach to the root directory."""


class EventSourceDisconnected(Exception):
    """Raised when the observer thread stops delivering events unexpectedly."""


_KINDS = {
    "created": ChangeKind.CREATED,
    "modified": ChangeKind.MODIFIED,
    "deleted": ChangeKind.DELETED,
    "moved": ChangeKind.MOVED,
}


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode(errors="replace")
    return path


class QueueingEventHandler(FileSystemEventHandler, LoggerMixin):
    """
    Forwards watchdog events to a queue as WatchEvents.

    Runs on the observer thread; it only converts and enqueues.
    """

    def __init__(self, events: queue.Queue[WatchEvent]) -> None:
        super().__init__()
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Handle every create/modify/delete/move event."""
        kind = _KINDS.get(event.event_type)
        if kind is None:
            # opened/closed notifications carry no content change
            return

        # Directory mtime changes duplicate the file events inside them
        if isinstance(event, DirModifiedEvent):
            return

        paths = [Path(_decode(event.src_path))]
        if isinstance(event, FileSystemMovedEvent) and event.dest_path:
            paths.append(Path(_decode(event.dest_path)))

        self.log.debug("fs_event", kind=kind.value, paths=[str(p) for p in paths])
        self._events.put(WatchEvent.of(kind, *paths))


class FileWatcher(LoggerMixin):
    """
    Watches a directory tree and hands out batches of change events.

    The watchdog observer thread produces events; a single consumer drains
    them with next_batch().
    """

    def __init__(self, root_path: Path, recursive: bool = True) -> None:
        """
        Initialize the file watcher.

        Args:
            root_path: Root directory to watch
            recursive: Whether to watch subdirectories
        """
        self._root_path = root_path
        self._recursive = recursive
        self._events: queue.Queue[WatchEvent] = queue.Queue()
        self._handler = QueueingEventHandler(self._events)
        self._observer: Any = None
        self._running = False

    @property
    def root_path(self) -> Path:
        return self._root_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    def start(self) -> None:
        """
        Start watching for file changes.

        Raises:
            WatchAttachError: If the root cannot be watched
        """
        if self._running:
            return

        if not self._root_path.is_dir():
            raise WatchAttachError(f"Watch directory not found: {self._root_path}")

        observer = Observer()
        try:
            observer.schedule(
                self._handler,
                str(self._root_path),
                recursive=self._recursive,
            )
            observer.start()
        except OSError as e:
            raise WatchAttachError(f"Failed to watch {self._root_path}: {e}") from e

        self._observer = observer
        self._running = True

        self.log.debug(
            "file_watcher_started",
            path=str(self._root_path),
            recursive=self._recursive,
        )

    def next_batch(self, timeout: float = 0.1) -> list[WatchEvent]:
        """
        Wait for the next batch of events.

        Blocks up to `timeout` seconds for the first event, then drains
        anything already queued.

        Args:
            timeout: Maximum wait in seconds

        Returns:
            Events in arrival order, empty on timeout

        Raises:
            EventSourceDisconnected: If the observer thread has died
        """
        try:
            first = self._events.get(timeout=timeout)
        except queue.Empty:
            if self._running and self._observer is not None and not self._observer.is_alive():
                raise EventSourceDisconnected(
                    f"Observer for {self._root_path} stopped unexpectedly"
                ) from None
            return []

        batch = [first]
        while True:
            try:
                batch.append(self._events.get_nowait())
            except queue.Empty:
                return batch

    def stop(self) -> None:
        """Stop watching for file changes."""
        if not self._running:
            return

        self._running = False
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None

        self.log.debug("file_watcher_stopped")

    def __enter__(self) -> "FileWatcher":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.stop()
