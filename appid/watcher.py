"""
File watcher for the request document.

watchdog observes the document's parent directory (a file that may be
deleted cannot be watched directly) and the handler keeps only events for
the target path. Raw events become typed DocumentEvents on a queue; one
worker thread dispatches them to the registered handlers in the order
watchdog reported them. Duplicate or coalesced events are possible, so
handlers must be idempotent.

For tests, publish() + drain() replay events deterministically without
starting the observer or the worker.
"""

import enum
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class DocumentEvent:
    """A change to the watched document."""
    kind: EventKind
    path: Path
    timestamp: float = field(default_factory=time.time)


EventHandler = Callable[[DocumentEvent], None]

_STOP = object()


def _event_path_to_path(event_path) -> Path:
    """Convert a watchdog event path to Path, handling bytes."""
    if isinstance(event_path, bytes):
        return Path(event_path.decode("utf-8", errors="replace"))
    return Path(event_path)


class _TargetFileHandler(FileSystemEventHandler):
    """Translates watchdog events for one file into DocumentEvents."""

    def __init__(self, target: Path, publish: Callable[[DocumentEvent], None]):
        super().__init__()
        self._target = target
        self._publish = publish

    def _is_target(self, path) -> bool:
        return _event_path_to_path(path).resolve() == self._target

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_target(event.src_path):
            self._publish(DocumentEvent(EventKind.CREATED, self._target))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_target(event.src_path):
            self._publish(DocumentEvent(EventKind.MODIFIED, self._target))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_target(event.src_path):
            self._publish(DocumentEvent(EventKind.DELETED, self._target))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        # Editors often save by renaming a temp file over the target
        if self._is_target(event.src_path):
            self._publish(DocumentEvent(EventKind.DELETED, self._target))
        if self._is_target(event.dest_path):
            self._publish(DocumentEvent(EventKind.CREATED, self._target))


class DocumentWatcher:
    """
    Watches one file and dispatches create/modify/delete events.

    Usage::

        watcher = DocumentWatcher(path)
        watcher.add_handler(guard.on_event)
        with watcher:
            watcher.join()
    """

    def __init__(
        self,
        path: Path,
        *,
        emit_initial: bool = True,
        observer_factory: Callable[[], object] = Observer,
    ):
        """
        Args:
            path: File to watch
            emit_initial: Emit CREATED at start if the file already exists
            observer_factory: watchdog observer class (PollingObserver for
                filesystems without native notifications)
        """
        self.path = Path(path).resolve()
        self.emit_initial = emit_initial
        self._observer_factory = observer_factory
        self._handlers: list[EventHandler] = []
        self._queue: "queue.Queue" = queue.Queue()
        self._observer = None
        self._worker: Optional[threading.Thread] = None
        self._stopped = threading.Event()

    def add_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def publish(self, event: DocumentEvent) -> None:
        """Queue an event for dispatch."""
        logger.debug("Queued %s event for %s", event.kind.value, event.path)
        self._queue.put(event)

    def dispatch(self, event: DocumentEvent) -> None:
        """Run every handler on one event; a failing handler does not stop the others."""
        for handler in self._handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Handler failed for %s event on %s", event.kind.value, event.path)

    def drain(self) -> int:
        """Dispatch all queued events on the calling thread. Returns the count."""
        count = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return count
            if item is _STOP:
                continue
            self.dispatch(item)
            count += 1

    def _run_worker(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self.dispatch(item)

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self._worker = threading.Thread(
            target=self._run_worker, name="appid-watch-dispatch", daemon=True,
        )
        self._worker.start()

        self._observer = self._observer_factory()
        self._observer.schedule(
            _TargetFileHandler(self.path, self.publish),
            str(self.path.parent),
            recursive=False,
        )
        self._observer.start()
        logger.info("Watching %s", self.path)

        if self.emit_initial and self.path.exists():
            self.publish(DocumentEvent(EventKind.CREATED, self.path))

    def stop(self, timeout: float = 5.0) -> None:
        """Stop observing and finish dispatching already-queued events."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout)
            self._observer = None
        if self._worker is not None:
            self._queue.put(_STOP)
            self._worker.join(timeout)
            self._worker = None
        self._stopped.set()
        logger.info("Stopped watching %s", self.path)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Block until stop() is called. Returns False on timeout."""
        return self._stopped.wait(timeout)

    def __enter__(self) -> "DocumentWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
