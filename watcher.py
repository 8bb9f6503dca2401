"""One-shot file watch with debounce.

A ``FileWatch`` subscribes to filesystem events for a single file, waits for
a burst of writes to settle, re-reads and parses the file, and delivers
exactly one result. The caller re-arms a new watch after consuming it.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

import activity_log
from md_io import TodoReadError, read_and_parse
from node_models import TodoSection

DEFAULT_DEBOUNCE = 0.1
_WAIT_SLICE = 0.2


class WatchSubscriptionError(OSError):
    """The change-notification mechanism itself failed."""


@dataclass(frozen=True)
class FileUpdated:
    path: Path
    sections: List[TodoSection]


@dataclass(frozen=True)
class FileError:
    path: Path
    error: Exception


WatchResult = Union[FileUpdated, FileError]


def debounce_from_env(default: float = DEFAULT_DEBOUNCE) -> float:
    raw = os.getenv("TODO_TREE_DEBOUNCE", "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def _event_path(raw: Union[str, bytes]) -> str:
    return os.path.realpath(os.fsdecode(raw))


class _TargetFileHandler(FileSystemEventHandler):
    """Forwards events that touch the watched file to its ``FileWatch``."""

    def __init__(self, watch: "FileWatch") -> None:
        super().__init__()
        self._watch = watch

    def _touches_target(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        if _event_path(event.src_path) == self._watch.target:
            return True
        dest = getattr(event, "dest_path", "")
        return bool(dest) and _event_path(dest) == self._watch.target

    def on_modified(self, event: FileSystemEvent) -> None:
        if self._touches_target(event):
            self._watch.schedule_read(event.event_type)

    def on_created(self, event: FileSystemEvent) -> None:
        if self._touches_target(event):
            self._watch.schedule_read(event.event_type)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic saves rename a temp file onto the target.
        if self._touches_target(event):
            self._watch.schedule_read(event.event_type)

    def on_deleted(self, event: FileSystemEvent) -> None:
        # Editors that delete and recreate land here first; the read decides.
        if self._touches_target(event):
            self._watch.schedule_read(event.event_type)


class FileWatch:
    def __init__(
        self,
        path: Path,
        debounce: float = DEFAULT_DEBOUNCE,
        observer_factory: Callable[[], Observer] = Observer,
    ) -> None:
        self.path = Path(path)
        self.target = os.path.realpath(self.path)
        self.debounce = debounce
        self._observer_factory = observer_factory
        self._observer: Optional[Observer] = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._result: Optional[WatchResult] = None

    @property
    def result(self) -> Optional[WatchResult]:
        return self._result

    def start(self) -> None:
        directory = os.path.dirname(self.target)
        observer = self._observer_factory()
        try:
            observer.schedule(_TargetFileHandler(self), directory, recursive=False)
            observer.start()
        except OSError as exc:
            self._deliver(FileError(self.path, WatchSubscriptionError(f"cannot watch {directory}: {exc}")))
            return
        self._observer = observer
        activity_log.log_event("WATCH", str(self.path))

    def schedule_read(self, reason: str = "modified") -> None:
        """Start or restart the debounce timer."""
        with self._lock:
            if self._done.is_set():
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._read)
            self._timer.daemon = True
            self._timer.start()
        activity_log.log_event("EVENT", str(self.path), reason)

    def _read(self) -> None:
        try:
            sections = read_and_parse(self.path)
        except TodoReadError as exc:
            self._deliver(FileError(self.path, exc))
            return
        self._deliver(FileUpdated(self.path, sections))

    def _deliver(self, result: WatchResult) -> None:
        with self._lock:
            if self._done.is_set():
                return
            self._result = result
            self._done.set()
        # Errors are logged by the consumer that applies them.
        if isinstance(result, FileUpdated):
            activity_log.log_event("UPDATED", str(self.path))

    def wait(
        self,
        timeout: Optional[float] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> Optional[WatchResult]:
        """Block until a result arrives, ``timeout`` elapses or ``should_stop`` says so."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            slice_ = _WAIT_SLICE
            if deadline is not None:
                slice_ = max(min(slice_, deadline - time.monotonic()), 0)
            if self._done.wait(slice_):
                return self._result
            observer = self._observer
            if observer is not None and not observer.is_alive():
                self._deliver(FileError(self.path, WatchSubscriptionError(f"watch on {self.path} stopped")))
                return self._result
            if should_stop is not None and should_stop():
                return None
            if deadline is not None and time.monotonic() >= deadline:
                return None

    def close(self) -> None:
        with self._lock:
            self._done.set()
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            observer = self._observer
            self._observer = None
        if observer is not None:
            observer.stop()
            if observer is not threading.current_thread():
                observer.join()


def watch_once(
    path: Path,
    debounce: float = DEFAULT_DEBOUNCE,
    should_stop: Optional[Callable[[], bool]] = None,
) -> Optional[WatchResult]:
    """Watch ``path`` until one result is produced, then release the subscription."""
    watch = FileWatch(path, debounce=debounce)
    watch.start()
    try:
        return watch.wait(should_stop=should_stop)
    finally:
        watch.close()
