"""Polling watcher for individual files.

Handlers are registered per exact file path.  A background thread stats each
file every ``interval`` seconds and turns the differences into tagged
:class:`FileEvent` values.  A file that changed and then stayed unchanged for
one full interval produces a ``CLOSE_WRITE`` event, which is what consumers
that must not read half-written content wait for.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from threading import Event, Thread
from typing import Dict, Mapping, Optional, Tuple

LOG = logging.getLogger(__name__)


class FileEventKind(Enum):
    CREATE = auto()
    WRITE = auto()
    CLOSE_WRITE = auto()
    REMOVE = auto()


@dataclass(frozen=True)
class FileEvent:
    kind: FileEventKind
    path: Path


class FileEventHandler:
    """Receives file events; every method defaults to a no-op."""

    def on_create(self, path: Path) -> None:
        pass

    def on_write(self, path: Path) -> None:
        pass

    def on_close_write(self, path: Path) -> None:
        pass

    def on_remove(self, path: Path) -> None:
        pass


def dispatch(handler: FileEventHandler, event: FileEvent) -> None:
    if event.kind is FileEventKind.CREATE:
        handler.on_create(event.path)
    elif event.kind is FileEventKind.WRITE:
        handler.on_write(event.path)
    elif event.kind is FileEventKind.CLOSE_WRITE:
        handler.on_close_write(event.path)
    elif event.kind is FileEventKind.REMOVE:
        handler.on_remove(event.path)
    else:
        raise TypeError(f"Unsupported file event kind: {event.kind!r}")


_Stat = Optional[Tuple[int, int, int]]


def _stat(path: Path) -> _Stat:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return None
    return st.st_ino, st.st_size, st.st_mtime_ns


@dataclass
class _Tracked:
    handler: FileEventHandler
    stat: _Stat
    settling: bool = False


class DirectoryWatcher(Thread):
    """Watch a set of files and dispatch events to their handlers.

    The baseline is recorded when the watcher is constructed, so anything
    that happens to a file after construction is reported even if the thread
    has not been scheduled yet.
    """

    def __init__(
        self,
        handlers: Mapping[Path, FileEventHandler],
        *,
        interval: float = 0.5,
        name: str = "file-watcher",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(daemon=True, name=name)
        self._interval = interval
        self._log = logger or LOG
        self._stop_event = Event()
        self._files: Dict[Path, _Tracked] = {
            Path(path): _Tracked(handler=handler, stat=_stat(Path(path)))
            for path, handler in handlers.items()
        }

    @classmethod
    def watch(
        cls,
        path: Path,
        handler: FileEventHandler,
        **kwargs,
    ) -> "DirectoryWatcher":
        """Create and start a watcher for a single file."""

        watcher = cls({Path(path): handler}, **kwargs)
        watcher.start()
        return watcher

    def run(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.poll()
        self._log.debug("%s stopping", self.name)

    def stop(self) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join()

    def poll(self) -> None:
        for path, tracked in self._files.items():
            for event in self._changes(path, tracked):
                try:
                    dispatch(tracked.handler, event)
                except Exception:
                    self._log.exception(
                        "%s: handler failed for %s on %s",
                        self.name,
                        event.kind.name,
                        path,
                    )

    def _changes(self, path: Path, tracked: _Tracked):
        current = _stat(path)
        previous = tracked.stat
        tracked.stat = current

        if current is None:
            tracked.settling = False
            if previous is not None:
                yield FileEvent(FileEventKind.REMOVE, path)
            return

        if previous is None:
            tracked.settling = True
            yield FileEvent(FileEventKind.CREATE, path)
            return

        if current != previous:
            tracked.settling = True
            yield FileEvent(FileEventKind.WRITE, path)
            return

        if tracked.settling:
            tracked.settling = False
            yield FileEvent(FileEventKind.CLOSE_WRITE, path)
