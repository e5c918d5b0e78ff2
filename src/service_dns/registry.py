"""Namespace availability capability and its in-process event registry."""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable, Dict, Optional, Set

from .events import NamespaceAdded, NamespaceRemoved

NamespaceHandler = Callable[[str], None]


class Subscription:
    """Handle returned by the ``subscribe_*`` methods."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        self._cancelled = False

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._cancel()


class NamespaceAvailability(ABC):
    """Source of namespace appeared/disappeared notifications."""

    @abstractmethod
    def subscribe_added(self, handler: NamespaceHandler) -> Subscription:
        """Call ``handler(name)`` whenever a namespace appears."""

    @abstractmethod
    def subscribe_removed(self, handler: NamespaceHandler) -> Subscription:
        """Call ``handler(name)`` whenever a namespace disappears."""

    @abstractmethod
    def exists(self, name: str) -> bool:
        """Synchronously report whether namespace ``name`` exists now."""


class NamespaceRegistry(NamespaceAvailability):
    """Dispatch namespace events to subscribed handlers.

    Producers (for example the netlink VRF poller) call :meth:`handle`.
    ``checker`` answers :meth:`exists`; without one the registry answers from
    the names it has seen through events.
    """

    def __init__(self, checker: Optional[Callable[[str], bool]] = None) -> None:
        self._checker = checker
        self._lock = Lock()
        self._ids = itertools.count()
        self._added: Dict[int, NamespaceHandler] = {}
        self._removed: Dict[int, NamespaceHandler] = {}
        self._seen: Set[str] = set()

    def subscribe_added(self, handler: NamespaceHandler) -> Subscription:
        return self._subscribe(self._added, handler)

    def subscribe_removed(self, handler: NamespaceHandler) -> Subscription:
        return self._subscribe(self._removed, handler)

    def exists(self, name: str) -> bool:
        if self._checker is not None:
            return self._checker(name)
        with self._lock:
            return name in self._seen

    def handle(self, event: NamespaceAdded | NamespaceRemoved) -> None:
        if isinstance(event, NamespaceAdded):
            with self._lock:
                self._seen.add(event.name)
                handlers = list(self._added.values())
        elif isinstance(event, NamespaceRemoved):
            with self._lock:
                self._seen.discard(event.name)
                handlers = list(self._removed.values())
        else:
            raise TypeError(f"Unsupported event type: {type(event)!r}")

        for handler in handlers:
            handler(event.name)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._added) + len(self._removed)

    def _subscribe(
        self, table: Dict[int, NamespaceHandler], handler: NamespaceHandler
    ) -> Subscription:
        with self._lock:
            key = next(self._ids)
            table[key] = handler

        def _cancel() -> None:
            with self._lock:
                table.pop(key, None)

        return Subscription(_cancel)
