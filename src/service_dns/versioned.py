"""Copy-on-write holder for values shared between one writer and many readers."""

from __future__ import annotations

from threading import Lock
from typing import Generic, TypeVar

T = TypeVar("T")


class VersionedValue(Generic[T]):
    """Hold an immutable-by-convention value and replace it wholesale.

    Readers get the current value without waiting on writers; writers never
    mutate a published value, they :meth:`swap` in a new one and get back
    the version it was published under.
    """

    def __init__(self, value: T) -> None:
        self._lock = Lock()
        self._value = value
        self._version = 0

    def get(self) -> T:
        return self._value

    def swap(self, value: T) -> int:
        with self._lock:
            self._value = value
            self._version += 1
            return self._version

    @property
    def version(self) -> int:
        return self._version
