import threading
import time
from typing import Callable, List, Tuple

import pytest

from service_dns.process import ManagedProcess, ServiceManager
from service_dns.registry import NamespaceRegistry


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class RecordingServiceManager(ServiceManager):
    def __init__(self):
        self.calls: List[Tuple[str, ...]] = []
        self.failures = {}
        self._lock = threading.Lock()

    def fail(self, operation: str, exc: Exception) -> None:
        self.failures[operation] = exc

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)
        exc = self.failures.get(call[0])
        if exc is not None:
            raise exc

    def start(self, unit):
        self._record("start", unit)

    def stop(self, unit):
        self._record("stop", unit)

    def reload(self, unit):
        self._record("reload", unit)

    def restart(self, unit):
        self._record("restart", unit)

    def signal(self, unit, signum):
        self._record("signal", unit, int(signum))

    def operations(self, unit=None) -> List[str]:
        with self._lock:
            return [c[0] for c in self.calls if unit is None or c[1] == unit]


class RecordingProcess(ManagedProcess):
    """In-memory process; ``on_signal`` lets tests react to signals."""

    def __init__(self):
        self.actions: List[str] = []
        self.failures = {}
        self.on_signal: Callable[[int], None] = lambda signum: None
        self.closed = False

    def _act(self, action: str) -> None:
        self.actions.append(action)
        exc = self.failures.get(action)
        if exc is not None:
            raise exc

    def start(self):
        self._act("start")

    def stop(self):
        self._act("stop")

    def reload(self):
        self._act("reload")

    def restart(self):
        self._act("restart")

    def signal(self, signum):
        self._act(f"signal {int(signum)}")
        self.on_signal(signum)

    def close(self):
        self.closed = True
        super().close()


class BlockingProcess(RecordingProcess):
    """Process whose actions block until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def _act(self, action):
        self.entered.set()
        self.release.wait(2.0)
        super()._act(action)


@pytest.fixture
def manager() -> RecordingServiceManager:
    return RecordingServiceManager()


@pytest.fixture
def registry() -> NamespaceRegistry:
    return NamespaceRegistry()
