"""Controllable daemon processes.

Two flavours of :class:`ManagedProcess` exist:

* :class:`SystemdProcess` forwards every control action to a
  :class:`ServiceManager` for a fixed unit name.
* :class:`VRFGatedProcess` decorates another process whose daemon lives in a
  routing-instance network namespace.  Actions issued while the namespace does
  not exist are deferred; only the most recent one is kept and it runs as soon
  as the namespace appears.

All gate state of a :class:`VRFGatedProcess` is owned by a single actor
thread.  Public calls and namespace notifications are queued messages, so
they are applied strictly in arrival order and at most one wrapped action is
in flight at a time.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass, field
from queue import Queue
from threading import Event, Lock, Thread
from typing import Any, Callable, List, Optional

from .errors import ActionSupersededError, ProcessClosedError, ServiceManagerError
from .registry import NamespaceAvailability, Subscription

LOG = logging.getLogger(__name__)


class ServiceManager(ABC):
    """Init-system capability used to control daemon units."""

    @abstractmethod
    def start(self, unit: str) -> None: ...

    @abstractmethod
    def stop(self, unit: str) -> None: ...

    @abstractmethod
    def reload(self, unit: str) -> None: ...

    @abstractmethod
    def restart(self, unit: str) -> None: ...

    @abstractmethod
    def signal(self, unit: str, signum: int) -> None: ...


class SystemctlServiceManager(ServiceManager):
    """Drive units through the ``systemctl`` command line tool."""

    def __init__(self, systemctl: str = "systemctl") -> None:
        self._systemctl = systemctl

    def start(self, unit: str) -> None:
        self._run("start", unit, ["start"])

    def stop(self, unit: str) -> None:
        self._run("stop", unit, ["stop"])

    def reload(self, unit: str) -> None:
        self._run("reload", unit, ["reload-or-restart"])

    def restart(self, unit: str) -> None:
        self._run("restart", unit, ["restart"])

    def signal(self, unit: str, signum: int) -> None:
        self._run("signal", unit, ["kill", f"--signal={int(signum)}"])

    def _run(self, operation: str, unit: str, args: List[str]) -> None:
        cmd = [self._systemctl, *args, unit]
        LOG.debug("Executing: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, check=False, text=True, capture_output=True)
        except OSError as exc:
            raise ServiceManagerError(unit, operation, str(exc)) from exc
        if result.returncode != 0:
            raise ServiceManagerError(unit, operation, result.stderr.strip())


class ManagedProcess(ABC):
    """A single controllable daemon instance."""

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def reload(self) -> None: ...

    @abstractmethod
    def restart(self) -> None: ...

    @abstractmethod
    def signal(self, signum: int) -> None: ...

    def signal_if_available(self, signum: int) -> bool:
        """Deliver ``signum`` only if that can happen right now.

        Returns ``False`` instead of deferring when the daemon cannot be
        reached, so callers with their own deadline never block on a gate.
        """

        self.signal(signum)
        return True

    def submit(self, operation: str, *args: Any) -> Future:
        """Request ``operation`` and return once it has run or been deferred.

        The returned future is already resolved when the action ran; it is
        still pending when the action waits for its namespace.
        """

        method = _operation(self, operation)
        future: Future = Future()
        try:
            method(*args)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(None)
        return future

    def close(self) -> None:
        """Tear the process down; the daemon is stopped."""

        self.stop()


OPERATIONS = ("start", "stop", "reload", "restart", "signal")


def _operation(process: ManagedProcess, operation: str) -> Callable[..., Any]:
    if operation not in OPERATIONS:
        raise ValueError(f"unsupported process operation '{operation}'")
    return getattr(process, operation)


def complete_or_defer(
    future: Future,
    what: str,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Propagate the outcome of a submitted action that already ran.

    A deferred action is left to finish on its own; its eventual failure is
    logged since nobody is waiting for it anymore.
    """

    log = logger or LOG
    if future.done():
        future.result()
        return

    log.info("%s deferred until its routing instance is available", what)

    def _finished(done: Future) -> None:
        exc = done.exception()
        if exc is None:
            log.info("deferred %s completed", what)
        elif isinstance(exc, (ActionSupersededError, ProcessClosedError)):
            log.debug("deferred %s dropped: %s", what, exc)
        else:
            log.error("deferred %s failed: %s", what, exc)

    future.add_done_callback(_finished)


class SystemdProcess(ManagedProcess):
    """Pass-through process bound to one service manager unit."""

    def __init__(self, manager: ServiceManager, unit: str) -> None:
        self._manager = manager
        self._unit = unit

    @property
    def unit(self) -> str:
        return self._unit

    def start(self) -> None:
        self._manager.start(self._unit)

    def stop(self) -> None:
        self._manager.stop(self._unit)

    def reload(self) -> None:
        self._manager.reload(self._unit)

    def restart(self) -> None:
        self._manager.restart(self._unit)

    def signal(self, signum: int) -> None:
        self._manager.signal(self._unit, signum)


@dataclass
class _Call:
    label: str
    action: Callable[[], Any]
    future: Future
    defer: bool = True
    accepted: Event = field(default_factory=Event)


@dataclass
class _Teardown:
    future: Future


_ADDED = object()
_REMOVED = object()


class VRFGatedProcess(ManagedProcess):
    """Defer control actions until the VRF ``name`` exists.

    While the namespace is present every call runs immediately against the
    wrapped process and returns its result.  While it is absent a call becomes
    the single pending action and the caller blocks until it runs; a newer
    call replaces it and the replaced caller gets
    :class:`~service_dns.errors.ActionSupersededError`.

    :meth:`close` cancels the namespace subscriptions, stops the wrapped
    process whatever the gate state is, hands that result to a caller still
    waiting on the pending action and ends the actor thread.  A failed stop
    leaves the gate open again so teardown can be retried.
    """

    def __init__(
        self,
        name: str,
        availability: NamespaceAvailability,
        process: ManagedProcess,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._name = name
        self._availability = availability
        self._process = process
        self._log = logger or LOG
        self._queue: "Queue[object]" = Queue()
        self._lock = Lock()
        self._close_lock = Lock()
        self._closed = False
        self._pending: Optional[_Call] = None
        self._subscriptions: List[Subscription] = []
        self._open()

    def _open(self) -> None:
        # Subscribe before the existence check so an appearance racing with
        # construction is queued rather than lost.
        with self._lock:
            self._subscriptions = [
                self._availability.subscribe_added(self._on_added),
                self._availability.subscribe_removed(self._on_removed),
            ]
            self._present = self._availability.exists(self._name)
            self._closed = False
        self._log.debug(
            "VRF '%s' gate starts %s",
            self._name,
            "available" if self._present else "unavailable",
        )

        self._thread = Thread(target=self._run, name=f"vrf-gate-{self._name}", daemon=True)
        self._thread.start()

    @property
    def name(self) -> str:
        return self._name

    @property
    def process(self) -> ManagedProcess:
        return self._process

    def start(self) -> None:
        self.submit("start").result()

    def stop(self) -> None:
        self.submit("stop").result()

    def reload(self) -> None:
        self.submit("reload").result()

    def restart(self) -> None:
        self.submit("restart").result()

    def signal(self, signum: int) -> None:
        self.submit("signal", signum).result()

    def signal_if_available(self, signum: int) -> bool:
        call = self._enqueue(
            f"signal {signum}",
            lambda: self._process.signal_if_available(signum),
            defer=False,
        )
        return call.future.result()

    def submit(self, operation: str, *args: Any) -> Future:
        method = _operation(self._process, operation)
        label = " ".join([operation, *(str(a) for a in args)])
        call = self._enqueue(label, lambda: method(*args))
        call.accepted.wait()
        return call.future

    def close(self) -> None:
        """Stop the daemon and end the actor.

        When the final stop fails the gate is reopened, so the process keeps
        accepting actions and a later :meth:`close` issues the stop again.
        """

        with self._close_lock:
            with self._lock:
                if self._closed:
                    return
                self._closed = True
                for subscription in self._subscriptions:
                    subscription.cancel()
                future: Future = Future()
                self._queue.put(_Teardown(future))
            try:
                future.result()
            except Exception:
                self._thread.join()
                self._log.warning("VRF '%s': stop failed, gate reopened", self._name)
                self._open()
                raise
            self._thread.join()

    # ------------------------------------------------------------------
    # Message producers
    # ------------------------------------------------------------------
    def _enqueue(self, label: str, action: Callable[[], Any], defer: bool = True) -> _Call:
        call = _Call(label, action, Future(), defer)
        with self._lock:
            if self._closed:
                raise ProcessClosedError(
                    f"{label} requested on closed process for VRF '{self._name}'"
                )
            self._queue.put(call)
        return call

    def _on_added(self, name: str) -> None:
        if name == self._name:
            self._post(_ADDED)

    def _on_removed(self, name: str) -> None:
        if name == self._name:
            self._post(_REMOVED)

    def _post(self, message: object) -> None:
        with self._lock:
            if not self._closed:
                self._queue.put(message)

    # ------------------------------------------------------------------
    # Actor
    # ------------------------------------------------------------------
    def _run(self) -> None:
        while True:
            message = self._queue.get()
            if message is _ADDED:
                self._available()
            elif message is _REMOVED:
                self._log.info("VRF '%s' removed, deferring actions", self._name)
                self._present = False
            elif isinstance(message, _Call):
                self._call(message)
            elif isinstance(message, _Teardown):
                self._teardown(message)
                return

    def _available(self) -> None:
        self._present = True
        pending, self._pending = self._pending, None
        if pending is None:
            self._log.info("VRF '%s' available", self._name)
            return
        self._log.info(
            "VRF '%s' available, running deferred %s", self._name, pending.label
        )
        self._execute(pending)

    def _call(self, call: _Call) -> None:
        if self._present:
            self._execute(call)
            return
        if not call.defer:
            call.future.set_result(False)
            call.accepted.set()
            return
        if self._pending is not None:
            self._log.debug(
                "VRF '%s': %s superseded by %s",
                self._name,
                self._pending.label,
                call.label,
            )
            self._pending.future.set_exception(
                ActionSupersededError(
                    f"{self._pending.label} superseded by {call.label} "
                    f"while VRF '{self._name}' was unavailable"
                )
            )
        self._log.debug("VRF '%s' unavailable, deferring %s", self._name, call.label)
        self._pending = call
        call.accepted.set()

    def _execute(self, call: _Call) -> None:
        try:
            result = call.action()
        except Exception as exc:
            call.future.set_exception(exc)
        else:
            call.future.set_result(result)
        call.accepted.set()

    def _teardown(self, message: _Teardown) -> None:
        pending, self._pending = self._pending, None
        futures = [message.future]
        if pending is not None:
            futures.insert(0, pending.future)
        self._log.info("VRF '%s' process torn down, stopping daemon", self._name)
        try:
            self._process.stop()
        except Exception as exc:
            for future in futures:
                future.set_exception(exc)
        else:
            for future in futures:
                future.set_result(None)
