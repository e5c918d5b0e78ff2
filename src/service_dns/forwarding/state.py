"""Fetch fresh statistics from a running dnsmasq.

dnsmasq logs its statistics when it receives ``SIGUSR1``.  The instance is
configured with ``log-facility`` pointing at a dedicated state file, so one
snapshot is: truncate that file, signal the daemon, wait until the file has
been written and closed, then parse it together with the resolver sources
used for provenance.
"""

from __future__ import annotations

import logging
import signal
from pathlib import Path
from threading import Event, Lock
from typing import List, Optional, TYPE_CHECKING

from service_dns.fswatcher import DirectoryWatcher, FileEventHandler
from service_dns.process import ManagedProcess
from service_dns.versioned import VersionedValue

from .models import StateData
from .parsers import (
    StaticServer,
    read_glob_nameservers,
    read_nameservers,
    read_state_data,
    read_static_servers,
)
from .provenance import merge_provenance

if TYPE_CHECKING:
    from .instance import ForwardingPaths

LOG = logging.getLogger(__name__)


class _Flushed(FileEventHandler):
    def __init__(self, done: Event) -> None:
        self._done = done

    def on_close_write(self, path: Path) -> None:
        self._done.set()


class ForwardingState:
    """Snapshot coordinator for one forwarding instance.

    Only one snapshot runs at a time per instance because every snapshot
    truncates the shared state file.  When the daemon does not answer within
    ``timeout`` seconds the previous snapshot is returned unchanged.
    """

    def __init__(
        self,
        paths: "ForwardingPaths",
        process: ManagedProcess,
        *,
        timeout: float = 1.0,
        poll_interval: float = 0.05,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._paths = paths
        self._process = process
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._log = logger or LOG
        self._lock = Lock()
        self._cache: VersionedValue[StateData] = VersionedValue(StateData())

    @property
    def cached(self) -> StateData:
        return self._cache.get()

    def get(self) -> StateData:
        with self._lock:
            if not self._request():
                return self._cache.get()
            state = self._read()
            self._cache.swap(state)
            return state

    def _request(self) -> bool:
        state_file = self._paths.state_file
        try:
            with open(state_file, "w"):
                pass
        except OSError as exc:
            self._log.debug("forwarding-state-get: truncate %s: %s", state_file, exc)

        flushed = Event()
        watcher = DirectoryWatcher(
            {state_file: _Flushed(flushed)},
            interval=self._poll_interval,
            name=f"forwarding-state:{state_file}",
            logger=self._log,
        )
        watcher.start()
        try:
            try:
                delivered = self._process.signal_if_available(signal.SIGUSR1)
            except Exception as exc:
                self._log.error(
                    "forwarding-state-get: signalling %s failed: %s",
                    self._paths.unit,
                    exc,
                )
                return False
            if not delivered:
                self._log.warning(
                    "forwarding-state-get: %s not reachable, returning previous state",
                    self._paths.unit,
                )
                return False
            if not flushed.wait(self._timeout):
                self._log.warning(
                    "forwarding-state-get: timed out waiting for %s, "
                    "returning previous state",
                    state_file,
                )
                return False
            return True
        finally:
            watcher.stop()

    def _read_text(self, path: Path) -> str:
        try:
            return path.read_text()
        except OSError as exc:
            self._log.debug("forwarding-state-get: %s", exc)
            return ""

    def _read(self) -> StateData:
        state = read_state_data(self._read_text(self._paths.state_file))
        system = read_nameservers(self._read_text(self._paths.resolv_file))
        static: List[StaticServer] = read_static_servers(
            self._read_text(self._paths.conf_file)
        )
        dhcp = read_glob_nameservers(self._paths.dhcp_resolv_glob)
        ppp = read_glob_nameservers(self._paths.ppp_resolv_glob)
        state.nameservers = merge_provenance(
            state.nameservers, system, dhcp=dhcp, ppp=ppp, static=static
        )
        return state
