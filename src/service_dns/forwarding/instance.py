"""Per-instance configuration sink for DNS forwarding (dnsmasq)."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, Optional, Tuple

from service_dns.config import DEFAULT_INSTANCE, ForwardingConfigData
from service_dns.fswatcher import DirectoryWatcher, FileEventHandler
from service_dns.process import ManagedProcess, complete_or_defer

from .models import StateData
from .parsers import read_lease_nameservers, read_nameservers
from .render import DnsmasqRenderer, render_servers
from .state import ForwardingState

LOG = logging.getLogger(__name__)

INSTANCE_ROOT = Path("/run/dns/vrf")
DHCP_LEASE_PATTERN = "/var/lib/dhcp/dhclient_{interface}_lease"
DHCP_RESOLV_GLOB = "/var/lib/dhcp/dhclient-*-resolv.conf"
PPP_RESOLV_GLOB = "/etc/ppp/resolv-*.conf"
SYSTEM_RESOLV_FILE = Path("/etc/resolv.conf")
SYSTEM_HOSTS_FILE = Path("/etc/hosts")


def validate_instance_name(name: str) -> str:
    if not name or "/" in name or name in (".", ".."):
        raise ValueError(f"invalid instance name '{name}'")
    return name


@dataclass(frozen=True)
class ForwardingPaths:
    """File layout and unit name of one forwarding instance.

    Build it with :meth:`for_instance`; every default location is decided
    there.

    Attributes
    ----------
    instance_dir:
        Directory owned by the instance; removed with it when empty.
    dhcp_conf_pattern:
        Fragment written per DHCP interface; ``{interface}`` is substituted.
    dhcp_lease_pattern:
        Lease file watched per DHCP interface.
    resolv_file:
        Resolver file of the routing instance.  The default instance uses
        the system one.
    """

    unit: str
    instance_dir: Path
    env_file: Path
    conf_file: Path
    conf_dir: Path
    dhcp_conf_pattern: str
    system_conf_file: Path
    pid_file: Path
    state_file: Path
    resolv_file: Path
    hosts_file: Path
    conf_dir_patterns: Tuple[str, ...] = ("*.conf",)
    dhcp_lease_pattern: str = DHCP_LEASE_PATTERN
    dhcp_resolv_glob: str = DHCP_RESOLV_GLOB
    ppp_resolv_glob: str = PPP_RESOLV_GLOB

    @classmethod
    def for_instance(
        cls, name: str, root: Path = INSTANCE_ROOT
    ) -> "ForwardingPaths":
        validate_instance_name(name)
        base = Path(root) / name
        conf_dir = base / "dnsmasq.d"
        if name == DEFAULT_INSTANCE:
            resolv_file, hosts_file = SYSTEM_RESOLV_FILE, SYSTEM_HOSTS_FILE
        else:
            resolv_file, hosts_file = base / "resolv.conf", base / "hosts"
        return cls(
            unit=f"dnsmasq@{name}.service",
            instance_dir=base,
            env_file=base / "dnsmasq.env",
            conf_file=base / "dnsmasq.conf",
            conf_dir=conf_dir,
            dhcp_conf_pattern=str(conf_dir / "dhcpinterface-{interface}.conf"),
            system_conf_file=conf_dir / "system.conf",
            pid_file=base / "dnsmasq.pid",
            state_file=base / "dnsmasq.log",
            resolv_file=resolv_file,
            hosts_file=hosts_file,
        )

    def dhcp_conf_file(self, interface: str) -> Path:
        return Path(self.dhcp_conf_pattern.format(interface=interface))

    def dhcp_lease_file(self, interface: str) -> Path:
        return Path(self.dhcp_lease_pattern.format(interface=interface))


def _remove(path: Path, log: logging.Logger) -> None:
    try:
        path.unlink()
    except OSError as exc:
        log.debug("remove %s: %s", path, exc)


def _write_if_changed(path: Path, text: str) -> bool:
    try:
        if path.read_text() == text:
            return False
    except OSError:
        pass
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return True


def _reload(process: ManagedProcess, what: str, log: logging.Logger) -> None:
    complete_or_defer(process.submit("reload"), what, log)


class ReloadWatcher(FileEventHandler):
    """Reload the daemon whenever ``path`` has been rewritten."""

    def __init__(
        self,
        path: Path,
        process: ManagedProcess,
        *,
        interval: float = 0.5,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._path = Path(path)
        self._process = process
        self._log = logger or LOG
        self._watcher = DirectoryWatcher.watch(
            self._path,
            self,
            interval=interval,
            name=f"reload-watcher:{self._path}",
            logger=self._log,
        )

    @property
    def path(self) -> Path:
        return self._path

    def on_close_write(self, path: Path) -> None:
        self._log.info("%s changed, reloading", path)
        _reload(self._process, f"reload after {path} changed", self._log)

    def stop(self) -> None:
        self._watcher.stop()


class _LeaseHandler(FileEventHandler):
    def __init__(self, table: "DHCPNameservers", interface: str) -> None:
        self._table = table
        self._interface = interface

    def on_close_write(self, path: Path) -> None:
        if self._table.render(self._interface):
            _reload(
                self._table.process,
                f"reload after DHCP lease change on {self._interface}",
                self._table.log,
            )

    def on_remove(self, path: Path) -> None:
        self.on_close_write(path)


class DHCPNameservers:
    """Per-interface ``server=`` fragments fed from DHCP lease files."""

    def __init__(
        self,
        paths: ForwardingPaths,
        process: ManagedProcess,
        *,
        interval: float = 0.5,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._paths = paths
        self.process = process
        self._interval = interval
        self.log = logger or LOG
        self._watchers: Dict[str, DirectoryWatcher] = {}

    @property
    def interfaces(self) -> Tuple[str, ...]:
        return tuple(sorted(self._watchers))

    def set(self, interfaces: Iterable[str]) -> None:
        wanted = set(interfaces)
        for name in sorted(set(self._watchers) - wanted):
            self.log.debug("dhcp nameservers: dropping interface %s", name)
            self._watchers.pop(name).stop()
            _remove(self._paths.dhcp_conf_file(name), self.log)
        for name in sorted(wanted - set(self._watchers)):
            self.log.debug("dhcp nameservers: adding interface %s", name)
            self.render(name)
            self._watchers[name] = DirectoryWatcher.watch(
                self._paths.dhcp_lease_file(name),
                _LeaseHandler(self, name),
                interval=self._interval,
                name=f"dhcp-lease-watcher:{name}",
                logger=self.log,
            )

    def render(self, interface: str) -> bool:
        """Rewrite the fragment of ``interface``; True when it changed."""

        lease = self._paths.dhcp_lease_file(interface)
        try:
            servers = read_lease_nameservers(lease.read_text())
        except OSError as exc:
            self.log.debug("dhcp nameservers %s: %s", interface, exc)
            servers = []
        text = render_servers(servers, f"dhcp {interface}")
        return _write_if_changed(self._paths.dhcp_conf_file(interface), text)


class SystemNameservers(FileEventHandler):
    """Mirror the resolver file nameservers into the ``system.conf`` fragment."""

    def __init__(
        self,
        paths: ForwardingPaths,
        process: ManagedProcess,
        *,
        interval: float = 0.5,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._paths = paths
        self._process = process
        self._interval = interval
        self._log = logger or LOG
        self._watcher: Optional[DirectoryWatcher] = None

    @property
    def enabled(self) -> bool:
        return self._watcher is not None

    def set(self, enabled: bool) -> None:
        if enabled and self._watcher is None:
            self.render()
            self._watcher = DirectoryWatcher.watch(
                self._paths.resolv_file,
                self,
                interval=self._interval,
                name=f"system-nameservers:{self._paths.resolv_file}",
                logger=self._log,
            )
        elif not enabled and self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
            _remove(self._paths.system_conf_file, self._log)

    def render(self) -> bool:
        try:
            servers = read_nameservers(self._paths.resolv_file.read_text())
        except OSError as exc:
            self._log.debug("system nameservers: %s", exc)
            servers = []
        text = render_servers(servers, "system")
        return _write_if_changed(self._paths.system_conf_file, text)

    def on_close_write(self, path: Path) -> None:
        if self.render():
            _reload(self._process, "reload after system nameserver change", self._log)

    def on_remove(self, path: Path) -> None:
        self.on_close_write(path)


class ForwardingInstance:
    """Keep one dnsmasq instance in line with its declared configuration.

    :meth:`set` is a no-op for a configuration equal to the stored one.  A
    changed configuration is rendered and the daemon restarted; ``None`` tears
    the instance down.
    """

    def __init__(
        self,
        name: str,
        paths: ForwardingPaths,
        process: ManagedProcess,
        *,
        watch_interval: float = 0.5,
        snapshot_timeout: float = 1.0,
        snapshot_poll_interval: float = 0.05,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._name = name
        self._paths = paths
        self._process = process
        self._interval = watch_interval
        self._log = logger or LOG
        self._lock = Lock()
        self._current: Optional[ForwardingConfigData] = None
        self._active = False
        self._renderer = DnsmasqRenderer(paths)
        self._resolv_watcher: Optional[ReloadWatcher] = None
        self._hosts_watcher: Optional[ReloadWatcher] = None
        self._dhcp = DHCPNameservers(
            paths, process, interval=watch_interval, logger=self._log
        )
        self._system = SystemNameservers(
            paths, process, interval=watch_interval, logger=self._log
        )
        self._state = ForwardingState(
            paths,
            process,
            timeout=snapshot_timeout,
            poll_interval=snapshot_poll_interval,
            logger=self._log,
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def paths(self) -> ForwardingPaths:
        return self._paths

    @property
    def process(self) -> ManagedProcess:
        return self._process

    def get(self) -> Optional[ForwardingConfigData]:
        return self._current

    def state(self) -> StateData:
        return self._state.get()

    def set(self, conf: Optional[ForwardingConfigData]) -> None:
        with self._lock:
            # A failed first apply leaves files and watchers behind, so None
            # still tears down an active instance.
            if conf == self._current and (conf is not None or not self._active):
                return
            if conf is None:
                self._delete()
                self._active = False
            else:
                self._active = True
                self._update(conf)
            self._current = conf

    def _update(self, conf: ForwardingConfigData) -> None:
        for directory in (self._paths.instance_dir, self._paths.conf_dir):
            directory.mkdir(parents=True, exist_ok=True)

        self._renderer.render(conf)
        self._log.debug("%s: wrote %s", self._name, self._paths.conf_file)

        if conf.nameservers_from_config():
            if self._resolv_watcher is not None:
                self._resolv_watcher.stop()
                self._resolv_watcher = None
        elif self._resolv_watcher is None:
            self._resolv_watcher = ReloadWatcher(
                self._paths.resolv_file,
                self._process,
                interval=self._interval,
                logger=self._log,
            )
        if self._hosts_watcher is None:
            self._hosts_watcher = ReloadWatcher(
                self._paths.hosts_file,
                self._process,
                interval=self._interval,
                logger=self._log,
            )

        self._dhcp.set(conf.dhcp_interfaces)
        self._system.set(conf.system)

        self._log.info("%s: forwarding configuration changed, restarting", self._name)
        complete_or_defer(
            self._process.submit("restart"),
            f"restart of {self._paths.unit}",
            self._log,
        )

    def _delete(self) -> None:
        for watcher in (self._resolv_watcher, self._hosts_watcher):
            if watcher is not None:
                watcher.stop()
        self._resolv_watcher = None
        self._hosts_watcher = None
        self._dhcp.set(())
        self._system.set(False)

        error: Optional[Exception] = None
        try:
            self._process.close()
        except Exception as exc:
            self._log.error("%s: stopping %s failed: %s", self._name, self._paths.unit, exc)
            error = exc

        for path in (self._paths.conf_file, self._paths.env_file, self._paths.state_file):
            _remove(path, self._log)
        try:
            shutil.rmtree(self._paths.conf_dir)
        except OSError as exc:
            self._log.debug("remove %s: %s", self._paths.conf_dir, exc)
        try:
            self._paths.instance_dir.rmdir()
        except OSError as exc:
            self._log.debug("remove %s: %s", self._paths.instance_dir, exc)

        self._log.info("%s: forwarding instance removed", self._name)
        if error is not None:
            raise error
