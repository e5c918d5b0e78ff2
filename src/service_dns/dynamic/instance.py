"""Per-instance configuration sink for dynamic DNS (ddclient)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Mapping, Optional

from service_dns.config import DEFAULT_INSTANCE, DynamicConfigData, InterfaceConfigData
from service_dns.process import ManagedProcess, complete_or_defer

from .render import DDClientRenderer
from .state import DynamicStateData, read_state_data

LOG = logging.getLogger(__name__)

INSTANCE_ROOT = Path("/run/dns/vrf")

ProcessFactory = Callable[[str], ManagedProcess]


@dataclass(frozen=True)
class DynamicPaths:
    """Locations of the per-interface ddclient files of one instance.

    Patterns take an ``{interface}`` placeholder.
    """

    run_dir: Path
    cache_dir: Path
    config_dir: Path
    unit_pattern: str = "ddclient@{interface}.service"

    @classmethod
    def for_instance(cls, name: str, root: Path = INSTANCE_ROOT) -> "DynamicPaths":
        if name == DEFAULT_INSTANCE:
            return cls(
                run_dir=Path("/run/ddclient"),
                cache_dir=Path("/var/cache/ddclient"),
                config_dir=Path("/etc/ddclient"),
            )
        if not name or "/" in name or name in (".", ".."):
            raise ValueError(f"invalid instance name '{name}'")
        base = Path(root) / name / "ddclient"
        return cls(run_dir=base, cache_dir=base / "cache", config_dir=base / "config")

    def unit(self, interface: str) -> str:
        return self.unit_pattern.format(interface=interface)

    def config_file(self, interface: str) -> Path:
        return self.config_dir / f"ddclient_{interface}.conf"

    def cache_file(self, interface: str) -> Path:
        return self.cache_dir / f"ddclient_{interface}.cache"

    def env_file(self, interface: str) -> Path:
        return self.run_dir / interface / "ddclient.env"

    def pid_file(self, interface: str) -> Path:
        return self.run_dir / f"ddclient_{interface}.pid"


def _remove(path: Path, log: logging.Logger) -> None:
    try:
        path.unlink()
    except OSError as exc:
        log.debug("remove %s: %s", path, exc)


class DynamicInstance:
    """Keep the ddclient units of one instance in line with its configuration.

    One unit runs per configured interface.  Interfaces are diffed on every
    change: removed ones are stopped and their files deleted, new or changed
    ones are rendered and reloaded.
    """

    def __init__(
        self,
        name: str,
        paths: DynamicPaths,
        process_factory: ProcessFactory,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._name = name
        self._paths = paths
        self._factory = process_factory
        self._log = logger or LOG
        self._lock = Lock()
        self._renderer = DDClientRenderer(paths)
        self._current: Optional[DynamicConfigData] = None
        self._processes: Dict[str, ManagedProcess] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def paths(self) -> DynamicPaths:
        return self._paths

    def get(self) -> Optional[DynamicConfigData]:
        return self._current

    def process(self, interface: str) -> Optional[ManagedProcess]:
        return self._processes.get(interface)

    def interfaces(self) -> Mapping[str, InterfaceConfigData]:
        current = self._current
        if current is None:
            return {}
        return {i.name: i for i in current.interfaces}

    def set(self, conf: Optional[DynamicConfigData]) -> None:
        with self._lock:
            if conf == self._current and (conf is not None or not self._processes):
                return
            old = self.interfaces()
            new = {i.name: i for i in conf.interfaces} if conf is not None else {}

            # Units are tracked separately from the stored configuration
            # since a failed apply leaves the configuration unchanged.
            for name in sorted(set(self._processes) - set(new)):
                self._remove_interface(name)
            for name in sorted(new):
                if old.get(name) != new[name] or name not in self._processes:
                    self._apply_interface(new[name])
            self._current = conf

    def state(self) -> DynamicStateData:
        data = DynamicStateData()
        for name in self.interfaces():
            cache = self._paths.cache_file(name)
            try:
                text = cache.read_text()
            except OSError as exc:
                self._log.debug("dns-dynamic-state-get: %s", exc)
                text = ""
            data.interfaces.append(read_state_data(text, name))
        return data

    def _apply_interface(self, interface: InterfaceConfigData) -> None:
        name = interface.name
        result = self._renderer.render(interface)
        self._log.debug("%s: wrote %s", self._name, result.config_path)

        process = self._processes.get(name)
        if process is None:
            process = self._factory(self._paths.unit(name))
            self._processes[name] = process
        self._log.info("%s: dynamic DNS on %s changed, reloading", self._name, name)
        complete_or_defer(
            process.submit("reload"), f"reload of {self._paths.unit(name)}", self._log
        )

    def _remove_interface(self, name: str) -> None:
        # The unit stays tracked until it stopped, so the next pass retries.
        process = self._processes.get(name)
        error: Optional[Exception] = None
        if process is not None:
            try:
                process.close()
            except Exception as exc:
                self._log.error("%s: stopping %s failed: %s", self._name, self._paths.unit(name), exc)
                error = exc
            else:
                del self._processes[name]

        for path in (
            self._paths.config_file(name),
            self._paths.env_file(name),
            self._paths.cache_file(name),
        ):
            _remove(path, self._log)
        try:
            self._paths.env_file(name).parent.rmdir()
        except OSError as exc:
            self._log.debug("remove %s: %s", self._paths.env_file(name).parent, exc)

        self._log.info("%s: dynamic DNS on %s removed", self._name, name)
        if error is not None:
            raise error
