"""Top level DNS service: routes a declared tree to per-instance sinks."""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Callable, Mapping, Optional

from .config import DEFAULT_INSTANCE, ConfigData
from .dynamic import DynamicInstance, DynamicPaths
from .forwarding import ForwardingInstance, ForwardingPaths
from .process import ManagedProcess, ServiceManager, SystemdProcess, VRFGatedProcess
from .reconciler import InstanceReconciler, ReconcileResult
from .registry import NamespaceAvailability

LOG = logging.getLogger(__name__)


class DNSService:
    """Keep every forwarding and dynamic DNS instance in line with a tree.

    The ``default`` instance controls its units directly.  Any other name is
    a routing instance; its units are wrapped in a :class:`VRFGatedProcess`
    so actions wait for the VRF of the same name.

    Parameters
    ----------
    manager:
        Service manager that runs the daemon units.
    availability:
        Source of VRF appeared/disappeared events.
    forwarding_paths, dynamic_paths:
        Builders of the per-instance file layouts.
    on_cleared:
        Called after the whole tree has been cleared with ``set(None)``.
    """

    def __init__(
        self,
        manager: ServiceManager,
        availability: NamespaceAvailability,
        *,
        forwarding_paths: Callable[[str], ForwardingPaths] = ForwardingPaths.for_instance,
        dynamic_paths: Callable[[str], DynamicPaths] = DynamicPaths.for_instance,
        watch_interval: float = 0.5,
        snapshot_timeout: float = 1.0,
        snapshot_poll_interval: float = 0.05,
        on_cleared: Optional[Callable[[], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._manager = manager
        self._availability = availability
        self._forwarding_paths = forwarding_paths
        self._dynamic_paths = dynamic_paths
        self._watch_interval = watch_interval
        self._snapshot_timeout = snapshot_timeout
        self._snapshot_poll_interval = snapshot_poll_interval
        self._on_cleared = on_cleared
        self._log = logger or LOG
        self._lock = Lock()
        self._current: Optional[ConfigData] = None
        self._forwarding: InstanceReconciler[ForwardingInstance] = InstanceReconciler(
            self._new_forwarding, kind="forwarding", logger=self._log
        )
        self._dynamic: InstanceReconciler[DynamicInstance] = InstanceReconciler(
            self._new_dynamic, kind="dynamic", logger=self._log
        )

    @classmethod
    def under(
        cls,
        root: Path,
        manager: ServiceManager,
        availability: NamespaceAvailability,
        **kwargs,
    ) -> "DNSService":
        """Service keeping every generated file below ``root``."""

        return cls(
            manager,
            availability,
            forwarding_paths=lambda name: ForwardingPaths.for_instance(name, root),
            dynamic_paths=lambda name: DynamicPaths.for_instance(name, root),
            **kwargs,
        )

    def get(self) -> Optional[ConfigData]:
        return self._current

    def set(self, config: Optional[ConfigData]) -> ReconcileResult:
        """Apply a complete declared tree; ``None`` clears everything."""

        with self._lock:
            forwarding = config.forwarding_instances() if config is not None else {}
            dynamic = config.dynamic_instances() if config is not None else {}
            result = ReconcileResult.combine(
                {
                    "forwarding": self._forwarding.reconcile(forwarding),
                    "dynamic": self._dynamic.reconcile(dynamic),
                }
            )
            self._current = config

        if not result.ok:
            self._log.error(
                "configuration applied with errors: %s", ", ".join(sorted(result.errors))
            )
        if config is None and self._on_cleared is not None:
            self._log.info("configuration cleared")
            self._on_cleared()
        return result

    def forwarding_instances(self) -> Mapping[str, ForwardingInstance]:
        return self._forwarding.instances()

    def dynamic_instances(self) -> Mapping[str, DynamicInstance]:
        return self._dynamic.instances()

    def process(self, instance: str, unit: str) -> ManagedProcess:
        """Build the process controlling ``unit`` for ``instance``."""

        direct = SystemdProcess(self._manager, unit)
        if instance == DEFAULT_INSTANCE:
            return direct
        return VRFGatedProcess(instance, self._availability, direct, logger=self._log)

    def _new_forwarding(self, name: str) -> ForwardingInstance:
        paths = self._forwarding_paths(name)
        return ForwardingInstance(
            name,
            paths,
            self.process(name, paths.unit),
            watch_interval=self._watch_interval,
            snapshot_timeout=self._snapshot_timeout,
            snapshot_poll_interval=self._snapshot_poll_interval,
            logger=self._log,
        )

    def _new_dynamic(self, name: str) -> DynamicInstance:
        return DynamicInstance(
            name,
            self._dynamic_paths(name),
            lambda unit: self.process(name, unit),
            logger=self._log,
        )
