"""Netlink poller publishing VRF appeared/disappeared events."""

from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Callable, Iterable, Set

import pyroute2

from service_dns.events import NamespaceAdded, NamespaceRemoved
from service_dns.registry import NamespaceRegistry

LOG = logging.getLogger(__name__)


def list_vrfs() -> Set[str]:
    """Names of the VRF devices currently present in the kernel."""

    vrfs: Set[str] = set()
    with pyroute2.IPRoute() as ipr:
        for link in ipr.get_links():
            link_info = link.get_attr("IFLA_LINKINFO")
            if link_info is None or link_info.get_attr("IFLA_INFO_KIND") != "vrf":
                continue
            vrfs.add(link.get_attr("IFLA_IFNAME"))
    return vrfs


def vrf_exists(name: str) -> bool:
    try:
        with pyroute2.IPRoute() as ipr:
            links = ipr.link_lookup(ifname=name)
            if not links:
                return False
            link_info = ipr.get_links(links[0])[0].get_attr("IFLA_LINKINFO")
    except Exception as e:
        LOG.debug("Could not look up VRF %s: %s", name, e)
        return False
    return link_info is not None and link_info.get_attr("IFLA_INFO_KIND") == "vrf"


class VRFAggregator:
    """Turn successive VRF sets into added/removed events."""

    def __init__(self, registry: NamespaceRegistry) -> None:
        self._registry = registry
        self._current: Set[str] = set()

    def update(self, vrfs: Iterable[str]) -> None:
        desired = set(vrfs)
        for name in sorted(desired - self._current):
            LOG.info("VRF %s appeared", name)
            self._registry.handle(NamespaceAdded(name))
        for name in sorted(self._current - desired):
            LOG.info("VRF %s disappeared", name)
            self._registry.handle(NamespaceRemoved(name))
        self._current = desired


class VRFWatcher(Thread):
    """Poll the kernel VRF devices and feed the namespace registry."""

    def __init__(
        self,
        registry: NamespaceRegistry,
        *,
        interval: float,
        stop_event: Event,
        lister: Callable[[], Iterable[str]] = list_vrfs,
    ) -> None:
        super().__init__(daemon=True, name="vrf-watcher")
        self._interval = interval
        self._stop_event = stop_event
        self._lister = lister
        self._aggregator = VRFAggregator(registry)

    def run(self) -> None:
        LOG.info("Starting VRF watcher (interval=%ss)", self._interval)
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:  # pragma: no cover - logged below
                LOG.exception("Failed to refresh VRF state")
            self._stop_event.wait(self._interval)
        LOG.info("Stopping VRF watcher")

    def poll(self) -> None:
        self._aggregator.update(self._lister())
