"""Entry point for the standalone DNS agent."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event, Thread
from typing import List

from service_dns import DNSService, NamespaceRegistry
from service_dns.process import SystemctlServiceManager

from .config import AgentConfig, WatcherConfig, load_config
from .watchers import FileConfigWatcher, VRFWatcher, vrf_exists

LOG = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("/etc/service-dns/agent.yaml")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def build_service(config: AgentConfig, registry: NamespaceRegistry, stop_event: Event) -> DNSService:
    """Wire the DNS service; clearing its tree ends the agent."""

    return DNSService(
        SystemctlServiceManager(config.systemctl),
        registry,
        forwarding_paths=config.paths.forwarding_paths,
        dynamic_paths=config.paths.dynamic_paths,
        watch_interval=config.watch_interval,
        snapshot_timeout=config.snapshot.timeout,
        snapshot_poll_interval=config.snapshot.poll_interval,
        on_cleared=stop_event.set,
    )


def _build_watcher(
    watcher_cfg: WatcherConfig,
    service: DNSService,
    registry: NamespaceRegistry,
    stop_event: Event,
):
    if watcher_cfg.type == "vrf":
        return VRFWatcher(registry, interval=watcher_cfg.interval, stop_event=stop_event)
    if watcher_cfg.type == "file":
        return FileConfigWatcher(
            service,
            path=watcher_cfg.path,
            interval=watcher_cfg.interval,
            stop_event=stop_event,
        )
    raise ValueError(f"unsupported watcher type '{watcher_cfg.type}'")


def build_watchers(
    config: AgentConfig,
    service: DNSService,
    registry: NamespaceRegistry,
    stop_event: Event,
) -> List[Thread]:
    """Create the configured watchers, VRF watchers first.

    Gates must know the current VRFs before the first tree is applied.
    """

    ordered = sorted(config.watchers, key=lambda w: w.type != "vrf")
    return [_build_watcher(w, service, registry, stop_event) for w in ordered]


def start_watchers(watchers: List[Thread]) -> None:
    for watcher in watchers:
        try:
            watcher.poll()
        except Exception:  # pragma: no cover - logged inside watcher
            LOG.exception("initial poll of %s failed", watcher.name)
        watcher.start()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Supervise dnsmasq and ddclient instances")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to the agent configuration file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config(args.config)

    stop_event = Event()
    registry = NamespaceRegistry(checker=vrf_exists)
    service = build_service(config, registry, stop_event)
    watchers = build_watchers(config, service, registry, stop_event)
    if not watchers:
        LOG.warning("no watchers configured; no configuration will be applied")
    start_watchers(watchers)

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, leaving daemons running", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    for watcher in watchers:
        watcher.join()

    LOG.info("DNS agent stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
