"""YAML configuration loader for the DNS agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Sequence

import yaml

from service_dns.dynamic import DynamicPaths
from service_dns.forwarding import ForwardingPaths
from service_dns.forwarding.instance import INSTANCE_ROOT

WATCHER_TYPES = ("file", "vrf")


@dataclass(frozen=True)
class PathsConfig:
    instance_root: Path = INSTANCE_ROOT

    def forwarding_paths(self, name: str) -> ForwardingPaths:
        return ForwardingPaths.for_instance(name, self.instance_root)

    def dynamic_paths(self, name: str) -> DynamicPaths:
        return DynamicPaths.for_instance(name, self.instance_root)


@dataclass(frozen=True)
class SnapshotConfig:
    timeout: float = 1.0
    poll_interval: float = 0.05


@dataclass(frozen=True)
class WatcherConfig:
    type: str
    path: Path = Path(".")
    interval: float = 5.0


@dataclass(frozen=True)
class AgentConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    watchers: Sequence[WatcherConfig] = field(default_factory=tuple)
    systemctl: str = "systemctl"
    watch_interval: float = 0.5


def _section(data: dict, name: str) -> dict:
    section = data.get(name, {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be a mapping")
    return section


def _parse_snapshot(section: dict) -> SnapshotConfig:
    snapshot = SnapshotConfig(
        timeout=float(section.get("timeout", 1.0)),
        poll_interval=float(section.get("poll_interval", 0.05)),
    )
    if snapshot.timeout <= 0 or snapshot.poll_interval <= 0:
        raise ValueError("snapshot 'timeout' and 'poll_interval' must be positive")
    return snapshot


def _parse_watchers(entries: Iterable[dict]) -> List[WatcherConfig]:
    watchers: List[WatcherConfig] = []
    for entry in entries:
        if not isinstance(entry, dict) or "type" not in entry:
            raise ValueError("each watcher must be a mapping with a 'type'")
        kind = str(entry["type"])
        if kind not in WATCHER_TYPES:
            raise ValueError(f"unsupported watcher type '{kind}'")
        if kind == "file" and "path" not in entry:
            raise ValueError("file watcher requires 'path'")
        watchers.append(
            WatcherConfig(
                type=kind,
                path=Path(entry.get("path", ".")),
                interval=float(entry.get("interval", entry.get("poll_interval", 5.0))),
            )
        )
    return watchers


def load_config(path: Path) -> AgentConfig:
    data = yaml.safe_load(path.read_text())
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Agent configuration must be a mapping")

    paths = _section(data, "paths")
    watchers_section = data.get("watchers", [])
    if not isinstance(watchers_section, list):
        raise ValueError("'watchers' section must be a list")

    return AgentConfig(
        paths=PathsConfig(
            instance_root=Path(paths.get("instance_root", INSTANCE_ROOT)),
        ),
        snapshot=_parse_snapshot(_section(data, "snapshot")),
        watchers=tuple(_parse_watchers(watchers_section)),
        systemctl=str(data.get("systemctl", "systemctl")),
        watch_interval=float(data.get("watch_interval", 0.5)),
    )
