"""Dynamic DNS update status read from ddclient cache files."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

LOG = logging.getLogger(__name__)

_FIELD_SEPARATOR = re.compile(r"[,\s]+")

STATUS_MAP = {
    "good": "successful",
    "nochg": "nochange",
    "": "nochange",
    "noconnect": "noconnect",
    "failed": "failed",
}


@dataclass
class HostState:
    hostname: str
    status: str
    address: Optional[str] = None
    last_update: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"hostname": self.hostname, "status": self.status}
        if self.address:
            data["address"] = self.address
        if self.last_update:
            data["last-update"] = self.last_update
        return data


@dataclass
class InterfaceState:
    name: str
    hosts: List[HostState] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "hosts": [h.to_dict() for h in self.hosts]}


@dataclass
class DynamicStateData:
    interfaces: List[InterfaceState] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"status": {"interfaces": [i.to_dict() for i in self.interfaces]}}


def map_status(status: str) -> str:
    """Translate a ddclient status word into the reported status."""

    mapped = STATUS_MAP.get(status)
    if mapped is None:
        LOG.debug("unknown ddclient status %r", status)
        return "nochange"
    return mapped


def _last_update(mtime: str) -> Optional[str]:
    try:
        seconds = int(mtime)
    except ValueError:
        LOG.debug("dns-dynamic-read-state-data: last-update: invalid mtime %r", mtime)
        return None
    if seconds == 0:
        # ddclient writes 0 before the first successful update.
        return None
    return (
        datetime.fromtimestamp(seconds, tz=timezone.utc)
        .isoformat()
        .replace("+00:00", "Z")
    )


def read_state_data(text: str, interface: str) -> InterfaceState:
    """Parse one ddclient cache file.

    Every non-comment line describes one host as ``key=value`` pairs
    separated by commas or whitespace.
    """

    state = InterfaceState(name=interface)
    for line in text.splitlines():
        if not line.strip() or line.startswith("#"):
            continue
        values: Dict[str, str] = {}
        for item in _FIELD_SEPARATOR.split(line.strip()):
            parts = item.split("=")
            if len(parts) != 2:
                continue
            values[parts[0]] = parts[1]
        state.hosts.append(
            HostState(
                hostname=values.get("host", ""),
                status=map_status(values.get("status", "")),
                address=values.get("ip") or None,
                last_update=_last_update(values.get("mtime", "")),
            )
        )
    return state
