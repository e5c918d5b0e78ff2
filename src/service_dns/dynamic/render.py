"""ddclient configuration rendering."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

from service_dns.config import InterfaceConfigData, ServiceConfigData

if TYPE_CHECKING:
    from .instance import DynamicPaths


CONFIG_HEADER = """### Autogenerated by service-dns
### Note: Manual changes to this file will be lost during
###       the next commit.
"""

ENV_HEADER = "### Autogenerated by service-dns\n"

DAEMON_INTERVAL = 300

# service name -> (protocol, server)
PROVIDERS: Dict[str, Tuple[str, str]] = {
    "dyndns": ("dyndns2", "members.dyndns.org"),
    "dnspark": ("dnspark", "www.dnspark.com"),
    "dslreports": ("dslreports1", "www.dslreports.com"),
    "easydns": ("easydns", "members.easydns.com"),
    "namecheap": ("namecheap", "dynamicdns.park-your-domain.com"),
    "zoneedit": ("zoneedit1", "dynamic.zoneedit.com"),
    "sitelutions": ("sitelutions", "www.sitelutions.com"),
}


@dataclass
class RenderResult:
    config_text: str
    config_path: Path
    env_text: str
    env_path: Path


def resolve_provider(service: ServiceConfigData) -> Tuple[Optional[str], Optional[str]]:
    """Return the ``(protocol, server)`` pair ddclient should use.

    Explicitly configured values win over the well-known provider table.
    """

    protocol, server = PROVIDERS.get(service.name, (None, None))
    return service.protocol or protocol, service.server or server


def _quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _write_private(path: Path, text: str) -> None:
    # Holds provider credentials; the mode is set when the file is created.
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as handle:
        os.fchmod(handle.fileno(), 0o600)
        handle.write(text)


class DDClientRenderer:
    """Render the configuration and environment files of one ddclient unit."""

    def __init__(self, paths: "DynamicPaths") -> None:
        self._paths = paths

    def render(self, interface: InterfaceConfigData) -> RenderResult:
        name = interface.name
        config_path = self._paths.config_file(name)
        env_path = self._paths.env_file(name)
        config_text = self.render_config(interface)
        env_text = self.render_env(name)

        for directory in (config_path.parent, env_path.parent, self._paths.cache_dir):
            directory.mkdir(parents=True, exist_ok=True)
        _write_private(config_path, config_text)
        env_path.write_text(env_text)
        return RenderResult(config_text, config_path, env_text, env_path)

    def render_config(self, interface: InterfaceConfigData) -> str:
        name = interface.name
        lines: List[str] = [
            f"daemon={DAEMON_INTERVAL}",
            "syslog=yes",
            f"pid={self._paths.pid_file(name)}",
            f"cache={self._paths.cache_file(name)}",
            f"use=if, if={name}",
        ]
        for service in interface.services:
            protocol, server = resolve_provider(service)
            lines.append("")
            lines.append(f"# service {service.name}")
            if protocol:
                lines.append(f"protocol={protocol}")
            if server:
                lines.append(f"server={server}")
            if service.login:
                lines.append(f"login={service.login}")
            if service.password:
                lines.append(f"password={_quote(service.password)}")
            if service.host_names:
                lines.append(",".join(service.host_names))
        return CONFIG_HEADER + "\n".join(lines) + "\n"

    def render_env(self, interface: str) -> str:
        return (
            ENV_HEADER
            + f"DDCLIENT_CONF={self._paths.config_file(interface)}\n"
            + f"DDCLIENT_PID_FILE={self._paths.pid_file(interface)}\n"
        )
