"""dnsmasq configuration rendering for forwarding instances."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, TYPE_CHECKING

from service_dns.config import ForwardingConfigData

if TYPE_CHECKING:
    from .instance import ForwardingPaths


CONFIG_HEADER = """### Autogenerated by service-dns
### Note: Manual changes to this file will be lost during
###       the next commit.
"""

ENV_HEADER = "### Autogenerated by service-dns\n"


@dataclass
class RenderResult:
    """Result of a dnsmasq rendering operation."""

    config_text: str
    config_path: Path
    env_text: str
    env_path: Path


def render_servers(servers: Iterable[str], tag: str) -> str:
    """Render catch-all ``server=`` lines, each annotated with ``tag``."""

    return "".join(f"server={server}\t# {tag}\n" for server in servers)


class DnsmasqRenderer:
    """Render dnsmasq.conf and the unit environment file of one instance."""

    def __init__(self, paths: "ForwardingPaths") -> None:
        self._paths = paths

    def render(self, conf: ForwardingConfigData) -> RenderResult:
        config_text = self.render_config(conf)
        self._paths.conf_file.parent.mkdir(parents=True, exist_ok=True)
        self._paths.conf_file.write_text(config_text)
        env_text = self.render_env()
        self._paths.env_file.write_text(env_text)
        return RenderResult(
            config_text=config_text,
            config_path=self._paths.conf_file,
            env_text=env_text,
            env_path=self._paths.env_file,
        )

    def render_config(self, conf: ForwardingConfigData) -> str:
        paths = self._paths
        lines = [
            f"log-facility={paths.state_file}",
            "no-poll",
            "edns-packet-max=4096",
        ]
        lines.extend(f"interface={name}" for name in conf.listen_on)
        lines.append(f"cache-size={conf.cache_size}")
        lines.extend(f"server={ns}\t# statically configured" for ns in conf.nameservers)
        lines.extend(
            f"server=/{o.domain}/{o.server}\t# domain-override"
            for o in conf.domain_overrides
        )
        if conf.nameservers_from_config():
            # Upstreams come from server= lines only; point resolv-file at a
            # file without nameserver entries.
            lines.append(f"resolv-file={paths.conf_file}")
        else:
            lines.append(f"resolv-file={paths.resolv_file}")
        lines.append("no-hosts")
        lines.append(f"addn-hosts={paths.hosts_file}")
        lines.append(f"conf-dir={paths.conf_dir},{','.join(paths.conf_dir_patterns)}")
        return CONFIG_HEADER + "\n".join(lines) + "\n"

    def render_env(self) -> str:
        return (
            ENV_HEADER
            + f"DNSMASQ_PID_FILE={self._paths.pid_file}\n"
            + f"DNSMASQ_CONF={self._paths.conf_file}\n"
        )
