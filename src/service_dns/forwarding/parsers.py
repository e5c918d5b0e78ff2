"""Line oriented parsers for dnsmasq dumps and resolver configuration files.

None of these functions raise on malformed input.  A numeric field that does
not parse is reported as zero and logged at debug level; a line that does not
have the expected shape is skipped.
"""

from __future__ import annotations

import glob
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .models import CacheStats, NameserverState, StateData

LOG = logging.getLogger(__name__)

_DIGITS = re.compile(r"^[0-9]+$")
_SERVER_ENTRY = re.compile(r"^server=(\S+)")
_CONF_DIR_ENTRY = re.compile(r"^conf-dir=(\S+)")
_LEASE_SHELL = re.compile(r"""^\s*new_domain_name_servers=['"]?([^'"]*)['"]?\s*$""")
_LEASE_OPTION = re.compile(r"^\s*option\s+domain-name-servers\s+([^;]+);")


def _uint(text: str, what: str, bits: int = 64) -> int:
    if not _DIGITS.match(text):
        LOG.debug("%s: invalid value %r", what, text)
        return 0
    value = int(text)
    if value >= 1 << bits:
        LOG.debug("%s: value %s out of range", what, text)
        return 0
    return value


# ----------------------------------------------------------------------
# dnsmasq statistics dump
# ----------------------------------------------------------------------
def _read_cache_stats(state: StateData, lines: List[str]) -> None:
    for line in lines:
        if "cache size" not in line:
            continue
        fields = line.split()
        if len(fields) < 8:
            LOG.debug("read-cache-stats: invalid cache statistics line: %s", line)
            continue
        state.cache.size = _uint(fields[6].strip(","), "read-cache-stats: cache size", 32)
        entries = fields[7].split("/")
        if len(entries) != 2:
            LOG.debug("read-cache-stats: unexpected format of entries field: %s", line)
            continue
        state.cache.entries = _uint(entries[1], "read-cache-stats: cache entries")
        state.cache.reused_entries = _uint(entries[0], "read-cache-stats: reused entries")


def _read_query_stats(state: StateData, lines: List[str]) -> None:
    for line in lines:
        if "queries forwarded" not in line:
            continue
        fields = line.split()
        if len(fields) < 11:
            LOG.debug("read-query-stats: invalid query statistics line: %s", line)
            continue
        state.queries_forwarded = _uint(fields[6].strip(","), "read-query-stats: forwarded")
        state.queries_answered = _uint(fields[10], "read-query-stats: answered")


def _read_nameserver_stats(lines: List[str]) -> List[NameserverState]:
    nameservers: List[NameserverState] = []
    for line in lines:
        if "server" not in line:
            continue
        fields = line.split()
        if len(fields) < 13:
            LOG.debug("read-nameserver-stats: invalid server line: %s", line)
            continue
        server_port = fields[5].strip(":").split("#")
        if len(server_port) != 2:
            LOG.debug("read-nameserver-stats: invalid server line: %s", line)
            continue
        nameservers.append(
            NameserverState(
                address=server_port[0],
                port=_uint(server_port[1], "read-nameserver-stats: port", 16),
                queries_sent=_uint(fields[8].strip(","), "read-nameserver-stats: sent"),
                queries_retried_or_failed=_uint(
                    fields[12], "read-nameserver-stats: retried"
                ),
            )
        )
    return nameservers


def read_state_data(text: str) -> StateData:
    """Parse the statistics dnsmasq logs when it receives ``SIGUSR1``."""

    lines = text.splitlines()
    state = StateData(cache=CacheStats())
    _read_cache_stats(state, lines)
    _read_query_stats(state, lines)
    state.nameservers = _read_nameserver_stats(lines)
    return state


# ----------------------------------------------------------------------
# Resolver lists
# ----------------------------------------------------------------------
def read_nameservers(text: str) -> List[str]:
    """Return the ``nameserver`` entries of a resolv.conf style file."""

    servers = []
    for line in text.splitlines():
        if not line.startswith("nameserver"):
            continue
        fields = line.split()
        if len(fields) < 2:
            LOG.debug("read-resolv-nameservers: invalid line: %s", line)
            continue
        servers.append(fields[1])
    return servers


def read_glob_nameservers(pattern: str) -> List[str]:
    """Collect nameservers from every file matching ``pattern``."""

    servers: List[str] = []
    for name in sorted(glob.glob(pattern)):
        try:
            text = Path(name).read_text()
        except OSError as exc:
            LOG.debug("read-glob-nameservers %s: %s", pattern, exc)
            continue
        servers.extend(read_nameservers(text))
    return servers


def read_lease_nameservers(text: str) -> List[str]:
    """Nameservers offered in a DHCP lease file.

    Both the dhclient hook variable (``new_domain_name_servers='a b'``) and
    the lease statement (``option domain-name-servers a, b;``) forms are
    understood; the last occurrence wins since lease files are appended to.
    """

    servers: List[str] = []
    for line in text.splitlines():
        match = _LEASE_SHELL.match(line)
        if match:
            servers = match.group(1).split()
            continue
        match = _LEASE_OPTION.match(line)
        if match:
            servers = [s.strip() for s in match.group(1).split(",") if s.strip()]
    return servers


# ----------------------------------------------------------------------
# Static dnsmasq configuration
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class StaticServer:
    """A ``server=`` entry of the dnsmasq configuration."""

    server: str
    domain: Optional[str] = None


def _strip_server(value: str) -> str:
    return value.split("#", 1)[0].split("@", 1)[0]


def _parse_server_entry(value: str) -> List[StaticServer]:
    if not value.startswith("/"):
        server = _strip_server(value)
        return [StaticServer(server=server)] if server else []

    # server=/domain[/domain...]/address
    parts = value.split("/")
    server = _strip_server(parts[-1])
    domains = [d for d in parts[1:-1] if d]
    if not server or not domains:
        return []
    return [StaticServer(server=server, domain=domain) for domain in domains]


def read_static_servers(text: str) -> List[StaticServer]:
    """Return the upstream servers declared in a dnsmasq configuration.

    ``conf-dir=<dir>,<glob>...`` lines are followed and the matching files
    read in name order.
    """

    servers: List[StaticServer] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        match = _SERVER_ENTRY.match(line)
        if match:
            servers.extend(_parse_server_entry(match.group(1)))
            continue
        match = _CONF_DIR_ENTRY.match(line)
        if match:
            servers.extend(_read_conf_dir(match.group(1)))
    return servers


def _read_conf_dir(value: str) -> List[StaticServer]:
    directory, *patterns = value.split(",")
    servers: List[StaticServer] = []
    for pattern in patterns:
        for name in sorted(glob.glob(str(Path(directory) / pattern))):
            try:
                text = Path(name).read_text()
            except OSError as exc:
                LOG.debug("read-dnsmasq-conf-dir %s: %s", pattern, exc)
                continue
            servers.extend(read_static_servers(text))
    return servers
