"""Operational state reported for a DNS forwarding instance."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

PROVENANCE_SYSTEM = "system"
PROVENANCE_DHCP = "dhcp"
PROVENANCE_PPP = "ppp"
PROVENANCE_CONFIGURATION = "configuration"

DEFAULT_DNS_PORT = 53


@dataclass
class CacheStats:
    size: int = 0
    entries: int = 0
    reused_entries: int = 0


@dataclass
class NameserverState:
    """One upstream nameserver, keyed by its address."""

    address: str
    port: int = DEFAULT_DNS_PORT
    queries_sent: int = 0
    queries_retried_or_failed: int = 0
    provenance: str = PROVENANCE_SYSTEM
    in_use: bool = True
    domain_override_only: bool = False
    domains: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "address": self.address,
            "port": self.port,
            "queries-sent": self.queries_sent,
            "queries-retried-or-failed": self.queries_retried_or_failed,
            "provenance": self.provenance,
            "in-use": self.in_use,
            "domain-override-only": self.domain_override_only,
        }
        if self.domains:
            data["domains"] = list(self.domains)
        return data


@dataclass
class StateData:
    """Counters dumped by dnsmasq plus the reconciled nameserver list."""

    queries_forwarded: int = 0
    queries_answered: int = 0
    cache: CacheStats = field(default_factory=CacheStats)
    nameservers: List[NameserverState] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        state: Dict[str, Any] = {
            "queries-forwarded": self.queries_forwarded,
            "queries-answered": self.queries_answered,
            "cache": {
                "size": self.cache.size,
                "cache-entries": self.cache.entries,
                "reused-cache-entries": self.cache.reused_entries,
            },
        }
        if self.nameservers:
            state["nameservers"] = [ns.to_dict() for ns in self.nameservers]
        return {"state": state}
