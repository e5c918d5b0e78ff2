"""Supervision of per routing-instance DNS daemons.

The package keeps dnsmasq (DNS forwarding) and ddclient (dynamic DNS) units
in line with a declarative configuration tree and reports their live state:

* :class:`~service_dns.service.DNSService` reconciles the declared tree onto
  live forwarding and dynamic DNS instances;
* daemons of named routing instances are controlled through
  :class:`~service_dns.process.VRFGatedProcess`, which defers actions until
  the VRF exists;
* :class:`~service_dns.state.ServiceState` aggregates statistics snapshots
  and ddclient status into one report; and
* :class:`~service_dns.rpc.ServiceRPC` implements the operational actions.
"""

from .config import ConfigData, parse_config  # noqa: F401
from .registry import NamespaceRegistry  # noqa: F401
from .rpc import ServiceRPC  # noqa: F401
from .service import DNSService  # noqa: F401
from .state import ServiceState  # noqa: F401

__all__ = [
    "ConfigData",
    "DNSService",
    "NamespaceRegistry",
    "ServiceRPC",
    "ServiceState",
    "parse_config",
]
