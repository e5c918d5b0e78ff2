"""Declarative configuration tree for the DNS services.

The management plane hands over the whole tree on every change.  It is parsed
into frozen dataclasses so two trees, or two per-instance subtrees, can be
compared structurally; that comparison is what makes re-applying an unchanged
tree free of side effects.

Member names follow RFC 7951 JSON encoding.  Module-qualified names such as
``vyatta-services-v1:service`` are accepted and matched on the part after the
colon.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

DEFAULT_INSTANCE = "default"
DEFAULT_CACHE_SIZE = 150


@dataclass(frozen=True)
class DomainOverride:
    """Send queries for ``domain`` to ``server`` only."""

    domain: str
    server: str


@dataclass(frozen=True)
class ForwardingConfigData:
    """DNS forwarding (dnsmasq) settings of one instance.

    Attributes
    ----------
    dhcp_interfaces:
        Interfaces whose DHCP-learned nameservers are forwarded to.
    cache_size:
        Number of cached answers.
    listen_on:
        Interfaces dnsmasq answers queries on.
    nameservers:
        Statically configured upstream nameservers.
    system:
        Forward to the nameservers of the system resolver configuration.
    domain_overrides:
        Per-domain upstream servers.
    """

    dhcp_interfaces: Tuple[str, ...] = ()
    cache_size: int = DEFAULT_CACHE_SIZE
    listen_on: Tuple[str, ...] = ()
    nameservers: Tuple[str, ...] = ()
    system: bool = False
    domain_overrides: Tuple[DomainOverride, ...] = ()

    def nameservers_from_config(self) -> bool:
        """True when the upstream list is derived from configuration.

        In that case the instance resolver file must not be consulted.
        """

        return bool(self.dhcp_interfaces or self.nameservers or self.system)


@dataclass(frozen=True)
class ServiceConfigData:
    """A dynamic DNS provider account used on one interface."""

    name: str
    host_names: Tuple[str, ...] = ()
    login: str = ""
    password: str = ""
    server: Optional[str] = None
    protocol: Optional[str] = None


@dataclass(frozen=True)
class InterfaceConfigData:
    name: str
    services: Tuple[ServiceConfigData, ...] = ()


@dataclass(frozen=True)
class DynamicConfigData:
    """Dynamic DNS (ddclient) settings of one instance."""

    interfaces: Tuple[InterfaceConfigData, ...] = ()

    def interface(self, name: str) -> Optional[InterfaceConfigData]:
        return next((i for i in self.interfaces if i.name == name), None)


@dataclass(frozen=True)
class RoutingInstance:
    name: str
    forwarding: Optional[ForwardingConfigData] = None
    dynamic: Optional[DynamicConfigData] = None


@dataclass(frozen=True)
class ConfigData:
    """The complete declared tree."""

    forwarding: Optional[ForwardingConfigData] = None
    dynamic: Optional[DynamicConfigData] = None
    routing_instances: Tuple[RoutingInstance, ...] = field(default_factory=tuple)

    def forwarding_instances(self) -> Dict[str, ForwardingConfigData]:
        """Forwarding settings keyed by instance name."""

        instances: Dict[str, ForwardingConfigData] = {}
        if self.forwarding is not None:
            instances[DEFAULT_INSTANCE] = self.forwarding
        for ri in self.routing_instances:
            if ri.forwarding is not None:
                instances[ri.name] = ri.forwarding
        return instances

    def dynamic_instances(self) -> Dict[str, DynamicConfigData]:
        """Dynamic DNS settings keyed by instance name."""

        instances: Dict[str, DynamicConfigData] = {}
        if self.dynamic is not None:
            instances[DEFAULT_INSTANCE] = self.dynamic
        for ri in self.routing_instances:
            if ri.dynamic is not None:
                instances[ri.name] = ri.dynamic
        return instances


# ----------------------------------------------------------------------
# RFC 7951 parsing
# ----------------------------------------------------------------------
def _member(data: Mapping[str, Any], name: str, default: Any = None) -> Any:
    if name in data:
        return data[name]
    for key, value in data.items():
        if isinstance(key, str) and key.rpartition(":")[2] == name:
            return value
    return default


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"'{what}' must be a mapping")
    return value


def _strings(value: Any, what: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, Iterable):
        raise ValueError(f"'{what}' must be a list")
    return tuple(str(v) for v in value)


def _list(value: Any, what: str) -> Iterable[Mapping[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{what}' must be a list")
    return [_mapping(entry, what) for entry in value]


def _empty_leaf(value: Any) -> bool:
    # RFC 7951 encodes a set empty leaf as [null].
    if value is None or value is False:
        return False
    return True


def _key(entry: Mapping[str, Any], what: str) -> str:
    value = _member(entry, "tagnode")
    if value is None:
        value = _member(entry, "name")
    if value is None:
        raise ValueError(f"'{what}' entry missing its key")
    return str(value)


def parse_forwarding(data: Mapping[str, Any]) -> ForwardingConfigData:
    overrides = tuple(
        DomainOverride(domain=_key(entry, "domain"), server=str(_member(entry, "server", "")))
        for entry in _list(_member(data, "domain"), "domain")
    )
    return ForwardingConfigData(
        dhcp_interfaces=_strings(_member(data, "dhcp"), "dhcp"),
        cache_size=int(_member(data, "cache-size", DEFAULT_CACHE_SIZE)),
        listen_on=_strings(_member(data, "listen-on"), "listen-on"),
        nameservers=_strings(_member(data, "name-server"), "name-server"),
        system=_empty_leaf(_member(data, "system")),
        domain_overrides=overrides,
    )


def _parse_service(entry: Mapping[str, Any]) -> ServiceConfigData:
    server = _member(entry, "server")
    protocol = _member(entry, "protocol")
    return ServiceConfigData(
        name=_key(entry, "service"),
        host_names=_strings(_member(entry, "host-name"), "host-name"),
        login=str(_member(entry, "login", "")),
        password=str(_member(entry, "password", "")),
        server=str(server) if server is not None else None,
        protocol=str(protocol) if protocol is not None else None,
    )


def parse_dynamic(data: Mapping[str, Any]) -> DynamicConfigData:
    interfaces = []
    for entry in _list(_member(data, "interface"), "interface"):
        services = tuple(
            _parse_service(svc) for svc in _list(_member(entry, "service"), "service")
        )
        interfaces.append(
            InterfaceConfigData(name=_key(entry, "interface"), services=services)
        )
    return DynamicConfigData(interfaces=tuple(interfaces))


def _parse_dns(dns: Mapping[str, Any]) -> Tuple[
    Optional[ForwardingConfigData], Optional[DynamicConfigData]
]:
    forwarding = _member(dns, "forwarding")
    dynamic = _member(dns, "dynamic")
    return (
        parse_forwarding(_mapping(forwarding, "forwarding")) if forwarding is not None else None,
        parse_dynamic(_mapping(dynamic, "dynamic")) if dynamic is not None else None,
    )


def parse_config(data: Optional[Mapping[str, Any]]) -> ConfigData:
    """Build a :class:`ConfigData` from its RFC 7951 JSON representation."""

    if data is None:
        return ConfigData()
    data = _mapping(data, "configuration")

    service = _mapping(_member(data, "service"), "service")
    forwarding, dynamic = _parse_dns(_mapping(_member(service, "dns"), "dns"))

    routing = _mapping(_member(data, "routing"), "routing")
    instances = []
    for entry in _list(_member(routing, "routing-instance"), "routing-instance"):
        name = _member(entry, "instance-name")
        if name is None:
            raise ValueError("'routing-instance' entry missing 'instance-name'")
        ri_service = _mapping(_member(entry, "service"), "service")
        ri_forwarding, ri_dynamic = _parse_dns(
            _mapping(_member(ri_service, "dns"), "dns")
        )
        instances.append(
            RoutingInstance(name=str(name), forwarding=ri_forwarding, dynamic=ri_dynamic)
        )

    return ConfigData(
        forwarding=forwarding,
        dynamic=dynamic,
        routing_instances=tuple(instances),
    )
