"""DNS forwarding (dnsmasq) instances."""

from .instance import ForwardingInstance, ForwardingPaths  # noqa: F401
from .models import CacheStats, NameserverState, StateData  # noqa: F401
from .provenance import merge_provenance  # noqa: F401
from .state import ForwardingState  # noqa: F401

__all__ = [
    "CacheStats",
    "ForwardingInstance",
    "ForwardingPaths",
    "ForwardingState",
    "NameserverState",
    "StateData",
    "merge_provenance",
]
