"""Dynamic DNS (ddclient) instances."""

from .instance import DynamicInstance, DynamicPaths  # noqa: F401
from .state import DynamicStateData, map_status, read_state_data  # noqa: F401

__all__ = [
    "DynamicInstance",
    "DynamicPaths",
    "DynamicStateData",
    "map_status",
    "read_state_data",
]
