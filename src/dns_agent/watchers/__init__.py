"""Watcher implementations used by the DNS agent."""

from .file import FileConfigWatcher  # noqa: F401
from .vrf import VRFWatcher, list_vrfs, vrf_exists  # noqa: F401

__all__ = ["FileConfigWatcher", "VRFWatcher", "list_vrfs", "vrf_exists"]
