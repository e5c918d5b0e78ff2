"""Operational actions on dynamic DNS interfaces."""

from __future__ import annotations

from service_dns.errors import MustViolationError

from .instance import DynamicInstance


def update_interface(instance: DynamicInstance, interface: str) -> None:
    """Force ddclient on ``interface`` to run an update now."""

    process = instance.process(interface)
    if process is None:
        raise MustViolationError(
            f"/interface/{interface}",
            "There is no dynamic DNS instance running on the specified interface",
        )
    process.restart()
