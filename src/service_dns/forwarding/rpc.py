"""Operational actions on a forwarding instance."""

from __future__ import annotations

import signal

from .instance import ForwardingInstance


def reset_forwarding(instance: ForwardingInstance) -> None:
    """Restart dnsmasq, re-reading every configuration source."""

    instance.process.restart()


def reset_forwarding_cache(instance: ForwardingInstance) -> None:
    """Ask dnsmasq to drop its cache."""

    instance.process.signal(signal.SIGHUP)
