"""Namespace availability events consumed by VRF-gated processes."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class NamespaceAdded:
    """A routing-instance namespace (VRF) has appeared."""

    name: str


@dataclass(frozen=True)
class NamespaceRemoved:
    """A routing-instance namespace (VRF) has gone away."""

    name: str
