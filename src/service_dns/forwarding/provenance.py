"""Assign provenance to the nameservers a dnsmasq instance reports."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Sequence, Tuple

from .models import (
    PROVENANCE_CONFIGURATION,
    PROVENANCE_DHCP,
    PROVENANCE_PPP,
    PROVENANCE_SYSTEM,
    NameserverState,
)
from .parsers import StaticServer

LOG = logging.getLogger(__name__)


def _address_key(address: str) -> Tuple[int, int, str]:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return (99, 0, address)
    return (ip.version, int(ip), address)


def _overlay(
    built: Dict[str, NameserverState], servers: Iterable[str], provenance: str
) -> None:
    # Lease and PPP lists only refine servers the system resolver already uses.
    for address in servers:
        record = built.get(address)
        if record is not None:
            record.provenance = provenance


def merge_provenance(
    reported: Sequence[NameserverState],
    system: Sequence[str],
    dhcp: Sequence[str] = (),
    ppp: Sequence[str] = (),
    static: Sequence[StaticServer] = (),
) -> List[NameserverState]:
    """Combine dnsmasq's own server counters with the known server sources.

    The precedence is fixed: the system resolver list first, then the DHCP
    and PPP lists restricted to servers already in the system list, then the
    static dnsmasq configuration.  The result is laid over the self-reported
    records, which keep their order; servers nobody reported traffic for are
    appended ordered by address.  Domain lists are sorted.

    Inputs are never modified.
    """

    baseline_in_use = not any(entry.domain is None for entry in static)

    built: Dict[str, NameserverState] = {}
    for address in system:
        built.setdefault(
            address,
            NameserverState(
                address=address,
                provenance=PROVENANCE_SYSTEM,
                in_use=baseline_in_use,
            ),
        )

    _overlay(built, dhcp, PROVENANCE_DHCP)
    _overlay(built, ppp, PROVENANCE_PPP)

    for entry in static:
        record = built.get(entry.server)
        if record is None:
            built[entry.server] = NameserverState(
                address=entry.server,
                provenance=PROVENANCE_CONFIGURATION,
                in_use=True,
                domain_override_only=entry.domain is not None,
                domains=[entry.domain] if entry.domain is not None else [],
            )
            continue
        record.provenance = PROVENANCE_CONFIGURATION
        record.in_use = True
        if entry.domain is None:
            record.domain_override_only = False
        elif entry.domain not in record.domains:
            record.domains.append(entry.domain)

    for record in built.values():
        record.domains.sort()

    merged: List[NameserverState] = []
    by_address: Dict[str, NameserverState] = {}
    for report in reported:
        existing = by_address.get(report.address)
        if existing is not None:
            LOG.debug("merge-provenance: folding duplicate report for %s", report.address)
            existing.queries_sent += report.queries_sent
            existing.queries_retried_or_failed += report.queries_retried_or_failed
            continue

        record = replace(report, domains=sorted(report.domains))
        source = built.get(report.address)
        if source is not None:
            record.provenance = source.provenance
            record.in_use = source.in_use
            record.domain_override_only = source.domain_override_only
            record.domains = list(source.domains)
        by_address[record.address] = record
        merged.append(record)

    unreported = [r for a, r in built.items() if a not in by_address]
    merged.extend(sorted(unreported, key=lambda r: _address_key(r.address)))
    return merged
