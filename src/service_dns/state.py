"""Aggregate operational state of every live DNS instance."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict

from .config import DEFAULT_INSTANCE
from .service import DNSService

LOG = logging.getLogger(__name__)


class ServiceState:
    """Collect the state of all instances into one report.

    The report mirrors the configuration tree: the ``default`` instance sits
    under ``service.dns`` and routing instances under
    ``routing.routing-instance``, ordered by name.  Forwarding snapshots wait
    on their daemons, so instances are queried concurrently.
    """

    def __init__(self, service: DNSService, *, max_workers: int = 8) -> None:
        self._service = service
        self._max_workers = max_workers

    def get(self) -> Dict[str, Any]:
        forwarding = dict(self._service.forwarding_instances())
        dynamic = dict(self._service.dynamic_instances())

        per_instance: Dict[str, Dict[str, Any]] = {}
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            forwarding_futures = {
                name: pool.submit(instance.state) for name, instance in forwarding.items()
            }
            dynamic_futures = {
                name: pool.submit(instance.state) for name, instance in dynamic.items()
            }
            for name, future in forwarding_futures.items():
                per_instance.setdefault(name, {})["forwarding"] = future.result().to_dict()
            for name, future in dynamic_futures.items():
                per_instance.setdefault(name, {})["dynamic"] = future.result().to_dict()

        report: Dict[str, Any] = {}
        default = per_instance.pop(DEFAULT_INSTANCE, None)
        if default:
            report["service"] = {"dns": default}
        if per_instance:
            report["routing"] = {
                "routing-instance": [
                    {"instance-name": name, "service": {"dns": per_instance[name]}}
                    for name in sorted(per_instance)
                ]
            }
        return report
