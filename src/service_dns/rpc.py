"""Operational actions exposed to the management plane."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .config import DEFAULT_INSTANCE
from .dynamic import rpc as dynamic_rpc
from .errors import MustViolationError, OperationFailedError
from .forwarding import ForwardingInstance
from .forwarding import rpc as forwarding_rpc
from .service import DNSService

LOG = logging.getLogger(__name__)


class ServiceRPC:
    """Dispatch RPC actions to live instances.

    Unknown instance or interface names raise :class:`MustViolationError`.
    Any other failure is logged and raised as :class:`OperationFailedError`.
    """

    def __init__(self, service: DNSService) -> None:
        self._service = service

    def reset_dns_forwarding(self, routing_instance: Optional[str] = None) -> None:
        self._forwarding_action(routing_instance, forwarding_rpc.reset_forwarding)

    def reset_dns_forwarding_cache(self, routing_instance: Optional[str] = None) -> None:
        self._forwarding_action(routing_instance, forwarding_rpc.reset_forwarding_cache)

    def update_dynamic_dns_interface(self, interface: str) -> None:
        for instance in self._service.dynamic_instances().values():
            if interface in instance.interfaces():
                self._run(
                    f"update-dynamic-dns-interface {interface}",
                    lambda: dynamic_rpc.update_interface(instance, interface),
                )
                return
        raise MustViolationError(
            f"/interface/{interface}",
            "There is no dynamic DNS instance running on the specified interface",
        )

    def _forwarding_action(
        self,
        routing_instance: Optional[str],
        action: Callable[[ForwardingInstance], None],
    ) -> None:
        name = routing_instance or DEFAULT_INSTANCE
        instance = self._service.forwarding_instances().get(name)
        if instance is None:
            raise MustViolationError(
                f"/routing-instance/{name}",
                "DNS forwarding is not configured on requested instance",
            )
        self._run(f"{action.__name__} {name}", lambda: action(instance))

    def _run(self, what: str, action: Callable[[], None]) -> None:
        try:
            action()
        except MustViolationError:
            raise
        except Exception as exc:
            LOG.exception("%s failed", what)
            raise OperationFailedError(f"{what} failed") from exc
