"""Exception types shared across the service-dns packages."""

from __future__ import annotations

from typing import Mapping


class ServiceDNSError(Exception):
    """Base class for errors raised by this package."""


class ServiceManagerError(ServiceDNSError):
    """A unit operation issued to the service manager failed."""

    def __init__(self, unit: str, operation: str, detail: str = "") -> None:
        self.unit = unit
        self.operation = operation
        self.detail = detail
        message = f"{operation} {unit} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ProcessClosedError(ServiceDNSError):
    """Raised for calls issued against a process that has been torn down."""


class ActionSupersededError(ServiceDNSError):
    """A deferred action was replaced by a newer request before it ran."""


class MustViolationError(ServiceDNSError):
    """Precondition violation reported back to the management plane.

    ``path`` identifies the offending node of the request, for example
    ``/routing-instance/blue``.
    """

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class ReconcileError(ServiceDNSError):
    """Aggregate of the per-instance failures of one reconciliation pass."""

    def __init__(self, errors: Mapping[str, BaseException]) -> None:
        self.errors = dict(errors)
        names = ", ".join(sorted(self.errors))
        super().__init__(f"failed to reconcile instances: {names}")


class OperationFailedError(ServiceDNSError):
    """An RPC action failed for a reason other than a precondition.

    The message is generic; the cause is chained and logged.
    """
