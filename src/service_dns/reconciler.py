"""Map a declared set of named instances onto live instance objects."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Protocol, TypeVar

from .errors import ReconcileError
from .versioned import VersionedValue

LOG = logging.getLogger(__name__)


class ConfigSink(Protocol):
    def set(self, conf: Any) -> None: ...


S = TypeVar("S", bound=ConfigSink)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass.

    Attributes
    ----------
    created:
        Instances constructed during the pass.
    applied:
        Already live instances the declared configuration was pushed into.
    removed:
        Instances torn down and dropped from the live set.
    errors:
        Failures by instance name.  The pass carries on past each of them.
    version:
        Version of the live instance map after the pass.  It only moves when
        instances were created or removed; combined results leave it at 0.
    """

    created: List[str] = field(default_factory=list)
    applied: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    errors: Dict[str, BaseException] = field(default_factory=dict)
    version: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ReconcileError(self.errors)

    @classmethod
    def combine(cls, results: Mapping[str, "ReconcileResult"]) -> "ReconcileResult":
        """Merge results of several reconcilers, prefixing names with their key."""

        combined = cls()
        for prefix, result in results.items():
            combined.created.extend(f"{prefix}/{n}" for n in result.created)
            combined.applied.extend(f"{prefix}/{n}" for n in result.applied)
            combined.removed.extend(f"{prefix}/{n}" for n in result.removed)
            combined.errors.update(
                {f"{prefix}/{n}": exc for n, exc in result.errors.items()}
            )
        return combined


class InstanceReconciler(Generic[S]):
    """Create, update and tear down instances to follow declared maps.

    The live map is published copy-on-write: readers calling
    :meth:`instances` get a complete map that is never mutated afterwards.
    Instances are themselves responsible for ignoring unchanged
    configuration, which keeps repeated passes free of side effects.
    """

    def __init__(
        self,
        factory: Callable[[str], S],
        *,
        kind: str = "instance",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._factory = factory
        self._kind = kind
        self._log = logger or LOG
        self._lock = Lock()
        self._live: VersionedValue[Dict[str, S]] = VersionedValue({})

    def instances(self) -> Mapping[str, S]:
        return self._live.get()

    def get(self, name: str) -> Optional[S]:
        return self._live.get().get(name)

    def reconcile(self, declared: Mapping[str, Any]) -> ReconcileResult:
        with self._lock:
            live = dict(self._live.get())
            result = ReconcileResult()

            for name in sorted(set(live) - set(declared)):
                try:
                    live[name].set(None)
                except Exception as exc:
                    self._log.exception("failed to remove %s %s", self._kind, name)
                    result.errors[name] = exc
                    continue
                del live[name]
                result.removed.append(name)

            for name in sorted(declared):
                instance = live.get(name)
                try:
                    if instance is None:
                        instance = self._factory(name)
                        live[name] = instance
                        result.created.append(name)
                    else:
                        result.applied.append(name)
                    instance.set(declared[name])
                except Exception as exc:
                    self._log.exception("failed to reconcile %s %s", self._kind, name)
                    result.errors[name] = exc

            if result.created or result.removed:
                result.version = self._live.swap(live)
            else:
                result.version = self._live.version

        if result.created or result.removed:
            self._log.info(
                "%s set reconciled (version %d): created=%s removed=%s",
                self._kind,
                result.version,
                result.created,
                result.removed,
            )
        return result
