"""File-based declared configuration watcher."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Event, Thread
from typing import Optional

import yaml

from service_dns.config import ConfigData, parse_config
from service_dns.service import DNSService

LOG = logging.getLogger(__name__)


def _load(path: Path) -> Optional[dict]:
    text = path.read_text()
    if path.suffix == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


class FileConfigWatcher(Thread):
    """Poll a JSON or YAML service configuration and apply changed trees.

    A missing file means no configuration and clears the service once a
    tree has been applied.
    """

    def __init__(
        self,
        service: DNSService,
        path: Path,
        interval: float,
        stop_event: Event,
    ) -> None:
        super().__init__(daemon=True, name="config-file-watcher")
        self._service = service
        self._path = Path(path)
        self._interval = interval
        self._stop_event = stop_event
        self._applied = False
        self._retry = False
        self._state: Optional[ConfigData] = None

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:  # pragma: no cover - logged below
                LOG.exception("config watcher encountered an error")
            self._stop_event.wait(self._interval)

    def poll(self) -> None:
        if not self._path.exists():
            LOG.debug("configuration file %s does not exist", self._path)
            if self._applied and self._state is not None:
                self._apply(None)
            return

        try:
            payload = _load(self._path)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            LOG.warning("failed to parse configuration file %s: %s", self._path, exc)
            return

        try:
            desired = parse_config(payload)
        except ValueError as exc:
            LOG.warning("invalid configuration file %s: %s", self._path, exc)
            return

        if self._applied and not self._retry and desired == self._state:
            return
        self._apply(desired)

    def _apply(self, desired: Optional[ConfigData]) -> None:
        LOG.info("applying configuration from %s", self._path)
        result = self._service.set(desired)
        self._state = desired
        self._applied = True
        self._retry = not result.ok
        if self._retry:
            LOG.warning(
                "configuration from %s applied with %d error(s), retrying next poll",
                self._path,
                len(result.errors),
            )
