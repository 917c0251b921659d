"""Process-wide cleanup of containers left behind by compose environments.

Environments register a label filter as soon as they begin starting.  The
reaper removes every container and network carrying a registered label
when asked explicitly, at interpreter exit, or on SIGINT / SIGTERM when
:meth:`ResourceReaper.instance` was first called from the main thread.
"""

from __future__ import annotations

import atexit
import logging
import signal
import sys
import threading
from collections.abc import Mapping
from typing import Any

import docker
from docker.errors import DockerException, NotFound

logger = logging.getLogger(__name__)

LabelFilter = frozenset[tuple[str, str]]


class ResourceReaper:
    """Tracks label filters and removes matching Docker resources.

    Usage::

        reaper = ResourceReaper.instance()
        reaper.register_labels_filter_for_cleanup({"com.docker.compose.project": "abc"})
        ...
        reaper.cleanup({"com.docker.compose.project": "abc"})
    """

    _instance: ResourceReaper | None = None
    _instance_lock = threading.Lock()

    def __init__(self, client: Any = None) -> None:
        self._client = client
        self._filters: set[LabelFilter] = set()
        self._lock = threading.Lock()
        self._handling = False  # reentrancy guard

    @classmethod
    def instance(cls) -> ResourceReaper:
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
                atexit.register(cls._instance.perform_cleanup)
                # SIGTERM skips atexit, so signals need their own handler
                cls._instance.install()
            return cls._instance

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    @property
    def registered_filters(self) -> list[dict[str, str]]:
        with self._lock:
            return [dict(f) for f in self._filters]

    def register_labels_filter_for_cleanup(self, labels: Mapping[str, str]) -> None:
        """Remember *labels*; registering the same filter twice is a no-op."""
        with self._lock:
            self._filters.add(frozenset(labels.items()))

    def cleanup(self, labels: Mapping[str, str]) -> None:
        """Remove resources matching *labels* and forget the filter.

        Safe to call repeatedly; resources already gone are ignored.
        """
        key: LabelFilter = frozenset(labels.items())
        label_args = [f"{k}={v}" for k, v in sorted(key)]
        try:
            for container in self.client.containers.list(all=True, filters={"label": label_args}):
                logger.info("Reaping container %s", container.name)
                try:
                    container.remove(force=True, v=True)
                except NotFound:
                    pass
            for network in self.client.networks.list(filters={"label": label_args}):
                logger.info("Reaping network %s", network.name)
                try:
                    network.remove()
                except NotFound:
                    pass
        except DockerException as exc:
            logger.warning("Cleanup of %s incomplete: %s", label_args, exc)
            return
        with self._lock:
            self._filters.discard(key)

    def perform_cleanup(self) -> None:
        """Clean up every registered filter (runs at interpreter exit)."""
        for labels in self.registered_filters:
            self.cleanup(labels)

    def install(self) -> bool:
        """Clean up on SIGINT and SIGTERM, then exit.

        Handlers can only be set from the main thread; elsewhere this is a
        no-op that returns False and only the ``atexit`` hook applies.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal cleanup not installed")
            return False
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self._signal_handler)
        return True

    def _signal_handler(self, signum: int, frame: Any) -> None:
        if self._handling:
            return  # reentrancy guard
        self._handling = True
        logger.warning("Received signal %s -- removing compose resources", signum)
        try:
            self.perform_cleanup()
        finally:
            self._handling = False
        sys.exit(128 + signum)
