"""Following container output into log consumers."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

LogConsumer = Callable[[str], None]


def logging_consumer(prefix: str, target: logging.Logger | None = None) -> LogConsumer:
    """Return a consumer that forwards each line to *target* at INFO."""
    out = target or logger

    def _consume(line: str) -> None:
        out.info("%s: %s", prefix, line)

    return _consume


class LogFollower:
    """Streams a container's output to a consumer on a daemon thread.

    The thread ends on its own when the container is removed and the
    stream closes.
    """

    def __init__(self, container: Any, consumer: LogConsumer) -> None:
        self._container = container
        self._consumer = consumer
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"logs-{getattr(container, 'name', 'container')}",
            daemon=True,
        )

    def start(self) -> LogFollower:
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stopped.set()

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        buffer = ""
        try:
            for chunk in self._container.logs(stream=True, follow=True):
                if self._stopped.is_set():
                    break
                buffer += chunk.decode("utf-8", errors="replace")
                *lines, buffer = buffer.split("\n")
                for line in lines:
                    self._consumer(line.rstrip("\r"))
            if buffer and not self._stopped.is_set():
                self._consumer(buffer.rstrip("\r"))
        except Exception as exc:
            # The container went away underneath the stream
            logger.debug("Log stream for %s ended: %s", self._thread.name, exc)
