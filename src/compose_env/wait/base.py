"""Wait strategy contracts shared by all readiness checks.

A strategy is awaited against a :class:`WaitTarget` (normally a
discovered :class:`~src.compose_env.discovery.ContainerInstance`) with an
absolute ``deadline`` expressed in :func:`time.monotonic` seconds.  The
effective deadline of a strategy is the earlier of the caller's deadline
and the strategy's own ``startup_timeout``, so an outer composite can cap
its members but never extend them.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

from src.shared.errors import WaitTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_STARTUP_TIMEOUT: float = 60.0
DEFAULT_POLL_INTERVAL: float = 0.5


@runtime_checkable
class WaitTarget(Protocol):
    """What a wait strategy may ask of a container."""

    @property
    def instance_id(self) -> str:
        """Canonical ``service_n`` id of the container."""
        ...

    def raise_if_exited(self) -> None:
        """Raise ``ContainerExitedError`` if the container has stopped."""
        ...

    def logs(self) -> str:
        """Return the combined stdout/stderr output so far."""
        ...

    def health_status(self) -> str | None:
        """Return the Docker healthcheck status, or None without one."""
        ...

    def exec_run(self, command: list[str]) -> tuple[int, str]:
        """Run *command* inside the container, returning (exit code, output)."""
        ...

    def address_for(self, port: int) -> tuple[str, int]:
        """Return a (host, port) pair reachable from this process."""
        ...


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run a blocking Docker SDK call outside the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args))


class WaitStrategy:
    """Base class for readiness checks."""

    def __init__(self) -> None:
        self.startup_timeout: float = DEFAULT_STARTUP_TIMEOUT

    def with_startup_timeout(self, seconds: float) -> WaitStrategy:
        self.startup_timeout = float(seconds)
        return self

    def effective_deadline(self, deadline: float | None) -> float:
        own = time.monotonic() + self.startup_timeout
        return own if deadline is None else min(deadline, own)

    async def wait_until_ready(
        self, target: WaitTarget, deadline: float | None = None
    ) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


class PollingWaitStrategy(WaitStrategy):
    """Check-then-sleep loop bounded by a single deadline.

    Subclasses implement :meth:`check`.  Before every check the target is
    asked whether its container has exited so a crash fails the wait
    immediately instead of burning the whole timeout.
    """

    def __init__(self) -> None:
        super().__init__()
        self.poll_interval: float = DEFAULT_POLL_INTERVAL

    def with_poll_interval(self, seconds: float) -> PollingWaitStrategy:
        self.poll_interval = float(seconds)
        return self

    async def check(self, target: WaitTarget) -> bool:
        raise NotImplementedError

    async def wait_until_ready(
        self, target: WaitTarget, deadline: float | None = None
    ) -> None:
        started = time.monotonic()
        until = self.effective_deadline(deadline)
        description = f"{self.describe()} on '{target.instance_id}'"
        while True:
            await run_blocking(target.raise_if_exited)
            if await self.check(target):
                logger.debug("%s satisfied", description)
                return
            remaining = until - time.monotonic()
            if remaining <= 0:
                raise WaitTimeoutError(description, until - started)
            await asyncio.sleep(min(self.poll_interval, remaining))
