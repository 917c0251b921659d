"""Readiness checks for compose service instances.

The factory functions mirror the strategies most callers need::

    env.waiting_for("db", wait.for_log_message("ready to accept connections", times=2))
    env.with_exposed_service("web", 8080, wait.for_http("/health", port=8080))
"""

from __future__ import annotations

from src.compose_env.wait.base import (
    PollingWaitStrategy,
    WaitStrategy,
    WaitTarget,
    run_blocking,
)
from src.compose_env.wait.composite import WaitAllStrategy
from src.compose_env.wait.strategies import (
    HealthcheckWaitStrategy,
    HttpWaitStrategy,
    ListeningPortWaitStrategy,
    LogMessageWaitStrategy,
    parse_listening_ports,
)

__all__ = [
    "HealthcheckWaitStrategy",
    "HttpWaitStrategy",
    "ListeningPortWaitStrategy",
    "LogMessageWaitStrategy",
    "PollingWaitStrategy",
    "WaitAllStrategy",
    "WaitStrategy",
    "WaitTarget",
    "for_healthcheck",
    "for_http",
    "for_listening_port",
    "for_log_message",
    "parse_listening_ports",
    "run_blocking",
]


def for_log_message(pattern: str, times: int = 1) -> LogMessageWaitStrategy:
    return LogMessageWaitStrategy(pattern, times=times)


def for_healthcheck() -> HealthcheckWaitStrategy:
    return HealthcheckWaitStrategy()


def for_listening_port(port: int) -> ListeningPortWaitStrategy:
    return ListeningPortWaitStrategy(port)


def for_http(
    path: str = "/", port: int = 80, status_codes: set[int] | None = None
) -> HttpWaitStrategy:
    return HttpWaitStrategy(path=path, port=port, status_codes=status_codes)
