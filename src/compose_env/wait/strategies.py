"""Concrete readiness checks for compose service containers."""

from __future__ import annotations

import asyncio
import logging
import re

import httpx

from src.compose_env.wait.base import PollingWaitStrategy, WaitTarget, run_blocking
from src.shared.errors import ConfigurationError

logger = logging.getLogger(__name__)

# st column value for a socket in LISTEN state
_TCP_LISTEN = "0A"
_PROC_NET_TCP_COMMAND = ["cat", "/proc/net/tcp", "/proc/net/tcp6"]
# sh/exec could not run the command at all
_EXEC_UNAVAILABLE = {126, 127}


class LogMessageWaitStrategy(PollingWaitStrategy):
    """Wait until a regex has matched the container output *times* times."""

    def __init__(self, pattern: str, times: int = 1) -> None:
        super().__init__()
        self.pattern = re.compile(pattern, re.MULTILINE)
        self.times = times

    async def check(self, target: WaitTarget) -> bool:
        output = await run_blocking(target.logs)
        return len(self.pattern.findall(output)) >= self.times

    def describe(self) -> str:
        return f"log message /{self.pattern.pattern}/ x{self.times}"


class HealthcheckWaitStrategy(PollingWaitStrategy):
    """Wait for the Docker healthcheck declared in the compose file."""

    async def check(self, target: WaitTarget) -> bool:
        status = await run_blocking(target.health_status)
        if status is None:
            raise ConfigurationError(
                f"Service instance '{target.instance_id}' has no healthcheck; "
                "declare one in the compose file or use another wait strategy"
            )
        return status == "healthy"

    def describe(self) -> str:
        return "docker healthcheck"


def parse_listening_ports(proc_net_tcp: str) -> set[int]:
    """Extract listening ports from ``/proc/net/tcp`` formatted text.

    >>> parse_listening_ports("  sl  local_address rem_address   st\\n"
    ...                       "   0: 00000000:1F90 00000000:0000 0A")
    {8080}
    """
    ports: set[int] = set()
    for line in proc_net_tcp.splitlines():
        fields = line.split()
        if len(fields) < 4 or not fields[0].rstrip(":").isdigit():
            continue
        local_address, state = fields[1], fields[3]
        if state.upper() != _TCP_LISTEN or ":" not in local_address:
            continue
        try:
            ports.add(int(local_address.rsplit(":", 1)[1], 16))
        except ValueError:
            continue
    return ports


class ListeningPortWaitStrategy(PollingWaitStrategy):
    """Wait until *port* is bound inside the container.

    Reads the kernel socket tables from inside the container so the port
    does not need to be published.  Images without ``cat`` fall back to a
    TCP connect against :meth:`WaitTarget.address_for`.
    """

    def __init__(self, port: int) -> None:
        super().__init__()
        self.port = port

    async def check(self, target: WaitTarget) -> bool:
        exit_code, output = await run_blocking(target.exec_run, _PROC_NET_TCP_COMMAND)
        if exit_code in _EXEC_UNAVAILABLE:
            return await self._connect(target)
        return self.port in parse_listening_ports(output)

    async def _connect(self, target: WaitTarget) -> bool:
        host, port = await run_blocking(target.address_for, self.port)
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self.poll_interval
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        await writer.wait_closed()
        return True

    def describe(self) -> str:
        return f"listening port {self.port}"


class HttpWaitStrategy(PollingWaitStrategy):
    """Wait for an HTTP endpoint to answer with an accepted status code."""

    def __init__(
        self,
        path: str = "/",
        port: int = 80,
        status_codes: set[int] | None = None,
        method: str = "GET",
    ) -> None:
        super().__init__()
        self.path = path if path.startswith("/") else f"/{path}"
        self.port = port
        self.status_codes = status_codes or {200}
        self.method = method

    async def check(self, target: WaitTarget) -> bool:
        host, port = await run_blocking(target.address_for, self.port)
        url = f"http://{host}:{port}{self.path}"
        try:
            async with httpx.AsyncClient(timeout=max(self.poll_interval, 1.0)) as client:
                resp = await client.request(self.method, url)
        except httpx.HTTPError as exc:
            logger.debug("HTTP check of %s failed: %s", url, exc)
            return False
        return resp.status_code in self.status_codes

    def describe(self) -> str:
        return f"HTTP {self.method} {self.path} on port {self.port}"
