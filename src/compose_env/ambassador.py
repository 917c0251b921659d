"""Ambassador proxy exposing compose service ports to the host.

For every exposed service/port pair a listening port is registered on a
single ambassador container.  Once the compose services are ready the
ambassador is started with an immutable :class:`ForwardingTable`; it joins
the project network, links to each exposed service instance and relays
TCP traffic with ``socat``.  This avoids requiring the compose file to
publish any ports itself.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from docker.errors import NotFound

from src.compose_env.service_instance import ServiceInstanceId
from src.shared.constants import AMBASSADOR_FIRST_PORT, COMPOSE_PROJECT_LABEL
from src.shared.errors import ComposeEnvError, ConfigurationError

logger = logging.getLogger(__name__)


class AmbassadorPortRegistry:
    """Allocates ambassador ports and records what each one forwards to.

    Ports come from one counter shared by all service instances and are
    never handed out twice, even for a repeated registration.
    """

    def __init__(self, first_port: int = AMBASSADOR_FIRST_PORT) -> None:
        self._lock = threading.Lock()
        self._next_port = first_port
        self._mappings: dict[ServiceInstanceId, dict[int, int]] = {}

    def register(self, instance_id: ServiceInstanceId, service_port: int) -> int:
        with self._lock:
            ambassador_port = self._next_port
            self._next_port += 1
            self._mappings.setdefault(instance_id, {})[service_port] = ambassador_port
        return ambassador_port

    def port_for(self, instance_id: ServiceInstanceId, service_port: int) -> int | None:
        return self._mappings.get(instance_id, {}).get(service_port)

    def ports_of(self, instance_id: ServiceInstanceId) -> dict[int, int] | None:
        ports = self._mappings.get(instance_id)
        return dict(ports) if ports is not None else None

    def instance_ids(self) -> list[ServiceInstanceId]:
        return list(self._mappings)

    def is_empty(self) -> bool:
        return not self._mappings

    def forwarding_table(self, hostnames: Mapping[ServiceInstanceId, str]) -> ForwardingTable:
        """Freeze the registrations into a table for the ambassador.

        Args:
            hostnames: Compose-assigned container name of each instance.

        Raises:
            ConfigurationError: An exposed instance has no container.
        """
        with self._lock:
            snapshot = {iid: dict(ports) for iid, ports in self._mappings.items()}
        missing = sorted(set(snapshot) - set(hostnames))
        if missing:
            raise ConfigurationError(
                f"Services named {missing} have exposed ports but no container"
            )
        routes = tuple(
            Route(ambassador_port, iid, hostnames[iid], service_port)
            for iid, ports in snapshot.items()
            for service_port, ambassador_port in ports.items()
        )
        return ForwardingTable(routes=tuple(sorted(routes)))


@dataclass(frozen=True, order=True)
class Route:
    """One ambassador port relayed to a service instance port."""
    ambassador_port: int
    instance_id: str
    hostname: str
    service_port: int


@dataclass(frozen=True)
class ForwardingTable:
    """Everything the ambassador forwards, fixed before it starts."""
    routes: tuple[Route, ...] = field(default_factory=tuple)

    @property
    def ambassador_ports(self) -> list[int]:
        return [r.ambassador_port for r in self.routes]

    @property
    def links(self) -> dict[str, str]:
        """Container name to instance-id alias, one per exposed instance."""
        return {r.hostname: r.instance_id for r in self.routes}

    def socat_command(self) -> str:
        return " & ".join(
            f"socat TCP-LISTEN:{r.ambassador_port},fork,reuseaddr "
            f"TCP:{r.hostname}:{r.service_port}"
            for r in self.routes
        )


class AmbassadorContainer:
    """The single proxy container of an environment."""

    def __init__(
        self,
        client: Any,
        image: str,
        project: str,
        docker_host: str = "localhost",
    ) -> None:
        self.client = client
        self.image = image
        self.project = project
        self.host = docker_host
        self.name = f"ambassador-{project}"
        self._container: Any = None
        self._host_ports: dict[int, int] = {}

    @property
    def is_running(self) -> bool:
        return self._container is not None

    def start(
        self,
        table: ForwardingTable,
        network: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        if self._container is not None:
            raise ComposeEnvError(f"Ambassador {self.name} is already running")
        logger.info(
            "Starting ambassador %s forwarding %d port(s)", self.name, len(table.routes)
        )
        self._container = self.client.containers.run(
            self.image,
            command=[table.socat_command()],
            entrypoint=["/bin/sh", "-c"],
            name=self.name,
            detach=True,
            labels={COMPOSE_PROJECT_LABEL: self.project},
            network=network,
            links=table.links,
            ports={f"{port}/tcp": None for port in table.ambassador_ports},
        )
        self._host_ports = self._wait_for_bindings(table.ambassador_ports, timeout)

    def _wait_for_bindings(self, ports: list[int], timeout: float) -> dict[int, int]:
        deadline = time.monotonic() + timeout
        while True:
            self._container.reload()
            published = self._container.attrs.get("NetworkSettings", {}).get("Ports") or {}
            bound: dict[int, int] = {}
            for port in ports:
                for binding in published.get(f"{port}/tcp") or []:
                    if binding.get("HostPort"):
                        bound[port] = int(binding["HostPort"])
                        break
            if len(bound) == len(ports):
                return bound
            if time.monotonic() >= deadline:
                raise ComposeEnvError(
                    f"Ambassador {self.name} did not publish ports "
                    f"{sorted(set(ports) - set(bound))} within {timeout:.0f}s"
                )
            time.sleep(0.1)

    def get_mapped_port(self, ambassador_port: int) -> int:
        if ambassador_port not in self._host_ports:
            raise ConfigurationError(
                f"Ambassador port {ambassador_port} is not published; "
                "is the environment running?"
            )
        return self._host_ports[ambassador_port]

    def stop(self) -> None:
        if self._container is None:
            return
        try:
            self._container.remove(force=True)
        except NotFound:
            pass
        finally:
            self._container = None
            self._host_ports = {}
