"""Container discovery for a started compose project."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from docker.errors import APIError

from src.compose_env.log_consumers import LogConsumer, LogFollower, logging_consumer
from src.compose_env.service_instance import ServiceInstanceId, from_labels
from src.shared.errors import ContainerExitedError, ServiceInstanceLabelError

logger = logging.getLogger(__name__)

_STOPPED_STATUSES = {"exited", "dead"}


class ContainerInstance:
    """A discovered compose container bound to its service instance id."""

    def __init__(
        self,
        instance_id: ServiceInstanceId,
        container: Any,
        docker_host: str = "localhost",
    ) -> None:
        self._instance_id = instance_id
        self._container = container
        self.docker_host = docker_host
        self.followers: list[LogFollower] = []

    @property
    def instance_id(self) -> ServiceInstanceId:
        return self._instance_id

    @property
    def container_id(self) -> str:
        return self._container.id

    @property
    def name(self) -> str:
        return self._container.name

    @property
    def labels(self) -> dict[str, str]:
        return dict(self._container.labels or {})

    @property
    def network_names(self) -> list[str]:
        networks = self._container.attrs.get("NetworkSettings", {}).get("Networks") or {}
        return list(networks)

    def follow_logs(self, consumer: LogConsumer) -> None:
        self.followers.append(LogFollower(self._container, consumer).start())

    def stop_following(self) -> None:
        for follower in self.followers:
            follower.stop()
        self.followers.clear()

    def raise_if_exited(self) -> None:
        self._container.reload()
        if self._container.status in _STOPPED_STATUSES:
            exit_code = self._container.attrs.get("State", {}).get("ExitCode")
            raise ContainerExitedError(self._instance_id, exit_code)

    def logs(self) -> str:
        return self._container.logs().decode("utf-8", errors="replace")

    def health_status(self) -> str | None:
        self._container.reload()
        health = self._container.attrs.get("State", {}).get("Health")
        return health.get("Status") if health else None

    def exec_run(self, command: list[str]) -> tuple[int, str]:
        try:
            result = self._container.exec_run(command)
        except APIError as exc:
            return 126, str(exc)
        output = result.output or b""
        return result.exit_code, output.decode("utf-8", errors="replace")

    def address_for(self, port: int) -> tuple[str, int]:
        """Published host port if compose publishes *port*, else the container IP."""
        settings = self._container.attrs.get("NetworkSettings", {})
        bindings = (settings.get("Ports") or {}).get(f"{port}/tcp") or []
        for binding in bindings:
            if binding.get("HostPort"):
                return self.docker_host, int(binding["HostPort"])
        for network in (settings.get("Networks") or {}).values():
            if network.get("IPAddress"):
                return network["IPAddress"], port
        return self.name, port

    def __repr__(self) -> str:
        return f"ContainerInstance({self._instance_id!r}, {self.name!r})"


class ContainerDiscovery:
    """Maps the containers of one compose project to service instance ids."""

    def __init__(
        self,
        client: Any,
        project: str,
        docker_host: str = "localhost",
        tail_child_containers: bool = False,
        log_consumers: Mapping[ServiceInstanceId, list[LogConsumer]] | None = None,
    ) -> None:
        self.client = client
        self.project = project
        self.docker_host = docker_host
        self.tail_child_containers = tail_child_containers
        self.log_consumers = log_consumers or {}

    def list_child_containers(self) -> list[Any]:
        """All containers, including stopped ones, named after the project."""
        return [
            c for c in self.client.containers.list(all=True)
            if c.name.lstrip("/").startswith((f"{self.project}-", f"{self.project}_"))
        ]

    def discover(
        self, bindings: dict[ServiceInstanceId, ContainerInstance] | None = None
    ) -> dict[ServiceInstanceId, ContainerInstance]:
        """Bind every child container to its instance id.

        Existing entries in *bindings* are kept; a second discovery never
        replaces an instance that already has log followers attached.
        """
        if bindings is None:
            bindings = {}
        for container in self.list_child_containers():
            try:
                iid = from_labels(container.labels or {}, container.name)
            except ServiceInstanceLabelError as exc:
                logger.warning("Skipping container without compose labels: %s", exc)
                continue
            if iid in bindings:
                continue
            instance = ContainerInstance(iid, container, self.docker_host)
            if self.tail_child_containers:
                instance.follow_logs(logging_consumer(container.name))
            for consumer in self.log_consumers.get(iid, []):
                instance.follow_logs(consumer)
            bindings.setdefault(iid, instance)
            logger.info("Discovered %s as container %s", iid, container.name)
        return bindings
