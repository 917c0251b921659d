"""Compose environment orchestration.

:class:`ComposeEnvironment` is the entry point.  Services are declared
first, then the environment is started as one sequential pipeline::

    pre-pull images -> compose up -> discovery -> readiness
        -> ambassador (only if ports were exposed) -> running

Any failure along the way tears down whatever was started before the
error propagates, so no container is left running unattended.

Example::

    env = (
        ComposeEnvironment("docker-compose.yml")
        .with_exposed_service("web", 8080)
        .with_scaled_service("db", 2)
        .waiting_for("db", wait.for_log_message("ready to accept connections"))
    )
    async with env:
        url = f"http://{env.get_service_host('web', 8080)}:{env.get_service_port('web', 8080)}"
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any
from urllib.parse import urlparse

import docker
from docker.errors import DockerException

from src.compose_env.ambassador import AmbassadorContainer, AmbassadorPortRegistry
from src.compose_env.compose_files import ComposeFileSet, random_project_id
from src.compose_env.compose_invoker import (
    ComposeInvoker,
    ContainerisedComposeInvoker,
    LocalComposeInvoker,
    RemoveImages,
    build_down_command,
    build_up_command,
)
from src.compose_env.discovery import ContainerDiscovery, ContainerInstance
from src.compose_env.images import ImagePuller
from src.compose_env.log_consumers import LogConsumer
from src.compose_env.readiness import ReadinessAggregator
from src.compose_env.reaper import ResourceReaper
from src.compose_env.service_instance import ServiceInstanceId, instance_id, resolve
from src.compose_env.state_machine import EnvironmentLifecycle, create_environment_machine
from src.compose_env.wait.base import WaitStrategy, run_blocking
from src.compose_env.wait.strategies import ListeningPortWaitStrategy
from src.shared.config import ComposeEnvSettings
from src.shared.constants import COMPOSE_PROJECT_LABEL, PROJECT_ID_PREFIX
from src.shared.errors import ComposeEnvError, ConfigurationError, ExternalProcessError
from src.shared.logging import project_context

logger = logging.getLogger(__name__)


def docker_host_address(client: Any, override: str | None = None) -> str:
    """Host name under which published container ports are reachable."""
    if override:
        return override
    base_url = getattr(getattr(client, "api", None), "base_url", "") or ""
    parsed = urlparse(base_url)
    if parsed.scheme in ("http", "https", "tcp") and parsed.hostname:
        return parsed.hostname
    return "localhost"


class ComposeEnvironment:
    """A compose project started, supervised and torn down as one unit."""

    def __init__(
        self,
        *compose_files: Path | str,
        project_name: str | None = None,
        identifier: str = PROJECT_ID_PREFIX,
        settings: ComposeEnvSettings | None = None,
        docker_client: Any = None,
        reaper: ResourceReaper | None = None,
    ) -> None:
        self.settings = settings or ComposeEnvSettings()
        self._files = ComposeFileSet(
            tuple(Path(f) for f in compose_files),
            project=project_name or random_project_id(identifier),
        )
        self._client = docker_client
        self._reaper = reaper
        if self._reaper is None and self.settings.reaper_enabled:
            self._reaper = ResourceReaper.instance()

        self._scaling: dict[str, int] = {}
        self._registry = AmbassadorPortRegistry()
        self._readiness = ReadinessAggregator(self.settings.startup_timeout)
        self._log_consumers: dict[ServiceInstanceId, list[LogConsumer]] = {}
        self._env: dict[str, str] = {}
        self._options: list[str] = []
        self._build = False
        self._pull = self.settings.pull_images
        self._local_compose = self.settings.local_compose
        self._tail_child_containers = self.settings.tail_child_containers
        self._remove_volumes = True
        self._remove_images: RemoveImages | None = None

        self._instances: dict[ServiceInstanceId, ContainerInstance] = {}
        self._ambassador: AmbassadorContainer | None = None
        self._lifecycle = EnvironmentLifecycle(self.project, self._registry)
        create_environment_machine(self._lifecycle)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def project(self) -> str:
        return self._files.project

    @property
    def project_labels(self) -> dict[str, str]:
        return {COMPOSE_PROJECT_LABEL: self.project}

    @property
    def compose_files(self) -> ComposeFileSet:
        return self._files

    @property
    def state(self) -> str:
        return self._lifecycle.state

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    @property
    def ambassador(self) -> AmbassadorContainer:
        if self._ambassador is None:
            self._ambassador = AmbassadorContainer(
                self.client,
                self.settings.ambassador_image,
                self.project,
                docker_host_address(self.client, self.settings.host_override),
            )
        return self._ambassador

    @property
    def instances(self) -> Mapping[ServiceInstanceId, ContainerInstance]:
        return MappingProxyType(self._instances)

    # ------------------------------------------------------------------
    # Declarations (only before start)
    # ------------------------------------------------------------------

    def _ensure_not_started(self) -> None:
        if self.state != "stopped":
            raise ConfigurationError(
                f"Environment {self.project} is {self.state}; "
                "declarations must be made before start()"
            )

    def with_services(self, *services: str) -> ComposeEnvironment:
        """Start only *services* (plus scaled ones) instead of the whole file."""
        self._ensure_not_started()
        self._files = dataclasses.replace(self._files, services=tuple(services))
        return self

    def with_scaled_service(self, service_name: str, count: int) -> ComposeEnvironment:
        self._ensure_not_started()
        if count < 0:
            raise ConfigurationError(f"Scale for '{service_name}' must be >= 0, got {count}")
        self._scaling[service_name] = count
        return self

    def with_exposed_service(
        self,
        service_name: str,
        service_port: int,
        wait_strategy: WaitStrategy | None = None,
        *,
        instance: int | None = None,
    ) -> ComposeEnvironment:
        """Expose *service_port* of a service instance through the ambassador.

        Without an explicit strategy the instance is awaited until the
        port is listening inside its container.
        """
        self._ensure_not_started()
        iid = instance_id(service_name, instance)
        ambassador_port = self._registry.register(iid, service_port)
        logger.debug("Registered %s:%d on ambassador port %d", iid, service_port, ambassador_port)
        if wait_strategy is None:
            wait_strategy = ListeningPortWaitStrategy(service_port).with_poll_interval(
                self.settings.poll_interval
            )
        self._readiness.add(iid, wait_strategy)
        return self

    def waiting_for(self, service_name: str, wait_strategy: WaitStrategy) -> ComposeEnvironment:
        self._ensure_not_started()
        self._readiness.add(resolve(service_name), wait_strategy)
        return self

    def with_log_consumer(self, service_name: str, consumer: LogConsumer) -> ComposeEnvironment:
        self._ensure_not_started()
        self._log_consumers.setdefault(resolve(service_name), []).append(consumer)
        return self

    def with_env(self, key_or_env: str | Mapping[str, str], value: str | None = None) -> ComposeEnvironment:
        self._ensure_not_started()
        if isinstance(key_or_env, str):
            self._env[key_or_env] = "" if value is None else value
        else:
            self._env.update(key_or_env)
        return self

    def with_options(self, *options: str) -> ComposeEnvironment:
        """Global compose options placed before the sub-command."""
        self._ensure_not_started()
        self._options = list(options)
        return self

    def with_build(self, build: bool = True) -> ComposeEnvironment:
        self._ensure_not_started()
        self._build = build
        return self

    def with_pull(self, pull: bool = True) -> ComposeEnvironment:
        self._ensure_not_started()
        self._pull = pull
        return self

    def with_local_compose(self, local: bool = True) -> ComposeEnvironment:
        self._ensure_not_started()
        self._local_compose = local
        return self

    def with_tail_child_containers(self, tail: bool = True) -> ComposeEnvironment:
        self._ensure_not_started()
        self._tail_child_containers = tail
        return self

    def with_startup_timeout(self, seconds: float) -> ComposeEnvironment:
        self._ensure_not_started()
        self._readiness.set_startup_timeout(seconds)
        return self

    def with_remove_volumes(self, remove: bool = True) -> ComposeEnvironment:
        self._ensure_not_started()
        self._remove_volumes = remove
        return self

    def with_remove_images(self, remove_images: RemoveImages | None) -> ComposeEnvironment:
        self._ensure_not_started()
        self._remove_images = remove_images
        return self

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _compose(self) -> ComposeInvoker:
        if self._local_compose:
            return LocalComposeInvoker(
                self._files.files,
                self.project,
                executable=self.settings.compose_executable,
                working_dir=self._files.working_dir,
            )
        return ContainerisedComposeInvoker(
            self.client,
            self._files.files,
            self.project,
            image=self.settings.compose_image,
            working_dir=self._files.working_dir,
        )

    async def _run_compose(self, command: list[str]) -> tuple[int, str, str]:
        invoker = self._compose().with_command(command).with_env(self._env)
        rc, stdout, stderr = await run_blocking(invoker.invoke)
        if rc != 0:
            logger.error("Compose command %s failed: %s", command, stderr)
            raise ExternalProcessError(command, rc, stderr)
        return rc, stdout, stderr

    async def _pull_images(self) -> None:
        images = await run_blocking(self._files.dependency_images)
        await run_blocking(ImagePuller(self.client).pull_all, images)

    def _discovery(self) -> ContainerDiscovery:
        return ContainerDiscovery(
            self.client,
            self.project,
            docker_host=docker_host_address(self.client, self.settings.host_override),
            tail_child_containers=self._tail_child_containers,
            log_consumers=self._log_consumers,
        )

    def _warn_unknown_services(self) -> None:
        declared = set(self._files.service_names())
        requested = [*self._files.services, *self._scaling]
        for name in dict.fromkeys(requested):
            if name not in declared:
                logger.warning("Service '%s' is not defined in %s", name, self._files.files)

    async def _start_ambassador(self) -> None:
        table = self._registry.forwarding_table(
            {iid: inst.name for iid, inst in self._instances.items()}
        )
        network = None
        for route in table.routes:
            networks = self._instances[ServiceInstanceId(route.instance_id)].network_names
            if networks:
                network = networks[0]
                break
        await run_blocking(
            self.ambassador.start, table, network, self._readiness.startup_timeout
        )

    async def start(self) -> ComposeEnvironment:
        """Bring the environment up and block until it is ready.

        Raises:
            ConfigurationError: Bad declarations, e.g. a misspelled service.
            ExternalProcessError: The compose tool failed.
            ReadinessTimeoutError: Services were not ready in time.
        """
        if self.state != "stopped":
            raise ConfigurationError(f"Environment {self.project} is already {self.state}")
        with project_context(self.project):
            await self._lifecycle.begin_startup()
            if self._reaper is not None:
                self._reaper.register_labels_filter_for_cleanup(self.project_labels)
            try:
                await run_blocking(self._warn_unknown_services)
                if self._pull:
                    await self._pull_images()
                await self._run_compose(
                    build_up_command(self._files.services, self._scaling, self._build, self._options)
                )

                await self._lifecycle.begin_discovery()
                await run_blocking(self._discovery().discover, self._instances)
                self._readiness.validate(self._instances)

                await self._lifecycle.begin_waiting()
                await self._readiness.wait_all(self._instances)

                if await self._lifecycle.begin_ambassador():
                    await self._start_ambassador()
                await self._lifecycle.mark_running()
            except BaseException:
                logger.error("Startup of %s failed, tearing down", self.project)
                await self._teardown()
                raise
            logger.info("Environment %s is running", self.project)
        return self

    async def stop(self) -> None:
        """Tear the environment down; a stopped environment is left alone."""
        if self.state == "stopped":
            return
        with project_context(self.project):
            await self._teardown()

    async def _teardown(self) -> None:
        await self._lifecycle.begin_teardown()
        try:
            for inst in self._instances.values():
                inst.stop_following()
            if self._ambassador is not None:
                try:
                    await run_blocking(self._ambassador.stop)
                except DockerException as exc:
                    logger.error("Removing ambassador of %s failed: %s", self.project, exc)
            try:
                await self._run_compose(
                    build_down_command(self._remove_volumes, self._remove_images, self._options)
                )
            except (ComposeEnvError, DockerException) as exc:
                logger.error("Compose down failed for %s: %s", self.project, exc)
            if self._reaper is not None:
                await run_blocking(self._reaper.cleanup, self.project_labels)
        finally:
            self._instances = {}
            await self._lifecycle.finish_teardown()

    async def __aenter__(self) -> ComposeEnvironment:
        return await self.start()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Addressing
    # ------------------------------------------------------------------

    def _ambassador_port(self, service_name: str, service_port: int) -> int:
        iid = resolve(service_name)
        ports = self._registry.ports_of(iid)
        if ports is None:
            raise ConfigurationError(
                f"Could not get a port for '{service_name}'. No exposed port is "
                f"configured for '{service_name}'. To fix, please ensure that the "
                f"service '{service_name}' has ports exposed using "
                ".with_exposed_service(...)"
            )
        if service_port not in ports:
            raise ConfigurationError(
                f"Port {service_port} of service '{service_name}' was never exposed; "
                f"exposed ports are {sorted(ports)}"
            )
        if self.state != "running":
            raise ConfigurationError(
                f"Environment {self.project} is {self.state}; start it before "
                "resolving service addresses"
            )
        return ports[service_port]

    def get_service_host(self, service_name: str, service_port: int) -> str:
        """Host under which an exposed service port is reachable."""
        self._ambassador_port(service_name, service_port)
        return self.ambassador.host

    def get_service_port(self, service_name: str, service_port: int) -> int:
        """Host port forwarding to *service_port* of the service instance."""
        return self.ambassador.get_mapped_port(
            self._ambassador_port(service_name, service_port)
        )

    def get_container_by_service_name(self, service_name: str) -> ContainerInstance | None:
        return self._instances.get(resolve(service_name))
