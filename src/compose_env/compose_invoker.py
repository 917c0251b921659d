"""Running the compose tool, locally or inside a container.

Both invokers build the same argument list (``-f`` per file, ``-p``
project, then the command) so a command that works with one works with
the other.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Iterable, Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from src.shared.constants import DOCKER_SOCKET_PATH
from src.shared.errors import ConfigurationError

logger = logging.getLogger(__name__)


class RemoveImages(str, Enum):
    """Which images ``down --rmi`` removes."""
    ALL = "all"
    LOCAL = "local"


def build_up_command(
    services: Iterable[str] = (),
    scaling: Mapping[str, int] | None = None,
    build: bool = False,
    options: Iterable[str] = (),
) -> list[str]:
    """Arguments for ``up``.

    Services passed explicitly come first, followed by services that are
    only implied by scaling; each appears once.  An empty service list
    starts everything in the compose files.
    """
    scaling = scaling or {}
    args = [*options, "up", "-d"]
    if build:
        args.append("--build")
    for name, count in scaling.items():
        args.extend(["--scale", f"{name}={count}"])
    args.extend(dict.fromkeys([*services, *scaling]))
    return args


def build_down_command(
    remove_volumes: bool = True,
    remove_images: RemoveImages | None = None,
    options: Iterable[str] = (),
) -> list[str]:
    args = [*options, "down", "--remove-orphans"]
    if remove_volumes:
        args.append("-v")
    if remove_images is not None:
        args.extend(["--rmi", RemoveImages(remove_images).value])
    return args


class ComposeInvoker:
    """Common ``with_command`` / ``with_env`` / ``invoke`` contract."""

    def __init__(
        self,
        compose_files: Iterable[Path | str],
        project: str,
        working_dir: Path | str | None = None,
    ) -> None:
        self.compose_files = [Path(f).resolve() for f in compose_files]
        if not self.compose_files:
            raise ConfigurationError("No docker compose file have been provided")
        self.project = project
        self.working_dir = Path(working_dir or self.compose_files[0].parent).resolve()
        self._command: list[str] = []
        self._env: dict[str, str] = {}

    def with_command(self, command: list[str] | str) -> ComposeInvoker:
        self._command = shlex.split(command) if isinstance(command, str) else list(command)
        return self

    def with_env(self, env: Mapping[str, str]) -> ComposeInvoker:
        self._env = dict(env)
        return self

    def build_args(self) -> list[str]:
        args: list[str] = []
        for f in self.compose_files:
            args.extend(["-f", str(f)])
        args.extend(["-p", self.project, *self._command])
        return args

    def invoke(self) -> tuple[int, str, str]:
        """Run the command.

        Returns:
            Tuple of (return_code, stdout, stderr).
        """
        raise NotImplementedError


class LocalComposeInvoker(ComposeInvoker):
    """Runs a compose binary installed on the host."""

    def __init__(
        self,
        compose_files: Iterable[Path | str],
        project: str,
        executable: str = "docker compose",
        working_dir: Path | str | None = None,
    ) -> None:
        super().__init__(compose_files, project, working_dir)
        self.executable = shlex.split(executable)

    def invoke(self) -> tuple[int, str, str]:
        cmd = [*self.executable, *self.build_args()]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                cwd=self.working_dir,
                env={**os.environ, **self._env},
                capture_output=True,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as exc:
            raise ConfigurationError(
                f"Local compose executable '{self.executable[0]}' not found; "
                "install it or disable local compose"
            ) from exc
        return (result.returncode, result.stdout, result.stderr)


class ContainerisedComposeInvoker(ComposeInvoker):
    """Runs the compose tool from an image that ships the docker CLI.

    The Docker socket and every directory holding a compose file are
    mounted at their host paths, so the same absolute ``-f`` arguments
    work inside the container.
    """

    def __init__(
        self,
        client: Any,
        compose_files: Iterable[Path | str],
        project: str,
        image: str = "docker:24.0.2",
        working_dir: Path | str | None = None,
    ) -> None:
        super().__init__(compose_files, project, working_dir)
        self.client = client
        self.image = image

    def volumes(self) -> dict[str, dict[str, str]]:
        mounts = {DOCKER_SOCKET_PATH: {"bind": DOCKER_SOCKET_PATH, "mode": "rw"}}
        for directory in {self.working_dir, *(f.parent for f in self.compose_files)}:
            mounts[str(directory)] = {"bind": str(directory), "mode": "rw"}
        return mounts

    def invoke(self) -> tuple[int, str, str]:
        cmd = ["docker", "compose", *self.build_args()]
        logger.debug("Running in %s: %s", self.image, " ".join(cmd))
        container = self.client.containers.run(
            self.image,
            command=cmd,
            working_dir=str(self.working_dir),
            environment=self._env,
            volumes=self.volumes(),
            detach=True,
        )
        try:
            status = container.wait()
            stdout = container.logs(stdout=True, stderr=False).decode("utf-8", errors="replace")
            stderr = container.logs(stdout=False, stderr=True).decode("utf-8", errors="replace")
        finally:
            container.remove(force=True)
        return (int(status.get("StatusCode", 1)), stdout, stderr)
