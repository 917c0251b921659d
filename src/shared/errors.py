"""Custom exception classes for compose environments."""
from __future__ import annotations

from collections.abc import Iterable


class ComposeEnvError(Exception):
    """Base error for everything raised by a compose environment."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ConfigurationError(ComposeEnvError):
    """Declarations that can never work: misspelled services, missing ports."""

    def __init__(self, detail: str = "Configuration error") -> None:
        super().__init__(detail=detail)


class ServiceInstanceLabelError(ConfigurationError):
    """A container lacks the compose labels needed to derive its instance id."""

    def __init__(self, container_name: str, missing_label: str) -> None:
        self.container_name = container_name
        self.missing_label = missing_label
        super().__init__(
            f"Container '{container_name}' has no '{missing_label}' label"
        )


class ExternalProcessError(ComposeEnvError):
    """The compose tool exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stderr: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        detail = f"Command '{' '.join(self.command)}' exited with status {returncode}"
        if stderr:
            detail += f": {stderr.strip()}"
        super().__init__(detail=detail)


class WaitTimeoutError(ComposeEnvError):
    """A single wait strategy did not succeed before its deadline."""

    def __init__(self, description: str, timeout: float) -> None:
        self.description = description
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.1f}s waiting for {description}")


class ReadinessTimeoutError(ComposeEnvError):
    """The shared startup deadline elapsed before every instance was ready."""

    def __init__(self, instances: Iterable[str], timeout: float) -> None:
        self.instances = sorted(instances)
        self.timeout = timeout
        super().__init__(
            f"Service instances {self.instances} were not ready "
            f"within the startup timeout of {timeout:.1f}s"
        )


class ContainerExitedError(ComposeEnvError):
    """A container stopped while its readiness was being awaited."""

    def __init__(self, instance: str, exit_code: int | None = None) -> None:
        self.instance = instance
        self.exit_code = exit_code
        super().__init__(
            f"Container for '{instance}' exited (code {exit_code}) before becoming ready"
        )
