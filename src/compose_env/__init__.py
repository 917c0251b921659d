"""Compose environments for test runs.

Starts a compose project, maps service instances to containers, exposes
ports through a single ambassador container and waits for readiness.
"""

from src.compose_env.compose_invoker import RemoveImages
from src.compose_env.environment import ComposeEnvironment
from src.compose_env.service_instance import ServiceInstanceId, resolve

__all__ = ["ComposeEnvironment", "RemoveImages", "ServiceInstanceId", "resolve"]
