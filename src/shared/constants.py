"""Shared constants used across the compose environment."""
from __future__ import annotations

# Application version
VERSION: str = "0.4.0"

# Labels the compose tool stamps on every container it creates
COMPOSE_PROJECT_LABEL: str = "com.docker.compose.project"
COMPOSE_SERVICE_LABEL: str = "com.docker.compose.service"
COMPOSE_CONTAINER_NUMBER_LABEL: str = "com.docker.compose.container-number"

# Random project ids look like "composeenv3k9x2a"
PROJECT_ID_PREFIX: str = "composeenv"
PROJECT_ID_RANDOM_LENGTH: int = 6

# First port the ambassador listens on inside its own container
AMBASSADOR_FIRST_PORT: int = 2000

# Default service instance number when the caller omits one
DEFAULT_INSTANCE: int = 1

# Mounted into the containerised compose tool
DOCKER_SOCKET_PATH: str = "/var/run/docker.sock"
