"""Compose environment configuration using pydantic-settings."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class ComposeEnvSettings(BaseSettings):
    """Settings shared by every compose environment in the process."""
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")
    local_compose: bool = Field(
        default=True, validation_alias="COMPOSE_ENV_LOCAL_COMPOSE"
    )
    compose_executable: str = Field(
        default="docker compose", validation_alias="COMPOSE_ENV_EXECUTABLE"
    )
    compose_image: str = Field(
        default="docker:24.0.2", validation_alias="COMPOSE_ENV_COMPOSE_IMAGE"
    )
    ambassador_image: str = Field(
        default="alpine/socat:1.8.0.0",
        validation_alias="COMPOSE_ENV_AMBASSADOR_IMAGE",
    )
    startup_timeout: float = Field(
        default=60.0, gt=0, validation_alias="COMPOSE_ENV_STARTUP_TIMEOUT"
    )
    poll_interval: float = Field(
        default=0.5, gt=0, validation_alias="COMPOSE_ENV_POLL_INTERVAL"
    )
    pull_images: bool = Field(
        default=True, validation_alias="COMPOSE_ENV_PULL_IMAGES"
    )
    tail_child_containers: bool = Field(
        default=False, validation_alias="COMPOSE_ENV_TAIL_CHILD_CONTAINERS"
    )
    host_override: str | None = Field(
        default=None, validation_alias="COMPOSE_ENV_HOST_OVERRIDE"
    )
    reaper_enabled: bool = Field(
        default=True, validation_alias="COMPOSE_ENV_REAPER_ENABLED"
    )

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }
