"""Shared fixtures for compose environment tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.shared.config import ComposeEnvSettings


@pytest.fixture
def compose_file(tmp_path: Path) -> Path:
    path = tmp_path / "docker-compose.yml"
    path.write_text(
        "services:\n"
        "  web:\n"
        "    image: nginx:1.25\n"
        "  db:\n"
        "    image: postgres:16-alpine\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def settings() -> ComposeEnvSettings:
    return ComposeEnvSettings(
        startup_timeout=2.0,
        poll_interval=0.01,
        pull_images=False,
        reaper_enabled=False,
        host_override="localhost",
    )
