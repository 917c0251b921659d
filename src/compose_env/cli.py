"""Command line entry point: ``compose-env``.

``up`` starts a compose project, prints where each exposed port can be
reached and keeps the environment alive until interrupted.  ``images``
lists the images the compose files depend on.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer

from src.compose_env.compose_files import ComposeFileSet
from src.compose_env.display import print_endpoints, print_error, print_images, print_info
from src.compose_env.environment import ComposeEnvironment
from src.shared.config import ComposeEnvSettings
from src.shared.constants import VERSION
from src.shared.errors import ComposeEnvError
from src.shared.logging import setup_logging

app = typer.Typer(
    name="compose-env",
    help="Run a compose project for the length of a session.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        print_info(f"compose-env {VERSION}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show the version and exit"
    ),
) -> None:
    """Run a compose project for the length of a session."""


def parse_expose(value: str) -> tuple[str, int]:
    """``"web:8080"`` -> ``("web", 8080)``; instance suffixes are kept."""
    service, sep, port = value.rpartition(":")
    if not sep or not service or not port.isdigit():
        raise typer.BadParameter(f"expected SERVICE:PORT, got '{value}'")
    return service, int(port)


def parse_scale(value: str) -> tuple[str, int]:
    """``"db=2"`` -> ``("db", 2)``."""
    service, sep, count = value.partition("=")
    if not sep or not service or not count.isdigit():
        raise typer.BadParameter(f"expected SERVICE=COUNT, got '{value}'")
    return service, int(count)


async def _run_up(env: ComposeEnvironment, exposures: list[tuple[str, int]], hold: bool) -> None:
    async with env:
        print_endpoints(
            env.project,
            [
                (service, port, env.get_service_host(service, port), env.get_service_port(service, port))
                for service, port in exposures
            ],
        )
        if hold:
            print_info("Environment running, press Ctrl+C to stop")
            await asyncio.Event().wait()


@app.command()
def up(
    files: list[Path] = typer.Option(..., "--file", "-f", help="Compose file (repeatable)"),
    expose: list[str] = typer.Option([], "--expose", "-e", help="SERVICE:PORT to expose"),
    scale: list[str] = typer.Option([], "--scale", help="SERVICE=COUNT"),
    service: list[str] = typer.Option([], "--service", "-s", help="Only start these services"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project name"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Startup timeout in seconds"),
    build: bool = typer.Option(False, "--build", help="Pass --build to compose up"),
    pull: bool = typer.Option(True, "--pull/--no-pull", help="Pre-pull dependency images"),
    hold: bool = typer.Option(True, "--hold/--no-hold", help="Keep running until interrupted"),
) -> None:
    """Start the environment and print its endpoints."""
    settings = ComposeEnvSettings()
    setup_logging("src", settings.log_level)
    exposures = [parse_expose(value) for value in expose]
    scaling = [parse_scale(value) for value in scale]

    env = ComposeEnvironment(*files, project_name=project, settings=settings)
    env.with_build(build).with_pull(pull)
    if service:
        env.with_services(*service)
    for name, count in scaling:
        env.with_scaled_service(name, count)
    for name, port in exposures:
        env.with_exposed_service(name, port)
    if timeout is not None:
        env.with_startup_timeout(timeout)

    try:
        asyncio.run(_run_up(env, exposures, hold))
    except ComposeEnvError as exc:
        print_error("Startup failed", exc)
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:
        print_info("Interrupted, environment stopped")


@app.command()
def images(
    files: list[Path] = typer.Option(..., "--file", "-f", help="Compose file (repeatable)"),
) -> None:
    """List the images the compose files depend on."""
    try:
        found = ComposeFileSet(tuple(files)).dependency_images()
    except ComposeEnvError as exc:
        print_error("Cannot read compose files", exc)
        raise typer.Exit(code=1) from exc
    print_images(found)


if __name__ == "__main__":
    app()
