"""Rich-based terminal output for the compose-env CLI.

Uses a module-level :class:`~rich.console.Console` singleton so that
formatting is consistent across commands.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

_console = Console()


def print_endpoints(project: str, endpoints: list[tuple[str, int, str, int]]) -> None:
    """Print one row per exposed service port.

    Parameters
    ----------
    project:
        Compose project identifier shown in the title.
    endpoints:
        ``(service, service_port, host, host_port)`` tuples.
    """
    table = Table(title=f"Compose project [bold]{project}[/bold]")
    table.add_column("Service", style="cyan")
    table.add_column("Port", justify="right")
    table.add_column("Endpoint", style="green")
    for service, service_port, host, host_port in endpoints:
        table.add_row(service, str(service_port), f"{host}:{host_port}")
    if not endpoints:
        table.caption = "no ports exposed"
    _console.print(table)


def print_images(images: list[str]) -> None:
    table = Table(title="Dependency images")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Image", style="cyan")
    for index, image in enumerate(images, start=1):
        table.add_row(str(index), image)
    _console.print(table)


def print_error(title: str, error: Any) -> None:
    _console.print(Panel(str(error), title=f"[bold red]{title}[/bold red]", border_style="red"))


def print_info(message: str) -> None:
    _console.print(message)
