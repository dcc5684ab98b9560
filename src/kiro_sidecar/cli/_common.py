"""Shared helpers for the CLI command modules."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel

from .. import SIDECAR_HOME
from ..errors import SidecarError
from ..models import SidecarStatus, StartParams

console = Console()


def home_option(func):
    return click.option(
        "--home",
        default=SIDECAR_HOME,
        type=click.Path(),
        help="Supervisor home (settings and logs).",
    )(func)


def start_options(func):
    """Options shared by ``run`` and ``start``."""
    options = [
        click.option("--project-path", help="Runtime binary, build dir, or legacy Node project."),
        click.option("--port", type=int, help="Gateway listen port."),
        click.option("--api-key", help="Client API key."),
        click.option("--admin-key", help="Admin API key."),
        click.option("--data-dir", type=click.Path(), help="Gateway working directory."),
        click.option("--region", help="Default AWS region for credentials."),
        click.option("--kiro-version", help="Kiro client version to report."),
        click.option("--proxy-url", help="Outbound HTTP proxy for the gateway."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_params(
    project_path: Optional[str],
    port: Optional[int],
    api_key: Optional[str],
    admin_key: Optional[str],
    data_dir: Optional[str],
    region: Optional[str],
    kiro_version: Optional[str],
    proxy_url: Optional[str],
) -> StartParams:
    return StartParams(
        project_path=project_path,
        port=port,
        api_key=api_key,
        admin_key=admin_key,
        data_dir=data_dir,
        region=region,
        kiro_version=kiro_version,
        proxy_url=proxy_url,
    )


def fail(exc: SidecarError) -> None:
    """Print a supervisor error and exit 1."""
    console.print(f"[bold red]{exc.kind}:[/] {exc}")
    sys.exit(1)


def status_panel(status: SidecarStatus) -> Panel:
    """Rich panel for a running gateway."""
    health = "[green]healthy[/]" if status.healthy else "[yellow]unreachable[/]"
    body = (
        f"PID: [bold]{status.pid}[/]\n"
        f"URL: [cyan]{status.url}[/]\n"
        f"Health: {health}\n"
        f"Runtime: [dim]{status.project_path}[/]\n"
        f"Accounts: [dim]{status.shared_accounts_file}[/]\n"
        f"Log: [dim]{status.log_path}[/]"
    )
    if status.message:
        body += f"\n[yellow]{status.message}[/]"
    return Panel(body, title="[green]Gateway Running[/]", border_style="green")


def print_status(status: SidecarStatus) -> None:
    console.print()
    if status.running:
        console.print(status_panel(status))
    else:
        console.print("  [yellow]Gateway is not running.[/]")
    console.print()


def resolve_home(home: str) -> Path:
    return Path(home).expanduser()
