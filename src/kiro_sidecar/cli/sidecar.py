"""Gateway commands: run, serve, start, status, stop, logs."""

from __future__ import annotations

import json
import signal
import sys
import threading
from collections import deque
from pathlib import Path
from typing import Optional

import click

from ._common import (
    build_params,
    console,
    fail,
    home_option,
    print_status,
    resolve_home,
    start_options,
)
from ..errors import SidecarError


def _install_signal_handlers(stop_event: threading.Event) -> None:
    """SIGINT/SIGTERM set the stop event instead of raising."""

    def _handle(signum, frame):
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, _handle)


def register_sidecar_commands(main: click.Group) -> None:
    """Register gateway lifecycle commands on the main group."""

    @main.command("run")
    @home_option
    @start_options
    @click.option("--interval", default=10, help="Seconds between health checks.")
    @click.option("--verbose", "-v", is_flag=True, help="Debug-level supervisor log.")
    def run_cmd(
        home: str,
        project_path: Optional[str],
        port: Optional[int],
        api_key: Optional[str],
        admin_key: Optional[str],
        data_dir: Optional[str],
        region: Optional[str],
        kiro_version: Optional[str],
        proxy_url: Optional[str],
        interval: int,
        verbose: bool,
    ):
        """Start the gateway and supervise it in the foreground.

        The gateway is stopped when this command exits (Ctrl+C).
        """
        from ..settings import load_settings
        from ..supervisor import SidecarSupervisor, setup_logging

        home_path = resolve_home(home)
        settings = load_settings(home_path)
        log_file = setup_logging(home_path, verbose)
        supervisor = SidecarSupervisor(settings)
        params = build_params(
            project_path, port, api_key, admin_key, data_dir, region, kiro_version, proxy_url
        )

        try:
            status = supervisor.start(params)
        except SidecarError as exc:
            fail(exc)

        print_status(status)
        console.print(f"  [dim]Supervisor log: {log_file}[/]")
        console.print("  [dim]Running in foreground (Ctrl+C to stop)[/]\n")

        stop_event = threading.Event()
        _install_signal_handlers(stop_event)
        healthy = status.healthy
        try:
            while not stop_event.wait(timeout=interval):
                status = supervisor.status()
                if not status.running:
                    console.print("[bold red]Gateway exited unexpectedly.[/] Check its log.")
                    sys.exit(1)
                if status.healthy != healthy:
                    healthy = status.healthy
                    state = "[green]healthy[/]" if healthy else "[yellow]unreachable[/]"
                    console.print(f"  Gateway is now {state}")
        finally:
            supervisor.shutdown()
            console.print("\n  [green]Gateway stopped.[/]\n")

    @main.command("serve")
    @home_option
    @start_options
    @click.option("--control-port", type=int, help="Control API port.")
    @click.option("--autostart", is_flag=True, help="Start the gateway immediately.")
    @click.option("--verbose", "-v", is_flag=True, help="Debug-level supervisor log.")
    def serve_cmd(
        home: str,
        project_path: Optional[str],
        port: Optional[int],
        api_key: Optional[str],
        admin_key: Optional[str],
        data_dir: Optional[str],
        region: Optional[str],
        kiro_version: Optional[str],
        proxy_url: Optional[str],
        control_port: Optional[int],
        autostart: bool,
        verbose: bool,
    ):
        """Run the supervisor with its local control API.

        Other invocations of start/status/stop talk to this process.
        """
        from ..control import ControlServer
        from ..settings import load_settings
        from ..supervisor import SidecarSupervisor, setup_logging

        home_path = resolve_home(home)
        settings = load_settings(home_path)
        log_file = setup_logging(home_path, verbose)
        supervisor = SidecarSupervisor(settings)

        try:
            server = ControlServer(supervisor, port=control_port or settings.control_port)
        except OSError as exc:
            console.print(f"[bold red]Cannot bind control API:[/] {exc}")
            sys.exit(1)

        server.start()
        console.print(f"\n  [green]Control API[/] on [cyan]http://127.0.0.1:{server.port}[/]")
        console.print(f"  Log: {log_file}")

        if autostart:
            params = build_params(
                project_path, port, api_key, admin_key, data_dir, region, kiro_version, proxy_url
            )
            try:
                print_status(supervisor.start(params))
            except SidecarError as exc:
                console.print(f"[bold red]{exc.kind}:[/] {exc}")

        console.print("  [dim]Serving in foreground (Ctrl+C to stop)[/]\n")
        stop_event = threading.Event()
        _install_signal_handlers(stop_event)
        try:
            stop_event.wait()
        finally:
            server.stop()
            supervisor.shutdown()
            console.print("  [green]Supervisor stopped.[/]\n")

    @main.command("start")
    @home_option
    @start_options
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def start_cmd(
        home: str,
        project_path: Optional[str],
        port: Optional[int],
        api_key: Optional[str],
        admin_key: Optional[str],
        data_dir: Optional[str],
        region: Optional[str],
        kiro_version: Optional[str],
        proxy_url: Optional[str],
        json_out: bool,
    ):
        """Ask the running supervisor (``serve``) to start the gateway."""
        from ..control import ControlClient, ControlUnavailable
        from ..settings import load_settings

        settings = load_settings(resolve_home(home))
        client = ControlClient(settings.control_port)
        params = build_params(
            project_path, port, api_key, admin_key, data_dir, region, kiro_version, proxy_url
        )

        try:
            status = client.start(params)
        except ControlUnavailable as exc:
            console.print(f"[bold red]{exc}[/]")
            console.print(
                "Run [bold]kiro-sidecar serve[/] first, or [bold]kiro-sidecar run[/] "
                "to supervise in the foreground."
            )
            sys.exit(1)
        except SidecarError as exc:
            fail(exc)

        if json_out:
            click.echo(json.dumps(status.to_wire(), indent=2))
        else:
            print_status(status)

    @main.command("status")
    @home_option
    @click.option("--port", type=int, help="Gateway port to probe when unsupervised.")
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def status_cmd(home: str, port: Optional[int], json_out: bool):
        """Show gateway status."""
        from ..control import ControlClient, ControlUnavailable
        from ..health import probe
        from ..settings import load_settings

        settings = load_settings(resolve_home(home))
        client = ControlClient(settings.control_port)

        try:
            status = client.status()
        except ControlUnavailable:
            target = port or settings.port
            healthy = probe(
                target,
                settings.api_key,
                path=settings.health_path,
                header=settings.health_header,
                timeout=settings.health_timeout,
            )
            if json_out:
                click.echo(json.dumps(
                    {"running": False, "supervised": False, "port": target, "healthy": healthy},
                    indent=2,
                ))
                return
            console.print("\n  [yellow]No supervisor is running.[/]")
            if healthy:
                console.print(
                    f"  [yellow]An unsupervised gateway answers on port {target}.[/] "
                    "Use [bold]kiro-sidecar stop[/] to reclaim it."
                )
            console.print()
            return
        except SidecarError as exc:
            fail(exc)

        if json_out:
            click.echo(json.dumps(status.to_wire(), indent=2))
        else:
            print_status(status)

    @main.command("stop")
    @home_option
    @click.option("--port", type=int, help="Gateway port to sweep for stale instances.")
    def stop_cmd(home: str, port: Optional[int]):
        """Stop the gateway.

        Goes through the supervisor when one is serving; otherwise sweeps
        the port for gateway processes left behind by a lost supervisor.
        """
        from ..control import ControlClient, ControlUnavailable
        from ..settings import load_settings
        from ..supervisor import SidecarSupervisor

        settings = load_settings(resolve_home(home))
        client = ControlClient(settings.control_port)

        try:
            client.stop(port)
        except ControlUnavailable:
            supervisor = SidecarSupervisor(settings, register_atexit=False)
            try:
                supervisor.stop(port)
            except SidecarError as exc:
                fail(exc)
        except SidecarError as exc:
            fail(exc)

        console.print("\n  [green]Gateway stopped.[/]\n")

    @main.command("logs")
    @home_option
    @click.option("--lines", "-n", default=50, help="Number of lines (default: 50).")
    @click.option("--data-dir", type=click.Path(), help="Gateway working directory.")
    def logs_cmd(home: str, lines: int, data_dir: Optional[str]):
        """Show the tail of the gateway's log."""
        from ..paths import LOG_FILE, default_runtime_data_dir
        from ..settings import load_settings

        settings = load_settings(resolve_home(home))
        base = Path(data_dir) if data_dir else (settings.data_dir or default_runtime_data_dir())
        log_path = base.expanduser() / LOG_FILE

        if not log_path.exists():
            console.print(f"[dim]No gateway log at {log_path}[/]")
            return

        with log_path.open(encoding="utf-8", errors="replace") as fh:
            tail = deque(fh, maxlen=lines)
        click.echo("".join(tail), nl=False)
