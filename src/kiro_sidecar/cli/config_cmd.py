"""Settings commands: config show, config set."""

from __future__ import annotations

import json

import click
from pydantic import ValidationError

from ._common import console, home_option, resolve_home


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group()
    def config():
        """Saved launch defaults (``<home>/config.yaml``)."""

    @config.command("show")
    @home_option
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def config_show(home: str, json_out: bool):
        """Show effective settings."""
        from ..settings import load_settings

        settings = load_settings(resolve_home(home))
        data = settings.model_dump(mode="json")
        if json_out:
            click.echo(json.dumps(data, indent=2))
            return
        console.print()
        for key, value in data.items():
            shown = "[dim]unset[/]" if value is None else value
            console.print(f"  [bold]{key}[/]: {shown}")
        console.print()

    @config.command("set")
    @home_option
    @click.argument("key")
    @click.argument("value")
    def config_set(home: str, key: str, value: str):
        """Set one setting, e.g. ``config set port 9090``."""
        from ..settings import SupervisorSettings, load_settings, save_settings

        home_path = resolve_home(home)
        settings = load_settings(home_path)
        if key not in SupervisorSettings.model_fields:
            console.print(f"[bold red]Unknown setting:[/] {key}")
            raise SystemExit(1)

        data = settings.model_dump()
        data[key] = value if value.strip() else None
        try:
            updated = SupervisorSettings(**data)
        except ValidationError as exc:
            console.print(f"[bold red]Invalid value for {key}:[/] {exc.errors()[0]['msg']}")
            raise SystemExit(1)

        path = save_settings(updated, home_path)
        console.print(f"  [green]{key}[/] = {getattr(updated, key)}  [dim]({path})[/]")
