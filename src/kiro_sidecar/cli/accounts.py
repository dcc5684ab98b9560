"""Credential preview: what the gateway would be given right now."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from ._common import console, fail, home_option, resolve_home
from ..errors import SidecarError


def _mask(secret: str) -> str:
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}…{secret[-4:]}"


def register_accounts_commands(main: click.Group) -> None:
    """Register the credentials preview command."""

    @main.command("credentials")
    @home_option
    @click.option("--accounts-file", type=click.Path(), help="Shared accounts.json to read.")
    @click.option("--region", help="Default region for accounts without one.")
    @click.option("--json-out", is_flag=True, help="Output as JSON (secrets masked).")
    def credentials_cmd(
        home: str,
        accounts_file: Optional[str],
        region: Optional[str],
        json_out: bool,
    ):
        """Preview the credentials materialized from the shared store."""
        from ..materializer import preview_credentials
        from ..paths import account_store_path
        from ..settings import load_settings

        settings = load_settings(resolve_home(home))
        source = (
            Path(accounts_file).expanduser()
            if accounts_file
            else settings.accounts_file or account_store_path()
        )

        try:
            credentials = preview_credentials(source, region or settings.region)
        except SidecarError as exc:
            fail(exc)

        if json_out:
            rows = []
            for cred in credentials:
                data = cred.model_dump(by_alias=True)
                data["refreshToken"] = _mask(cred.refresh_token)
                for key in ("accessToken", "clientSecret"):
                    if data.get(key):
                        data[key] = _mask(data[key])
                rows.append(data)
            click.echo(json.dumps(rows, indent=2, ensure_ascii=False))
            return

        table = Table(title=f"Credentials from {source}", show_header=True, header_style="bold")
        table.add_column("ID", justify="right")
        table.add_column("Priority", justify="right")
        table.add_column("Email", style="cyan")
        table.add_column("Auth")
        table.add_column("Region")
        table.add_column("Expires", style="dim")
        table.add_column("State")

        for cred in credentials:
            state = "[red]disabled[/]" if cred.disabled else "[green]enabled[/]"
            table.add_row(
                str(cred.id),
                str(cred.priority),
                cred.email or "[dim]-[/]",
                cred.auth_method,
                cred.region or "",
                cred.expires_at or "[dim]-[/]",
                state,
            )

        console.print()
        console.print(table)
        disabled = sum(1 for c in credentials if c.disabled)
        console.print(
            f"\n  {len(credentials)} credential(s), {disabled} disabled\n"
        )
