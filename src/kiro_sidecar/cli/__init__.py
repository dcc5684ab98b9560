"""
kiro-sidecar CLI: supervise the local Kiro API gateway.

Command groups live in their own modules and are registered on the
main Click group here.

Entry point: kiro_sidecar.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="kiro-sidecar")
def main():
    """kiro-sidecar: run and supervise the local Kiro API gateway."""


from .sidecar import register_sidecar_commands
from .accounts import register_accounts_commands
from .config_cmd import register_config_commands

register_sidecar_commands(main)
register_accounts_commands(main)
register_config_commands(main)
