"""
vaultsync CLI.

The main Click group is defined here; each command group lives in its
own module and is attached through a register function.

Entry point: vaultsync.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="vaultsync")
def main():
    """vaultsync -- replicate Vault secrets between clusters.

    Follows the source's audit stream and re-scans periodically.
    """


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .run import register_run_commands
from .config_cmd import register_config_commands
from .device import register_device_commands

register_run_commands(main)
register_config_commands(main)
register_device_commands(main)
