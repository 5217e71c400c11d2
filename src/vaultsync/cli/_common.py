"""Shared utilities for all CLI command modules.

Provides the Rich console instance, the --config option and a loader
that turns configuration errors into a clean exit.
"""

from __future__ import annotations

import sys

import click
from rich.console import Console

from .. import DEFAULT_CONFIG
from ..config import ConfigError, SyncConfig, load_config

console = Console()

config_option = click.option(
    "--config",
    "config_path",
    default=DEFAULT_CONFIG,
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Configuration file.",
)


def load_or_exit(config_path: str) -> SyncConfig:
    """Load the configuration or exit with status 1."""
    try:
        return load_config(config_path)
    except ConfigError as exc:
        console.print(f"[bold red]Configuration error:[/] {exc}")
        sys.exit(1)
