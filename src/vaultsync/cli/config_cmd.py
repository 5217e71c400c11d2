"""Config commands: show, check."""

from __future__ import annotations

import click
import yaml

from ._common import config_option, console, load_or_exit


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group("config")
    def config_group():
        """Inspect the configuration file."""

    @config_group.command("show")
    @config_option
    def config_show(config_path: str):
        """Print the effective configuration with credentials masked."""
        config = load_or_exit(config_path)
        click.echo(yaml.safe_dump(config.redacted(), default_flow_style=False, sort_keys=False))

    @config_group.command("check")
    @config_option
    def config_check(config_path: str):
        """Validate the configuration file."""
        config = load_or_exit(config_path)
        console.print(f"\n  [green]Configuration OK[/] ({config_path})")
        console.print(f"  {config.src.url} [cyan]{config.src.prefix}[/]")
        console.print(f"  -> {config.dst.url} [cyan]{config.dst.prefix}[/]")
        console.print(f"  Audit device: [bold]{config.id}[/] -> {config.external_address}\n")
