"""Audit device commands: status, remove."""

from __future__ import annotations

import sys

import click

from ._common import config_option, console, load_or_exit


def _source_registration(config_path: str):
    from ..daemon import StartupError, connect
    from ..registration import RegistrationManager

    config = load_or_exit(config_path)
    try:
        session = connect("src", config.src)
    except StartupError as exc:
        console.print(f"[bold red]{exc}[/]")
        sys.exit(1)
    return session, RegistrationManager(session, config.id)


def register_device_commands(main: click.Group) -> None:
    """Register the device command group."""

    @main.group()
    def device():
        """Manage the audit device on the source Vault.

        A process that crashes without a clean shutdown leaves its
        audit device behind; use these commands to inspect or remove it.
        """

    @device.command("status")
    @config_option
    def device_status(config_path: str):
        """Show whether the audit device is registered."""
        from ..client import VaultError

        session, registration = _source_registration(config_path)
        try:
            exists = registration.exists()
        except VaultError as exc:
            console.print(f"[bold red]Failed to list audit devices:[/] {exc}")
            sys.exit(1)
        finally:
            session.close()

        if exists:
            console.print(f"\n  Audit device [bold]{registration.device_id}[/]: [green]registered[/]\n")
        else:
            console.print(f"\n  Audit device [bold]{registration.device_id}[/]: [yellow]not registered[/]\n")

    @device.command("remove")
    @config_option
    def device_remove(config_path: str):
        """Remove the audit device from the source Vault."""
        session, registration = _source_registration(config_path)
        try:
            ok = registration.deregister()
        finally:
            session.close()

        if ok:
            console.print(f"\n  [green]Audit device {registration.device_id} removed.[/]\n")
        else:
            console.print(f"\n  [red]Failed to remove audit device {registration.device_id}.[/]\n")
            sys.exit(1)
