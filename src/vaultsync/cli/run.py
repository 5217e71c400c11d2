"""Engine commands: run, scan."""

from __future__ import annotations

import sys

import click
from rich.panel import Panel

from ._common import config_option, console, load_or_exit


def register_run_commands(main: click.Group) -> None:
    """Register the run and scan commands."""

    @main.command("run")
    @config_option
    @click.option("--dry-run", is_flag=True, help="Do not make any changes to the destination Vault.")
    @click.option(
        "--log-level",
        default="INFO",
        type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
        help="Log verbosity.",
    )
    @click.option("--log-file", type=click.Path(dir_okay=False), help="Also log to this file.")
    def run(config_path: str, dry_run: bool, log_level: str, log_file: str):
        """Replicate continuously until SIGTERM/SIGINT.

        Registers an audit device on the source Vault that streams to
        this process, applies changes as they arrive and re-scans the
        whole prefix every full_sync_interval seconds.
        """
        from ..daemon import StartupError, SyncService, setup_logging

        setup_logging(log_level, log_file)
        config = load_or_exit(config_path)
        svc = SyncService(config, dry_run=dry_run)

        try:
            svc.start()
        except StartupError as exc:
            console.print(f"[bold red]Startup failed:[/] {exc}")
            sys.exit(1)
        svc.run_forever()

    @main.command("scan")
    @config_option
    @click.option("--dry-run", is_flag=True, help="Do not make any changes to the destination Vault.")
    def scan(config_path: str, dry_run: bool):
        """Run one full reconciliation pass and exit.

        Does not register an audit device and does not listen.
        """
        from ..daemon import StartupError, run_scan

        config = load_or_exit(config_path)
        console.print(
            f"\n  Reconciling [cyan]{config.src.prefix}[/] -> [cyan]{config.dst.prefix}[/]"
            + (" [yellow](dry run)[/]" if dry_run or config.dry_run else "")
        )
        try:
            stats = run_scan(config, dry_run=dry_run)
        except StartupError as exc:
            console.print(f"[bold red]Startup failed:[/] {exc}")
            sys.exit(1)

        ok = stats["scans_completed"] == 1 and stats["events_failed"] == 0
        console.print()
        console.print(
            Panel(
                f"Secrets found: [bold]{stats['events_received']}[/]\n"
                f"Written: [bold]{stats['events_applied']}[/]\n"
                f"Unchanged: [bold]{stats['events_unchanged']}[/]\n"
                f"Failed: [bold]{stats['events_failed']}[/]",
                title="[green]Scan complete[/]" if ok else "[red]Scan incomplete[/]",
                border_style="green" if ok else "red",
            )
        )
        for err in stats["recent_errors"][-5:]:
            console.print(f"  [dim]{err}[/]")
        console.print()
        if not ok:
            sys.exit(1)
