# Milvus backup timer CLI: entry points
"""milvus-backup-install and milvus-backup command line interfaces."""

from __future__ import annotations

import sys

import click
from pydantic import ValidationError

from .. import __version__
from ..common import console, die, init_logging, log, print_error
from ..config import Settings, get_settings
from ..errors import MilvusBackupError

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ValidationError as e:
        die(f"Invalid configuration: {e}")


# ---------------------------------------------------------------------------
# Installer
# ---------------------------------------------------------------------------


@click.command(context_settings=CONTEXT_SETTINGS)
@click.option("--uninstall", is_flag=True, help="Uninstall the service.")
@click.version_option(__version__, prog_name="milvus-backup-install")
def install_cli(uninstall: bool) -> None:
    """Install a systemd timer that creates daily backups of Milvus using Docker.

    \b
    Prerequisites:
      • Linux system with systemd
      • Docker installed and running
      • Root or sudo access
      • Milvus database accessible

    \b
    Settings come from MILVUS_BACKUP_* environment variables or
    /etc/default/milvus-backup.
    """
    from ..installer import Installer

    settings = _load_settings()
    installer = Installer(settings)
    try:
        installer.check_root()
    except MilvusBackupError as e:
        die(str(e))

    try:
        init_logging(settings.log_file)
    except OSError as e:
        die(f"Cannot open log file {settings.log_file}: {e}")

    try:
        if uninstall:
            log("Uninstalling Milvus backup service")
            installer.uninstall()
            return
        log("Installing Milvus backup service")
        installer.install()
    except MilvusBackupError as e:
        log(f"Installer failed: {e}")
        die(str(e))


# ---------------------------------------------------------------------------
# Backup runner
# ---------------------------------------------------------------------------


@click.group(invoke_without_command=True, context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, prog_name="milvus-backup")
@click.pass_context
def backup_cli(ctx: click.Context) -> None:
    """Create a Milvus backup and delete backups past the retention window.

    Run without a subcommand to perform one backup cycle; this is what the
    systemd service executes.
    """
    if ctx.invoked_subcommand is not None:
        return

    from ..runner import BackupRunner

    settings = _load_settings()
    try:
        init_logging(settings.log_file, stdout=True)
    except OSError as e:
        die(f"Cannot open log file {settings.log_file}: {e}")

    result = BackupRunner(settings).run()
    if not result.ok:
        sys.exit(1)


@backup_cli.command("list")
def backup_list() -> None:
    """List existing backups, newest first."""
    from rich.table import Table

    from ..backups import human_size, list_backups

    settings = _load_settings()
    items = list_backups(settings.backup_dir)
    if not items:
        console.print(f"[dim]No backups found in {settings.backup_dir}.[/dim]")
        return

    table = Table(title=f"Backups in {settings.backup_dir}")
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Age (days)", justify="right")
    table.add_column("Expires")
    for b in items:
        expired = b["age_days"] > settings.retention_days
        table.add_row(
            b["name"],
            human_size(b["size_bytes"]),
            str(b["age_days"]),
            "[red]next run[/red]" if expired else "[green]kept[/green]",
        )
    console.print(table)


@backup_cli.command("status")
def backup_status() -> None:
    """Show the timer state and next scheduled run."""
    from ..systemd import Systemctl

    settings = _load_settings()
    try:
        status = Systemctl(settings).status(settings.timer_name)
    except MilvusBackupError as e:
        print_error(str(e))
        sys.exit(1)

    active_style = "green" if status.active else "yellow"
    enabled_style = "green" if status.enabled else "yellow"
    console.print(f"[bold blue]{status.unit}[/]")
    console.print(f"Active:   [{active_style}]{status.active_state}[/{active_style}]")
    console.print(f"Enabled:  [{enabled_style}]{status.unit_file_state}[/{enabled_style}]")
    console.print(f"Next run: {status.next_elapse or 'n/a'}")
    console.print(f"Retention: {settings.retention_days} days in {settings.backup_dir}")


if __name__ == "__main__":
    backup_cli()
