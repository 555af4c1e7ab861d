"""File transfer commands for ftpsync CLI.

This module provides listing, transfer and remote file management commands,
plus the config and trust subgroups.
"""

import logging
import re
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ftpsync.commands.cli_helpers import fail, format_size, session_scope
from ftpsync.config_manager import ConfigError, ConfigManager, SyncConfig
from ftpsync.modules.file_transfer import (
    CommandError,
    ItemType,
    SecurityMode,
    TransferDirection,
    TransferSession,
    TransferTask,
)
from ftpsync.modules.progress import TransferProgressDisplay
from ftpsync.trust_store import TrustedFingerprints

logger = logging.getLogger(__name__)

_MODE_PATTERN = re.compile(r"^[0-7]{3,4}$")


def _config_path(ctx: click.Context) -> str | None:
    return ctx.obj.get("config") if ctx.obj else None


def _run_transfer(session: TransferSession, task: TransferTask, total: int | None) -> int:
    with TransferProgressDisplay() as display:
        display.add(task, total=total)
        session.progress_callback = display.on_progress
        try:
            if task.direction is TransferDirection.UPLOAD:
                transferred = session.upload(task)
            else:
                transferred = session.download(task)
        finally:
            session.progress_callback = None
        display.finish(task)
    return transferred


# =============================================================================
# Listing and transfers
# =============================================================================


@click.command(name="ls")
@click.argument("path", default=".")
@click.pass_context
def ls(ctx: click.Context, path: str):
    """List a remote directory."""
    with session_scope(_config_path(ctx)) as session:
        entries = session.get_file_listing(path)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Modified", style="dim")
    table.add_column("Path", style="dim")

    for entry in sorted(entries, key=lambda e: (e.type is not ItemType.FOLDER, e.name)):
        table.add_row(
            entry.name,
            entry.type.value,
            format_size(entry.size) if entry.type is ItemType.FILE else "-",
            entry.last_modified.strftime("%Y-%m-%d %H:%M") if entry.last_modified else "-",
            entry.full_path,
        )

    Console().print(table)


@click.command(name="get")
@click.argument("remote")
@click.argument("local", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def get(ctx: click.Context, remote: str, local: Path):
    """Download REMOTE to LOCAL."""
    with session_scope(_config_path(ctx)) as session:
        try:
            total = session.size_of(remote)
        except CommandError:
            total = None
        task = session.new_task(local, remote, TransferDirection.DOWNLOAD)
        transferred = _run_transfer(session, task, total)

    click.echo(f"Downloaded {remote} -> {local} ({format_size(transferred)})")


@click.command(name="put")
@click.argument("local", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("remote")
@click.pass_context
def put(ctx: click.Context, local: Path, remote: str):
    """Upload LOCAL to REMOTE."""
    with session_scope(_config_path(ctx)) as session:
        task = session.new_task(local, remote, TransferDirection.UPLOAD)
        transferred = _run_transfer(session, task, local.stat().st_size)

    click.echo(f"Uploaded {local} -> {remote} ({format_size(transferred)})")


# =============================================================================
# Remote file management
# =============================================================================


@click.command(name="rm")
@click.argument("path")
@click.option("--dir", "is_folder", is_flag=True, help="Remove an empty directory")
@click.pass_context
def rm(ctx: click.Context, path: str, is_folder: bool):
    """Delete a remote file or empty directory."""
    with session_scope(_config_path(ctx)) as session:
        session.remove(path, is_folder=is_folder)
    click.echo(f"Removed {path}")


@click.command(name="mv")
@click.argument("old_path")
@click.argument("new_path")
@click.pass_context
def mv(ctx: click.Context, old_path: str, new_path: str):
    """Rename or move a remote file."""
    with session_scope(_config_path(ctx)) as session:
        session.rename(old_path, new_path)
    click.echo(f"Renamed {old_path} -> {new_path}")


@click.command(name="mkdir")
@click.argument("path")
@click.pass_context
def mkdir(ctx: click.Context, path: str):
    """Create a remote directory."""
    with session_scope(_config_path(ctx)) as session:
        session.create_directory(path)
    click.echo(f"Created {path}")


@click.command(name="chmod")
@click.argument("mode")
@click.argument("path")
@click.pass_context
def chmod(ctx: click.Context, mode: str, path: str):
    """Change remote permissions (octal MODE, e.g. 644)."""
    if not _MODE_PATTERN.match(mode):
        fail(f"Invalid mode: {mode}. Use octal digits, e.g. 644")

    with session_scope(_config_path(ctx)) as session:
        changed = session.set_file_permissions(path, int(mode))

    if not changed:
        fail(f"Server refused to change permissions of {path}")
    click.echo(f"Mode of {path} set to {mode}")


@click.command(name="stat")
@click.argument("path")
@click.pass_context
def stat(ctx: click.Context, path: str):
    """Show size and modification time of a remote path."""
    with session_scope(_config_path(ctx)) as session:
        if not session.exists(path):
            fail(f"No such remote path: {path}")
        try:
            size: int | None = session.size_of(path)
        except CommandError:
            size = None
        try:
            modified = session.get_modified_time(path)
        except CommandError:
            modified = None

    click.echo(f"Path:     {path}")
    click.echo(f"Size:     {format_size(size) if size is not None else '-'}")
    click.echo(f"Modified: {modified.isoformat() if modified else '-'}")


# =============================================================================
# Config group
# =============================================================================


@click.group(name="config")
def config_group():
    """Manage the ftpsync configuration file."""
    pass


@config_group.command(name="init")
@click.option("--host", prompt=True, help="Server host name or address")
@click.option("--port", type=int, default=None, help="Server port (default: per security mode)")
@click.option("--username", default="anonymous", show_default=True, help="Login name")
@click.option(
    "--security",
    type=click.Choice([mode.value for mode in SecurityMode]),
    default=SecurityMode.PLAIN.value,
    show_default=True,
    help="Control channel encryption",
)
@click.option("--remote-path", default="/", show_default=True, help="Remote root directory")
@click.option("--local-path", default=None, help="Local root directory")
@click.option("--upload-limit", type=int, default=0, help="Upload limit in kB/s (0: unlimited)")
@click.option("--download-limit", type=int, default=0, help="Download limit in kB/s (0: unlimited)")
@click.option("--keep-alive", type=int, default=0, help="Keep-alive interval in seconds (0: off)")
@click.pass_context
def config_init(
    ctx: click.Context,
    host: str,
    port: int | None,
    username: str,
    security: str,
    remote_path: str,
    local_path: str | None,
    upload_limit: int,
    download_limit: int,
    keep_alive: int,
):
    """Write a new configuration file."""
    config = SyncConfig(
        host=host,
        port=port,
        username=username,
        security=security,
        remote_path=remote_path,
        local_path=local_path,
        upload_limit=upload_limit,
        download_limit=download_limit,
        keep_alive_interval=keep_alive,
    )
    try:
        config.validate()
        path = ConfigManager.save_config(config, _config_path(ctx))
    except ConfigError as e:
        fail(str(e))

    click.echo(f"Configuration saved to {path}")
    click.echo("The password is not stored. Set FTPSYNC_PASSWORD or enter it when prompted.")


@config_group.command(name="show")
@click.pass_context
def config_show(ctx: click.Context):
    """Print the current configuration."""
    try:
        config = ConfigManager.load_config(_config_path(ctx))
    except ConfigError as e:
        fail(str(e))

    for key, value in config.to_dict().items():
        click.echo(f"{key} = {value}")


# =============================================================================
# Trust group
# =============================================================================


def _trusted(ctx: click.Context) -> TrustedFingerprints:
    return TrustedFingerprints(ConfigManager.get_trust_file(_config_path(ctx)))


@click.group(name="trust")
def trust_group():
    """Manage permanently trusted server certificates."""
    pass


@trust_group.command(name="list")
@click.pass_context
def trust_list(ctx: click.Context):
    """List trusted certificate fingerprints."""
    trusted = _trusted(ctx)
    if not len(trusted):
        click.echo("No trusted certificates.")
        return
    for fingerprint in trusted:
        click.echo(fingerprint)


@trust_group.command(name="remove")
@click.argument("fingerprint")
@click.pass_context
def trust_remove(ctx: click.Context, fingerprint: str):
    """Stop trusting a certificate fingerprint."""
    if not _trusted(ctx).remove(fingerprint):
        fail(f"Fingerprint not trusted: {fingerprint}")
    click.echo(f"Removed {fingerprint}")


__all__ = [
    "chmod",
    "config_group",
    "get",
    "ls",
    "mkdir",
    "mv",
    "put",
    "rm",
    "stat",
    "trust_group",
]
