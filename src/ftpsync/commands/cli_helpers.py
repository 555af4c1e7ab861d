"""Shared helper functions for CLI commands.

Functions in this module are used by every command that talks to the
server: password resolution, the interactive certificate prompt and the
connect/disconnect scope around a TransferSession.
"""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import NoReturn

import click
from rich.console import Console

from ftpsync.certificate_validator import CertificateFingerprint, CertificateVerdict
from ftpsync.config_manager import ConfigError, ConfigManager, SyncConfig
from ftpsync.modules.file_transfer import FileTransferError, FtpTransport, TransferSession
from ftpsync.trust_store import TrustedFingerprints

logger = logging.getLogger(__name__)

PASSWORD_ENV_VAR = "FTPSYNC_PASSWORD"


class ConsoleCertificateValidator:
    """Ask the user on the terminal whether to trust a server certificate.

    Accepting offers to trust the certificate permanently, which appends its
    fingerprint to the trusted-certificate file.
    """

    def __init__(self, trusted: TrustedFingerprints, console: Console | None = None):
        self.trusted = trusted
        self.console = console or Console(stderr=True)

    def evaluate(self, fingerprint: CertificateFingerprint) -> CertificateVerdict:
        self.console.print("\n[bold yellow]The server presented an untrusted certificate[/bold yellow]")
        self.console.print(fingerprint.describe(), markup=False, highlight=False)

        if not click.confirm("Accept this certificate?", default=False, err=True):
            return CertificateVerdict.REJECTED

        if click.confirm("Trust it permanently?", default=False, err=True):
            self.trusted.add(fingerprint.fingerprint)
        return CertificateVerdict.TRUSTED


def fail(message: str) -> NoReturn:
    """Print an error and exit with status 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def load_config(config_path: str | None) -> SyncConfig:
    """Load and validate configuration, exiting on error."""
    try:
        config = ConfigManager.load_config(config_path)
        config.validate()
    except ConfigError as e:
        fail(str(e))
    return config


def resolve_password(config: SyncConfig) -> str:
    """Password from FTPSYNC_PASSWORD, or a hidden prompt.

    Anonymous logins never prompt.
    """
    password = os.environ.get(PASSWORD_ENV_VAR)
    if password is not None:
        return password
    if config.username == "anonymous":
        return ""
    return click.prompt(
        f"Password for {config.username}@{config.host}", hide_input=True, err=True
    )


@contextmanager
def session_scope(config_path: str | None) -> Iterator[TransferSession]:
    """Connected TransferSession for one CLI command.

    Config and transfer errors are reported and turned into exit status 1.
    """
    config = load_config(config_path)
    trusted = TrustedFingerprints(ConfigManager.get_trust_file(config_path))
    session = TransferSession(
        config,
        FtpTransport(),
        password=resolve_password(config),
        trusted=trusted,
        certificate_validator=ConsoleCertificateValidator(trusted),
    )

    try:
        session.connect()
    except FileTransferError as e:
        fail(f"Cannot connect to {config.host}: {e}")

    try:
        yield session
    except (FileTransferError, ConfigError) as e:
        fail(str(e))
    finally:
        try:
            session.disconnect()
        except FileTransferError as e:
            logger.debug(f"Error during disconnect: {e}")


def format_size(size: int) -> str:
    """Human readable byte count.

    Examples:
        >>> format_size(512)
        '512 B'
        >>> format_size(2048)
        '2.0 KB'
    """
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB", "TB"):
        value /= 1024
        if value < 1024 or unit == "TB":
            return f"{value:.1f} {unit}"
    return f"{size} B"


__all__ = [
    "PASSWORD_ENV_VAR",
    "ConsoleCertificateValidator",
    "fail",
    "format_size",
    "load_config",
    "resolve_password",
    "session_scope",
]
