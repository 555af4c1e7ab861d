"""
Transport protocol definition.

Defines the interface every protocol backend implements, allowing the
transfer session to work with any transport that speaks the
command/data-channel model (FTP, FTPS, ...).
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, Flag, auto
from typing import BinaryIO, Protocol, runtime_checkable


class SecurityMode(Enum):
    """Control channel encryption mode."""

    PLAIN = "plain"
    EXPLICIT_TLS = "explicit"
    IMPLICIT_TLS = "implicit"

    @property
    def is_secure(self) -> bool:
        return self is not SecurityMode.PLAIN


class Capability(Flag):
    """Server-advertised extended commands."""

    NONE = 0
    MFF = auto()
    MFMT = auto()


class ItemType(Enum):
    """Directory entry type."""

    FILE = "file"
    FOLDER = "folder"
    OTHER = "other"


@dataclass
class ConnectionParameters:
    """Everything a transport needs to open a session."""

    host: str
    port: int
    username: str
    password: str = field(default="", repr=False)
    security_mode: SecurityMode = SecurityMode.PLAIN
    client_certificates: list[bytes] = field(default_factory=list, repr=False)
    timeout: float = 30.0


@dataclass
class CertificateCheck:
    """Certificate presented during a TLS handshake.

    The transport fills in ``certificate`` (DER bytes) and ``policy_violation``;
    the validation callback decides by setting ``accept``.
    """

    certificate: bytes
    policy_violation: bool
    accept: bool = False


CertificateCallback = Callable[[CertificateCheck], None]


@dataclass
class Reply:
    """Server reply to a raw command."""

    success: bool
    code: str
    message: str


@dataclass
class RawEntry:
    """Directory entry exactly as the server reported it."""

    name: str
    full_name: str
    type: ItemType
    size: int = 0
    modified: datetime | None = None
    permissions: int | None = None


@dataclass
class ListingEntry:
    """Directory entry with its path in canonical absolute form."""

    name: str
    full_path: str
    type: ItemType
    size: int
    last_modified: datetime | None
    permissions: int | None = None


@runtime_checkable
class Transport(Protocol):
    """Protocol defining the remote transport interface.

    Any class implementing these methods can back a TransferSession,
    regardless of the underlying protocol family.
    """

    @property
    def is_connected(self) -> bool: ...

    @property
    def capabilities(self) -> Capability: ...

    def connect(
        self, params: ConnectionParameters, validate_certificate: CertificateCallback | None
    ) -> None:
        """Open control connection, negotiate security and log in.

        Raises:
            NetworkUnreachableError: Server cannot be reached
            AuthenticationFailedError: Login refused
            CertificateRejectedError: validate_certificate declined the handshake
        """
        ...

    def disconnect(self) -> None: ...

    def get_working_directory(self) -> str: ...

    def set_working_directory(self, path: str) -> None: ...

    def open_read(self, path: str) -> BinaryIO:
        """Open a remote file for reading. Closing the stream ends the transfer."""
        ...

    def open_write(self, path: str) -> BinaryIO:
        """Open a remote file for writing. Closing the stream ends the transfer."""
        ...

    def rename(self, old_path: str, new_path: str) -> None: ...

    def create_directory(self, path: str) -> None: ...

    def delete_file(self, path: str) -> None: ...

    def delete_directory(self, path: str) -> None: ...

    def file_exists(self, path: str) -> bool: ...

    def directory_exists(self, path: str) -> bool: ...

    def get_modified_time(self, path: str) -> datetime: ...

    def get_file_size(self, path: str) -> int: ...

    def execute(self, command: str) -> Reply:
        """Send a raw command. Never raises for negative replies."""
        ...

    def get_listing(self, path: str) -> list[RawEntry]: ...

    def server_info(self) -> dict[str, str]: ...
