"""FTP/FTPS transfer sessions for ftpsync."""

from .exceptions import (
    AuthenticationFailedError,
    CertificateRejectedError,
    CommandError,
    ConnectError,
    FileTransferError,
    LocalIOError,
    NetworkUnreachableError,
    NotConnectedError,
    RemoteIOError,
    ServerRejectedError,
    TransferCancelledError,
    TransferError,
    UnsupportedCommandError,
)
from .file_transfer import TransferDirection, TransferProgress, TransferTask
from .ftp_transport import FtpTransport
from .path_normalizer import PathNormalizer
from .session_manager import SessionState, SessionStatus, TransferSession
from .transport import (
    Capability,
    CertificateCheck,
    ConnectionParameters,
    ItemType,
    ListingEntry,
    RawEntry,
    Reply,
    SecurityMode,
    Transport,
)

__all__ = [
    # Exceptions
    "AuthenticationFailedError",
    "CertificateRejectedError",
    "CommandError",
    "ConnectError",
    "FileTransferError",
    "LocalIOError",
    "NetworkUnreachableError",
    "NotConnectedError",
    "RemoteIOError",
    "ServerRejectedError",
    "TransferCancelledError",
    "TransferError",
    "UnsupportedCommandError",
    # Classes
    "Capability",
    "CertificateCheck",
    "ConnectionParameters",
    "FtpTransport",
    "ItemType",
    "ListingEntry",
    "PathNormalizer",
    "RawEntry",
    "Reply",
    "SecurityMode",
    "SessionState",
    "SessionStatus",
    "TransferDirection",
    "TransferProgress",
    "TransferSession",
    "TransferTask",
    "Transport",
]
