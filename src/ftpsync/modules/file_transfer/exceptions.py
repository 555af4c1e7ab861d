"""Custom exceptions for file transfer."""


class FileTransferError(Exception):
    """Base exception for file transfer errors."""

    pass


class NotConnectedError(FileTransferError):
    """Operation requires a live connection."""

    pass


class ConnectError(FileTransferError):
    """Connection could not be established."""

    pass


class NetworkUnreachableError(ConnectError):
    """Server could not be reached (DNS, refused, timed out)."""

    pass


class AuthenticationFailedError(ConnectError):
    """Server refused the login credentials."""

    pass


class CertificateRejectedError(ConnectError):
    """Server certificate was not accepted during the TLS handshake."""

    pass


class TransferError(FileTransferError):
    """Transfer operation failed."""

    pass


class LocalIOError(TransferError):
    """Local file could not be read or written."""

    pass


class RemoteIOError(TransferError):
    """Remote stream failed or the server rejected the transfer."""

    pass


class TransferCancelledError(TransferError):
    """Transfer was cancelled before completion."""

    pass


class CommandError(FileTransferError):
    """Server command failed."""

    pass


class UnsupportedCommandError(CommandError):
    """Server does not implement the command."""

    pass


class ServerRejectedError(CommandError):
    """Server refused the command."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
