"""FTP/FTPS transport backed by ftplib.

Implements the Transport protocol for the three security modes:

- plain: ftplib.FTP
- explicit TLS: ftplib.FTP_TLS (AUTH TLS on the control channel, PROT P)
- implicit TLS: FTP_TLS subclass that wraps the control socket immediately

The TLS handshake itself does not verify the peer. Instead the presented
certificate is verified afterwards against the certifi root store and the
host name; the outcome is handed to the session's validation callback as a
policy violation flag, and the callback decides whether the connection may
proceed.
"""

import ftplib
import ipaddress
import logging
import re
import socket
import ssl
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from functools import lru_cache
from pathlib import Path
from typing import BinaryIO

import certifi
from cryptography import x509
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

from .exceptions import (
    AuthenticationFailedError,
    CertificateRejectedError,
    NetworkUnreachableError,
    NotConnectedError,
    RemoteIOError,
    ServerRejectedError,
    UnsupportedCommandError,
)
from .transport import (
    Capability,
    CertificateCallback,
    CertificateCheck,
    ConnectionParameters,
    ItemType,
    RawEntry,
    Reply,
    SecurityMode,
)

logger = logging.getLogger(__name__)

# Reply codes meaning "command not implemented / not recognized"
UNSUPPORTED_CODES = ("500", "502", "504")
LOGIN_FAILED_CODE = "530"

MLSD_FACTS = ["type", "size", "modify", "unix.mode", "perm"]

# drwxr-xr-x 2 user group 4096 Jan 01 12:00 name
_UNIX_LIST_LINE = re.compile(
    r"^(?P<mode>[\-ldcbps][rwxsStT\-]{9})\s+\d+\s+\S+\s+\S+\s+(?P<size>\d+)\s+"
    r"(?P<month>\w{3})\s+(?P<day>\d{1,2})\s+(?P<time>\d{1,2}:\d{2}|\d{4})\s+(?P<name>.+)$"
)


class _ImplicitFTP_TLS(ftplib.FTP_TLS):
    """FTP_TLS variant that speaks TLS from the first byte (port 990)."""

    def __init__(self, *args, **kwargs):
        self._sock = None
        super().__init__(*args, **kwargs)

    @property
    def sock(self):
        return self._sock

    @sock.setter
    def sock(self, value):
        if value is not None and not isinstance(value, ssl.SSLSocket):
            value = self.context.wrap_socket(value, server_hostname=self.host)
        self._sock = value


class _DataStream:
    """Binary stream over an FTP data connection.

    Closing the stream closes the data socket and consumes the final reply,
    which is where servers report failed transfers.
    """

    def __init__(self, ftp: ftplib.FTP, conn: socket.socket, path: str, mode: str):
        self._ftp = ftp
        self._conn = conn
        self._file = conn.makefile(mode)
        self._path = path
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        try:
            return self._file.read(size)
        except (OSError, EOFError) as e:
            raise RemoteIOError(f"Read failed for {self._path}: {e}") from e

    def write(self, data: bytes) -> int:
        try:
            self._file.write(data)
            return len(data)
        except OSError as e:
            raise RemoteIOError(f"Write failed for {self._path}: {e}") from e

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._file.close()
            if isinstance(self._conn, ssl.SSLSocket):
                self._conn.unwrap()
        except (OSError, ValueError) as e:
            logger.debug(f"Error closing data connection for {self._path}: {e}")
        finally:
            self._conn.close()

        try:
            self._ftp.voidresp()
        except ftplib.all_errors as e:
            raise RemoteIOError(f"Transfer of {self._path} failed: {e}") from e

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class FtpTransport:
    """Transport implementation for FTP, explicit FTPS and implicit FTPS."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._ftp: ftplib.FTP | None = None
        self._capabilities = Capability.NONE
        self._security_mode = SecurityMode.PLAIN

    @property
    def is_connected(self) -> bool:
        return self._ftp is not None and self._ftp.sock is not None

    @property
    def capabilities(self) -> Capability:
        return self._capabilities

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(
        self, params: ConnectionParameters, validate_certificate: CertificateCallback | None
    ) -> None:
        """Open the control connection, secure it, log in and read FEAT.

        Raises:
            NetworkUnreachableError: Server cannot be reached
            AuthenticationFailedError: Login refused
            CertificateRejectedError: validate_certificate declined the handshake
        """
        self.disconnect()
        self._security_mode = params.security_mode
        ftp = self._create_client(params.security_mode)

        try:
            ftp.connect(params.host, params.port, timeout=params.timeout)

            if params.security_mode is SecurityMode.EXPLICIT_TLS:
                ftp.auth()
            if params.security_mode.is_secure:
                self._check_certificate(ftp, params.host, validate_certificate)

            ftp.login(params.username, params.password)

            if isinstance(ftp, ftplib.FTP_TLS):
                ftp.prot_p()
        except CertificateRejectedError:
            _close_quietly(ftp)
            raise
        except ftplib.error_perm as e:
            _close_quietly(ftp)
            if str(e).startswith(LOGIN_FAILED_CODE):
                raise AuthenticationFailedError(f"Login refused by {params.host}: {e}") from e
            raise ServerRejectedError(str(e)) from e
        except (OSError, EOFError, ftplib.Error) as e:
            _close_quietly(ftp)
            raise NetworkUnreachableError(
                f"Cannot connect to {params.host}:{params.port}: {e}"
            ) from e

        self._ftp = ftp
        self._capabilities = self._read_capabilities()
        logger.debug(f"Connected to {params.host}:{params.port} ({params.security_mode.value})")

    def disconnect(self) -> None:
        if self._ftp is None:
            return
        ftp, self._ftp = self._ftp, None
        try:
            ftp.quit()
        except ftplib.all_errors as e:
            logger.debug(f"QUIT failed, closing socket: {e}")
            ftp.close()

    def _create_client(self, mode: SecurityMode) -> ftplib.FTP:
        if mode is SecurityMode.PLAIN:
            return ftplib.FTP(encoding=self.encoding)

        # Verification happens in _check_certificate so the callback can decide
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        if mode is SecurityMode.IMPLICIT_TLS:
            return _ImplicitFTP_TLS(context=context, encoding=self.encoding)
        return ftplib.FTP_TLS(context=context, encoding=self.encoding)

    def _check_certificate(
        self, ftp: ftplib.FTP, host: str, validate_certificate: CertificateCallback | None
    ) -> None:
        der = ftp.sock.getpeercert(binary_form=True)
        if der is None:
            raise CertificateRejectedError(f"{host} presented no certificate")

        violation = has_policy_violation(der, host, _peer_intermediates(ftp.sock))
        check = CertificateCheck(certificate=der, policy_violation=violation)
        if validate_certificate is None:
            check.accept = not check.policy_violation
        else:
            validate_certificate(check)

        if not check.accept:
            raise CertificateRejectedError(f"Certificate for {host} was not accepted")

    def _read_capabilities(self) -> Capability:
        capabilities = Capability.NONE
        try:
            features = self._client.sendcmd("FEAT")
        except ftplib.all_errors as e:
            logger.debug(f"FEAT not supported: {e}")
            return capabilities

        for line in features.splitlines()[1:]:
            feature = line.strip().split(" ")[0].upper()
            if feature == "MFF":
                capabilities |= Capability.MFF
            elif feature == "MFMT":
                capabilities |= Capability.MFMT
        return capabilities

    @property
    def _client(self) -> ftplib.FTP:
        if self._ftp is None:
            raise NotConnectedError("FTP transport is not connected")
        return self._ftp

    # ------------------------------------------------------------------
    # Working directory
    # ------------------------------------------------------------------

    def get_working_directory(self) -> str:
        with _command_errors():
            return self._client.pwd()

    def set_working_directory(self, path: str) -> None:
        with _command_errors():
            self._client.cwd(path)

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def open_read(self, path: str) -> BinaryIO:
        return self._open_stream(f"RETR {path}", path, "rb")

    def open_write(self, path: str) -> BinaryIO:
        return self._open_stream(f"STOR {path}", path, "wb")

    def _open_stream(self, command: str, path: str, mode: str):
        ftp = self._client
        try:
            ftp.voidcmd("TYPE I")
            conn = ftp.transfercmd(command)
        except ftplib.all_errors as e:
            raise RemoteIOError(f"Cannot open {path}: {e}") from e
        return _DataStream(ftp, conn, path, mode)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def rename(self, old_path: str, new_path: str) -> None:
        with _command_errors():
            self._client.rename(old_path, new_path)

    def create_directory(self, path: str) -> None:
        with _command_errors():
            self._client.mkd(path)

    def delete_file(self, path: str) -> None:
        with _command_errors():
            self._client.delete(path)

    def delete_directory(self, path: str) -> None:
        with _command_errors():
            self._client.rmd(path)

    def file_exists(self, path: str) -> bool:
        ftp = self._client
        try:
            ftp.voidcmd("TYPE I")
            return ftp.size(path) is not None
        except ftplib.error_perm:
            return False

    def directory_exists(self, path: str) -> bool:
        ftp = self._client
        with _command_errors():
            current = ftp.pwd()
        try:
            ftp.cwd(path)
        except ftplib.error_perm:
            return False
        with _command_errors():
            ftp.cwd(current)
        return True

    def get_modified_time(self, path: str) -> datetime:
        with _command_errors():
            reply = self._client.sendcmd(f"MDTM {path}")
        return parse_timestamp(reply.split(" ", 1)[1])

    def get_file_size(self, path: str) -> int:
        ftp = self._client
        with _command_errors():
            ftp.voidcmd("TYPE I")
            size = ftp.size(path)
        if size is None:
            raise ServerRejectedError(f"SIZE not available for {path}")
        return size

    def execute(self, command: str) -> Reply:
        try:
            response = self._client.sendcmd(command)
        except ftplib.all_errors as e:
            message = str(e)
            return Reply(success=False, code=message[:3], message=message)
        return Reply(success=response.startswith("2"), code=response[:3], message=response)

    def get_listing(self, path: str) -> list[RawEntry]:
        ftp = self._client
        try:
            listing = list(ftp.mlsd(path, facts=MLSD_FACTS))
        except ftplib.error_perm as e:
            if not str(e).startswith(UNSUPPORTED_CODES):
                raise ServerRejectedError(str(e)) from e
            logger.debug(f"MLSD not supported, falling back to LIST: {e}")
            return self._list_fallback(path)
        except ftplib.all_errors as e:
            raise RemoteIOError(f"Listing {path} failed: {e}") from e

        entries = []
        for name, facts in listing:
            entry_type = _mlsd_type(facts.get("type", ""))
            if entry_type is None:
                continue  # cdir / pdir
            entries.append(
                RawEntry(
                    name=name,
                    full_name=join_remote(path, name),
                    type=entry_type,
                    size=int(facts.get("size", 0) or 0),
                    modified=_parse_optional_timestamp(facts.get("modify")),
                    permissions=_parse_mode(facts.get("unix.mode")),
                )
            )
        return entries

    def _list_fallback(self, path: str) -> list[RawEntry]:
        lines: list[str] = []
        with _command_errors():
            self._client.retrlines(f"LIST {path}", lines.append)

        entries = []
        for line in lines:
            entry = parse_list_line(line, path)
            if entry is not None:
                entries.append(entry)
        return entries

    def server_info(self) -> dict[str, str]:
        ftp = self._client
        try:
            system_type = ftp.sendcmd("SYST")
        except ftplib.all_errors:
            system_type = "unknown"
        return {
            "System type": system_type,
            "Encryption mode": self._security_mode.value,
            "Character encoding": ftp.encoding,
        }


@contextmanager
def _command_errors() -> Iterator[None]:
    """Map ftplib errors for simple commands onto CommandError subclasses."""
    try:
        yield
    except ftplib.error_perm as e:
        message = str(e)
        if message.startswith(UNSUPPORTED_CODES):
            raise UnsupportedCommandError(message) from e
        raise ServerRejectedError(message) from e
    except (ftplib.error_temp, ftplib.error_reply, ftplib.error_proto) as e:
        raise ServerRejectedError(str(e)) from e
    except (OSError, EOFError) as e:
        raise RemoteIOError(f"Connection lost: {e}") from e


@lru_cache(maxsize=1)
def _root_store() -> Store:
    return Store(x509.load_pem_x509_certificates(Path(certifi.where()).read_bytes()))


def _peer_intermediates(sock: ssl.SSLSocket) -> list[bytes]:
    """DER certificates the server sent after its leaf.

    ssl exposes the peer chain from Python 3.13; earlier interpreters yield no
    intermediates, so servers relying on one are verified against roots only.
    """
    get_chain = getattr(sock, "get_unverified_chain", None)
    if get_chain is None:
        return []
    chain = get_chain() or []
    return [item for item in chain[1:] if isinstance(item, bytes)]


def has_policy_violation(der: bytes, host: str, intermediates: list[bytes] | None = None) -> bool:
    """Verify a peer certificate against public roots and the host name.

    Args:
        der: Leaf certificate (DER)
        host: Host name or IP address the client connected to
        intermediates: DER certificates the server sent after the leaf

    Returns:
        True if the certificate does not chain to a trusted root, is expired,
        or does not match host
    """
    try:
        cert = x509.load_der_x509_certificate(der)
        try:
            subject: x509.GeneralName = x509.IPAddress(ipaddress.ip_address(host))
        except ValueError:
            subject = x509.DNSName(host)
        verifier = PolicyBuilder().store(_root_store()).build_server_verifier(subject)
        chain = [x509.load_der_x509_certificate(item) for item in intermediates or []]
        verifier.verify(cert, chain)
    except (VerificationError, ValueError) as e:
        logger.debug(f"Certificate verification failed for {host}: {e}")
        return True
    return False


def join_remote(directory: str, name: str) -> str:
    """Join a listing directory and entry name, keeping relative directories relative.

    Examples:
        join_remote(".", "a.txt") -> "./a.txt"
        join_remote("", "a.txt") -> "./a.txt"
        join_remote("/srv", "a.txt") -> "/srv/a.txt"
    """
    if not directory or directory == ".":
        return f"./{name}"
    if not directory.startswith(("/", "./")):
        directory = f"./{directory}"
    return f"{directory.rstrip('/')}/{name}"


def parse_timestamp(value: str) -> datetime:
    """Parse an MDTM/MLSD timestamp (YYYYMMDDHHMMSS[.sss], UTC)."""
    value = value.strip()
    base, _, fraction = value.partition(".")
    parsed = datetime.strptime(base, "%Y%m%d%H%M%S").replace(tzinfo=UTC)
    if fraction:
        parsed = parsed.replace(microsecond=int(fraction.ljust(6, "0")[:6]))
    return parsed


def _parse_optional_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


def _parse_mode(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value, 8)
    except ValueError:
        return None


def _mlsd_type(value: str) -> ItemType | None:
    value = value.lower()
    if value in ("cdir", "pdir"):
        return None
    if value == "file":
        return ItemType.FILE
    if value == "dir":
        return ItemType.FOLDER
    return ItemType.OTHER


def parse_list_line(line: str, directory: str) -> RawEntry | None:
    """Parse one Unix-style LIST line. Returns None for unparseable or dot entries."""
    match = _UNIX_LIST_LINE.match(line)
    if not match:
        return None

    name = match.group("name")
    mode = match.group("mode")
    if mode[0] == "l" and " -> " in name:
        name = name.split(" -> ", 1)[0]
    if name in (".", ".."):
        return None

    entry_type = {"-": ItemType.FILE, "d": ItemType.FOLDER}.get(mode[0], ItemType.OTHER)
    return RawEntry(
        name=name,
        full_name=join_remote(directory, name),
        type=entry_type,
        size=int(match.group("size")),
        modified=None,
        permissions=_permission_bits(mode[1:]),
    )


def _permission_bits(symbolic: str) -> int:
    bits = 0
    for index, char in enumerate(symbolic):
        if char not in "-ST":
            bits |= 1 << (8 - index)
    return bits


def _close_quietly(ftp: ftplib.FTP) -> None:
    try:
        ftp.close()
    except OSError as e:
        logger.debug(f"Error closing control connection: {e}")
