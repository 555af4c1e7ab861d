"""Transfer session: connection lifecycle, transfers, commands and listings.

TransferSession owns one logical connection to a remote host. It composes:

- a Transport (the protocol backend)
- a TrustStore (certificate decisions during the TLS handshake)
- the rate limiter (per-chunk throttling)
- PathNormalizer (canonical listing paths)

Connection state machine:

    DISCONNECTED -> CONNECTING -> AWAITING_CERTIFICATE_DECISION
                 -> CONNECTING (retry, certificate attached) -> CONNECTED | FAILED

The first handshake with a server whose certificate fails verification
captures the certificate and is rejected on purpose; connect() then retries
exactly once with the captured certificate attached. A rejection on the retry
is final.
"""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from ftpsync.certificate_validator import CertificateFingerprint, CertificateValidator
from ftpsync.trust_store import TrustDecision, TrustedFingerprints, TrustStore

from .exceptions import (
    CertificateRejectedError,
    ConnectError,
    FileTransferError,
    NotConnectedError,
    TransferError,
)
from .file_transfer import (
    ProgressCallback,
    TransferDirection,
    TransferTask,
    copy_stream,
    copy_stream_async,
    open_local,
    remote_io,
)
from .path_normalizer import PathNormalizer
from .transport import (
    Capability,
    CertificateCheck,
    ConnectionParameters,
    ListingEntry,
    RawEntry,
    Reply,
    Transport,
)

if TYPE_CHECKING:
    from ftpsync.config_manager import SyncConfig

logger = logging.getLogger(__name__)

# Automatic reconnects allowed per connect() call after a first-use capture
MAX_CERTIFICATE_RETRIES = 1

# Format for MFF Modify / MFMT / SITE UTIME timestamps (UTC)
MODIFIED_TIME_FORMAT = "%Y%m%d%H%M%S"

# How often async transfers poll for the channel while keep-alive holds it
_CHANNEL_POLL_INTERVAL = 0.05


class SessionState(Enum):
    """Connection state of a TransferSession."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_CERTIFICATE_DECISION = "awaiting_certificate_decision"
    CONNECTED = "connected"
    FAILED = "failed"


class SessionStatus(Enum):
    """Status announcements for notification collaborators."""

    CONNECTING = "connecting"
    RECONNECTING = "reconnecting"
    READY = "ready"
    DISCONNECTED = "disconnected"


StatusCallback = Callable[[SessionStatus], None]


class TransferSession:
    """One logical connection to a remote host.

    Example:
        >>> session = TransferSession(config, FtpTransport(), password="s3cret")
        >>> session.connect()
        >>> session.download_file("/docs/a.txt", Path("a.txt"))
        >>> entries = session.get_file_listing(".")
        >>> session.disconnect()
    """

    def __init__(
        self,
        config: "SyncConfig",
        transport: Transport,
        password: str = "",
        trusted: TrustedFingerprints | None = None,
        certificate_validator: CertificateValidator | None = None,
        progress_callback: ProgressCallback | None = None,
        status_callback: StatusCallback | None = None,
    ):
        """
        Initialize transfer session.

        Args:
            config: Account, path, limit and keep-alive settings
            transport: Protocol backend
            password: Login password (kept in memory only)
            trusted: Process-wide persisted trust list (default: empty, in-memory)
            certificate_validator: Interactive trust prompt (None: auto-accept)
            progress_callback: Receives a TransferProgress after every chunk
            status_callback: Receives connection status announcements
        """
        self.config = config
        self.transport = transport
        self.certificate_validator = certificate_validator
        self.progress_callback = progress_callback
        self.status_callback = status_callback
        self.trust_store = TrustStore(trusted if trusted is not None else TrustedFingerprints())
        self.state = SessionState.DISCONNECTED
        self.home_path: str | None = None

        self._password = password
        self._channel_lock = threading.Lock()
        self._keep_alive_stop = threading.Event()
        self._keep_alive_thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.state is SessionState.CONNECTED and self.transport.is_connected

    @property
    def working_directory(self) -> str:
        """Server-side working directory."""
        with self._channel():
            return self.transport.get_working_directory()

    @working_directory.setter
    def working_directory(self, path: str) -> None:
        with self._channel():
            self._change_directory(path)

    def _change_directory(self, path: str) -> None:
        self.transport.set_working_directory(path)
        logger.info(f"cd {path}")

    def connect(self, reconnecting: bool = False) -> None:
        """Connect, negotiate certificate trust, log in and enter the remote root.

        Args:
            reconnecting: Announce as a reconnect instead of a first connect

        Raises:
            NetworkUnreachableError: Server cannot be reached
            AuthenticationFailedError: Login refused
            CertificateRejectedError: Certificate rejected (after at most one retry)
            CommandError: The configured remote_path cannot be entered
        """
        with self._channel_lock:
            self._connect(reconnecting)

    def _connect(self, reconnecting: bool) -> None:
        """connect() body; the caller holds the channel lock."""
        self._notify(SessionStatus.RECONNECTING if reconnecting else SessionStatus.CONNECTING)
        logger.debug(f"{'Reconnecting' if reconnecting else 'Connecting'} client...")

        retries = 0
        while True:
            self.state = SessionState.CONNECTING
            attached = list(self.trust_store.pending_certificates)
            try:
                self.transport.connect(
                    self._build_parameters(attached),
                    self._certificate_callback(bool(attached)),
                )
                break
            except CertificateRejectedError:
                captured = bool(self.trust_store.pending_certificates)
                if not attached and captured and retries < MAX_CERTIFICATE_RETRIES:
                    # First-use capture: retry with the certificate attached
                    retries += 1
                    self.state = SessionState.AWAITING_CERTIFICATE_DECISION
                    logger.debug("Server certificate captured, reconnecting with it attached")
                    continue
                self.state = SessionState.FAILED
                raise
            except ConnectError:
                self.state = SessionState.FAILED
                raise

        try:
            self.home_path = self.transport.get_working_directory()

            remote_path = (self.config.remote_path or "").strip()
            if remote_path and remote_path != "/":
                self._change_directory(remote_path)
        except FileTransferError:
            # Logged in but unusable: do not leave the control connection open
            self.state = SessionState.FAILED
            self._drop_connection()
            raise

        self.state = SessionState.CONNECTED
        logger.debug("Client connected successfully")
        self._notify(SessionStatus.READY)

        if logger.isEnabledFor(logging.DEBUG):
            self._log_server_info()

        self._arm_keep_alive()

    def disconnect(self) -> None:
        """Stop keep-alive and close the connection.

        Does not wait for the channel, so it also aborts a running transfer.
        """
        self._stop_keep_alive()
        try:
            self.transport.disconnect()
        finally:
            self.state = SessionState.DISCONNECTED
            self._notify(SessionStatus.DISCONNECTED)

    def reconnect(self) -> None:
        """Drop the current connection (ignoring errors) and connect again."""
        with self._channel_lock:
            self._reconnect()

    def _reconnect(self) -> None:
        self._drop_connection()
        self.state = SessionState.DISCONNECTED
        self._connect(reconnecting=True)

    def _drop_connection(self) -> None:
        try:
            self.transport.disconnect()
        except Exception as e:
            logger.debug(f"Ignoring error while dropping connection: {e}")

    def send_keep_alive(self) -> bool:
        """Send NOOP unless another operation is using the channel.

        Failures trigger a reconnect instead of propagating.

        Returns:
            True if a NOOP was sent successfully
        """
        if not self._channel_lock.acquire(blocking=False):
            logger.debug("Channel busy, skipping keep-alive")
            return False

        try:
            if self.state is not SessionState.CONNECTED:
                return False
            reply = self.transport.execute("NOOP")
            if not reply.success:
                raise ConnectError(f"NOOP failed: {reply.message}")
            return True
        except Exception as e:
            logger.error(f"Keep-alive failed: {e}")
            try:
                self._reconnect()
            except FileTransferError as reconnect_error:
                logger.error(f"Reconnect after keep-alive failure failed: {reconnect_error}")
            return False
        finally:
            self._channel_lock.release()

    def log_server_info(self) -> None:
        """Log what the transport knows about the server."""
        with self._channel():
            self._log_server_info()

    def _log_server_info(self) -> None:
        logger.debug("//////////////////// Server Info ///////////////////")
        for key, value in self.transport.server_info().items():
            logger.debug(f"{key}: {value}")
        logger.debug("////////////////////////////////////////////////////")

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def upload(self, task: TransferTask) -> int:
        """Upload task.local_path to task.remote_path.

        Returns:
            Bytes transferred

        Raises:
            LocalIOError, RemoteIOError, TransferCancelledError
        """
        return self._transfer(task, TransferDirection.UPLOAD)

    def download(self, task: TransferTask) -> int:
        """Download task.remote_path to task.local_path.

        Returns:
            Bytes transferred

        Raises:
            LocalIOError, RemoteIOError, TransferCancelledError
        """
        return self._transfer(task, TransferDirection.DOWNLOAD)

    def upload_file(self, local_path: Path | str, remote_path: str) -> int:
        """Upload a single file, reporting progress like every other transfer."""
        return self.upload(self.new_task(local_path, remote_path, TransferDirection.UPLOAD))

    def download_file(self, remote_path: str, local_path: Path | str) -> int:
        """Download a single file, reporting progress like every other transfer."""
        return self.download(self.new_task(local_path, remote_path, TransferDirection.DOWNLOAD))

    async def upload_async(self, task: TransferTask) -> int:
        """Suspending variant of upload()."""
        return await self._transfer_async(task, TransferDirection.UPLOAD)

    async def download_async(self, task: TransferTask) -> int:
        """Suspending variant of download()."""
        return await self._transfer_async(task, TransferDirection.DOWNLOAD)

    def new_task(
        self, local_path: Path | str, remote_path: str, direction: TransferDirection
    ) -> TransferTask:
        """Create a TransferTask owned by this session."""
        return TransferTask(
            local_path=Path(local_path),
            remote_path=remote_path,
            direction=direction,
            session=self,
        )

    def _limit_for(self, direction: TransferDirection) -> int:
        if direction is TransferDirection.UPLOAD:
            return self.config.upload_limit
        return self.config.download_limit

    def _prepare(self, task: TransferTask, direction: TransferDirection) -> None:
        self._require_connection()
        task.direction = direction
        task.session = self
        logger.debug(f"{direction.value}: {task.local_path} <-> {task.remote_path}")

    def _open_remote(self, task: TransferTask):
        with remote_io(task.remote_path):
            if task.direction is TransferDirection.UPLOAD:
                return self.transport.open_write(task.remote_path)
            return self.transport.open_read(task.remote_path)

    @contextmanager
    def _remote_stream(self, task: TransferTask) -> Iterator[BinaryIO]:
        """Open the task's remote stream; close errors surface only on success."""
        remote = self._open_remote(task)
        try:
            yield remote
        except BaseException:
            _close_after_failure(task, remote)
            raise
        with remote_io(task.remote_path):
            remote.close()

    @asynccontextmanager
    async def _remote_stream_async(self, task: TransferTask) -> AsyncIterator[BinaryIO]:
        remote = await asyncio.to_thread(self._open_remote, task)
        try:
            yield remote
        except BaseException:
            await asyncio.to_thread(_close_after_failure, task, remote)
            raise
        with remote_io(task.remote_path):
            await asyncio.to_thread(remote.close)

    def _transfer(self, task: TransferTask, direction: TransferDirection) -> int:
        self._prepare(task, direction)
        with self._channel_lock:
            with open_local(task) as local, self._remote_stream(task) as remote:
                return copy_stream(
                    task,
                    local,
                    remote,
                    limit_kbps=self._limit_for(direction),
                    on_progress=self.progress_callback,
                )

    async def _transfer_async(self, task: TransferTask, direction: TransferDirection) -> int:
        self._prepare(task, direction)
        async with self._async_channel():
            with open_local(task) as local:
                async with self._remote_stream_async(task) as remote:
                    return await copy_stream_async(
                        task,
                        local,
                        remote,
                        limit_kbps=self._limit_for(direction),
                        on_progress=self.progress_callback,
                    )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def rename(self, old_path: str, new_path: str) -> None:
        with self._channel():
            self.transport.rename(old_path, new_path)

    def create_directory(self, path: str) -> None:
        with self._channel():
            self.transport.create_directory(path)

    def remove(self, path: str, is_folder: bool = False) -> None:
        """Delete a remote file, or an (empty) directory when is_folder is set."""
        with self._channel():
            if is_folder:
                self.transport.delete_directory(path)
            else:
                self.transport.delete_file(path)

    def size_of(self, path: str) -> int:
        with self._channel():
            return self.transport.get_file_size(path)

    def exists(self, path: str) -> bool:
        """True if path is a remote file or directory."""
        with self._channel():
            return self.transport.file_exists(path) or self.transport.directory_exists(path)

    def get_modified_time(self, path: str) -> datetime:
        with self._channel():
            return self.transport.get_modified_time(path)

    def execute_command(self, command: str) -> Reply:
        """Send a raw command and return the server's reply."""
        with self._channel():
            return self.transport.execute(command)

    def set_file_permissions(self, path: str, mode: int) -> bool:
        """Change remote permissions, trying MFF then SITE CHMOD.

        Args:
            path: Remote path
            mode: Permission bits written as the server expects them (e.g. 644)

        Returns:
            True if any command form succeeded. Failures are logged, not raised.
        """
        commands = []
        if self._has_capability(Capability.MFF):
            commands.append(f"MFF UNIX.mode={mode}; {path}")
        commands.append(f"SITE CHMOD {mode} {path}")

        return self._execute_with_fallbacks(commands, f"chmod failed, file: {path}")

    def set_modified_time(self, path: str, when: datetime) -> bool:
        """Change remote modification time, trying MFF, MFMT then SITE UTIME.

        Args:
            path: Remote path
            when: New modification time (naive values are taken as UTC)

        Returns:
            True if any command form succeeded. Failures are logged, not raised.
        """
        if when.tzinfo is None:
            when = when.replace(tzinfo=UTC)
        formatted = when.astimezone(UTC).strftime(MODIFIED_TIME_FORMAT)

        commands = []
        if self._has_capability(Capability.MFF):
            commands.append(f"MFF Modify={formatted}; {path}")
        if self._has_capability(Capability.MFMT):
            commands.append(f"MFMT {formatted} {path}")
        commands.append(f"SITE UTIME {formatted} {path}")

        return self._execute_with_fallbacks(commands, f"SetModTime failed, file: {path}")

    def _has_capability(self, capability: Capability) -> bool:
        return capability in self.transport.capabilities

    def _execute_with_fallbacks(self, commands: list[str], failure_message: str) -> bool:
        reply: Reply | None = None

        with self._channel():
            for index, command in enumerate(commands):
                reply = self.transport.execute(command)
                if reply.success:
                    return True
                if index < len(commands) - 1:
                    logger.warning(
                        f"'{command.split(' ')[0]}' failed ({reply.message}), trying next form"
                    )

        logger.error(f"{failure_message} msg: {reply.message if reply else 'no command sent'}")
        return False

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def get_file_listing(self, path: str) -> list[ListingEntry]:
        """List a remote directory with paths in canonical absolute form."""
        with self._channel():
            raw_entries = self.transport.get_listing(path)
            working_directory = self._listing_working_directory(raw_entries)
        return self._normalize_listing(raw_entries, working_directory)

    async def get_file_listing_async(self, path: str) -> list[ListingEntry]:
        """Suspending variant of get_file_listing()."""
        self._require_connection()
        async with self._async_channel():
            raw_entries = await asyncio.to_thread(self.transport.get_listing, path)
            working_directory = await asyncio.to_thread(
                self._listing_working_directory, raw_entries
            )
        return self._normalize_listing(raw_entries, working_directory)

    def _listing_working_directory(self, raw_entries: list[RawEntry]) -> str:
        """Working directory for resolving ./ entries, fetched only when needed."""
        if any(raw.full_name.startswith("./") for raw in raw_entries):
            return self.transport.get_working_directory()
        return "/"

    def _normalize_listing(
        self, raw_entries: list[RawEntry], working_directory: str
    ) -> list[ListingEntry]:
        return [
            PathNormalizer.to_listing_entry(raw, working_directory, self.config.remote_path)
            for raw in raw_entries
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_parameters(self, attached: list[bytes]) -> ConnectionParameters:
        return ConnectionParameters(
            host=self.config.host,
            port=self.config.effective_port,
            username=self.config.username,
            password=self._password,
            security_mode=self.config.security_mode,
            client_certificates=attached,
            timeout=self.config.timeout,
        )

    def _certificate_callback(self, has_client_certificate: bool):
        """Build the handshake callback for one connection attempt."""

        def validate(check: CertificateCheck) -> None:
            fingerprint = CertificateFingerprint.from_der(check.certificate)
            evaluation = self.trust_store.evaluate(
                fingerprint,
                has_client_certificate_attached=has_client_certificate,
                policy_violation=check.policy_violation,
                validator=self.certificate_validator,
            )
            if evaluation.decision is TrustDecision.PENDING_FIRST_USE:
                self.trust_store.capture(check.certificate)
            check.accept = evaluation.accepted

        return validate

    def _require_connection(self) -> None:
        if self.state is not SessionState.CONNECTED:
            raise NotConnectedError(f"Session to {self.config.host} is not connected")

    def _notify(self, status: SessionStatus) -> None:
        if self.status_callback is not None:
            self.status_callback(status)

    @asynccontextmanager
    async def _async_channel(self) -> AsyncIterator[None]:
        """Hold the channel lock without blocking the event loop."""
        while not self._channel_lock.acquire(blocking=False):
            await asyncio.sleep(_CHANNEL_POLL_INTERVAL)
        try:
            yield
        finally:
            self._channel_lock.release()

    @contextmanager
    def _channel(self) -> Iterator[None]:
        """Require a connection and hold the channel for one operation."""
        self._require_connection()
        with self._channel_lock:
            yield

    def _arm_keep_alive(self) -> None:
        interval = self.config.keep_alive_interval
        if interval <= 0:
            return
        if self._keep_alive_thread is not None and self._keep_alive_thread.is_alive():
            return

        # Each thread gets its own stop event; a thread outliving its stop() stays stopped
        self._keep_alive_stop = threading.Event()
        self._keep_alive_thread = threading.Thread(
            target=self._keep_alive_loop,
            args=(interval, self._keep_alive_stop),
            name=f"ftpsync-keepalive-{self.config.host}",
            daemon=True,
        )
        self._keep_alive_thread.start()
        logger.debug(f"Keep-alive armed every {interval}s")

    def _keep_alive_loop(self, interval: float, stop: threading.Event) -> None:
        while not stop.wait(interval):
            if self.state is SessionState.CONNECTED:
                self.send_keep_alive()

    def _stop_keep_alive(self) -> None:
        self._keep_alive_stop.set()
        thread = self._keep_alive_thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._keep_alive_thread = None


def _close_after_failure(task: TransferTask, remote: BinaryIO) -> None:
    """Close a remote stream without replacing the error that ended the transfer."""
    try:
        remote.close()
    except (TransferError, OSError, EOFError) as e:
        logger.debug(f"Ignoring close error for aborted transfer of {task.remote_path}: {e}")
