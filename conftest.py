"""Pytest configuration and fixtures for ftpsync tests.

CRITICAL: Protects the user's real configuration and trusted-certificate list
from test modifications. Also provides the in-memory transport and the
generated server certificate shared by module and unit tests.
"""

import io
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ftpsync.config_manager import ConfigManager, SyncConfig
from ftpsync.modules.file_transfer.exceptions import (
    CertificateRejectedError,
    RemoteIOError,
    ServerRejectedError,
)
from ftpsync.modules.file_transfer.transport import (
    Capability,
    CertificateCheck,
    ItemType,
    RawEntry,
    Reply,
)

PROTECTED_FILES = ("config.toml", "trusted_certificates")


@pytest.fixture(scope="session", autouse=True)
def protect_production_config():
    """Protect ~/.ftpsync from being modified by tests.

    Backs up the real files before any tests run and restores them after.
    """
    config_dir = Path.home() / ".ftpsync"
    backups = []

    for name in PROTECTED_FILES:
        path = config_dir / name
        if path.exists():
            backup = config_dir / f".{name}.pytest-backup"
            shutil.copy2(path, backup)
            backups.append((path, backup))

    yield

    for path, backup in backups:
        if backup.exists():
            shutil.copy2(backup, path)
            backup.unlink()


@pytest.fixture(autouse=True)
def no_password_env(monkeypatch):
    """Tests never see a real FTPSYNC_PASSWORD."""
    monkeypatch.delenv("FTPSYNC_PASSWORD", raising=False)


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point ConfigManager at a temporary ~/.ftpsync.

    Example:
        def test_something(isolated_config):
            ConfigManager.save_config(config)  # Safe!
    """
    config_dir = tmp_path / ".ftpsync"
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", config_dir)
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", config_dir / "config.toml")
    return config_dir


# ============================================================================
# CERTIFICATES
# ============================================================================


def make_certificate(common_name: str = "ftp.example.test", days_valid: int = 30) -> bytes:
    """Generate a self-signed certificate and return its DER bytes."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days_valid))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(common_name)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


@pytest.fixture(scope="session")
def self_signed_der() -> bytes:
    """DER bytes of a self-signed server certificate."""
    return make_certificate()


@pytest.fixture(scope="session")
def other_self_signed_der() -> bytes:
    """A second, unrelated self-signed certificate."""
    return make_certificate("other.example.test")


@dataclass
class CertificateChain:
    """Root CA, intermediate CA and server certificate issued by the intermediate."""

    root: x509.Certificate
    intermediate: bytes
    leaf: bytes


def _key_usage(ca: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=not ca,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=ca,
        crl_sign=ca,
        encipher_only=False,
        decipher_only=False,
    )


def _issue(common_name, key, issuer=None, issuer_key=None, ca=False) -> x509.Certificate:
    """Sign a certificate for key; self-signed when no issuer is given."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer_key = issuer_key or key
    now = datetime.now(UTC)
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(issuer.subject if issuer is not None else name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
            critical=False,
        )
        .add_extension(_key_usage(ca), critical=True)
    )
    if ca:
        builder = builder.add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
    else:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(common_name)]), critical=False
        ).add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
    return builder.sign(issuer_key, hashes.SHA256())


@pytest.fixture(scope="session")
def certificate_chain() -> CertificateChain:
    """ftp.example.test certificate issued through an intermediate CA."""
    root_key = ec.generate_private_key(ec.SECP256R1())
    intermediate_key = ec.generate_private_key(ec.SECP256R1())
    leaf_key = ec.generate_private_key(ec.SECP256R1())

    root = _issue("ftpsync Test Root", root_key, ca=True)
    intermediate = _issue("ftpsync Test Intermediate", intermediate_key, root, root_key, ca=True)
    leaf = _issue("ftp.example.test", leaf_key, intermediate, intermediate_key)

    der = serialization.Encoding.DER
    return CertificateChain(
        root=root, intermediate=intermediate.public_bytes(der), leaf=leaf.public_bytes(der)
    )


# ============================================================================
# TRANSPORT
# ============================================================================


class _WriteBuffer(io.BytesIO):
    """Remote write stream that commits its content on close."""

    def __init__(self, store: dict[str, bytes], path: str, fail_on_write: bool = False):
        super().__init__()
        self._store = store
        self._path = path
        self._fail_on_write = fail_on_write

    def write(self, data) -> int:
        if self._fail_on_write:
            raise OSError("connection reset")
        return super().write(data)

    def close(self) -> None:
        if not self.closed:
            self._store[self._path] = self.getvalue()
        super().close()


class FakeTransport:
    """In-memory Transport.

    Serves files from a dict, records every connect attempt and raw command,
    and runs the certificate callback for secure modes like a real TLS
    handshake would.
    """

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.directories: set[str] = {"/"}
        self.listings: dict[str, list[RawEntry]] = {}
        self.modified: dict[str, datetime] = {}
        self.cwd = "/"
        self.home = "/"
        self.capabilities = Capability.NONE

        self.certificate: bytes | None = None
        self.policy_violation = False
        self.connect_error: Exception | None = None

        self.connect_attempts = []
        self.certificate_checks: list[CertificateCheck] = []
        self.commands: list[str] = []
        self.failing_commands: set[str] = set()
        self.fail_on_write = False
        self.opened_streams = []
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self, params, validate_certificate) -> None:
        self.connect_attempts.append(params)
        if self.connect_error is not None:
            raise self.connect_error

        if params.security_mode.is_secure and self.certificate is not None:
            check = CertificateCheck(
                certificate=self.certificate, policy_violation=self.policy_violation
            )
            self.certificate_checks.append(check)
            if validate_certificate is None:
                check.accept = not check.policy_violation
            else:
                validate_certificate(check)
            if not check.accept:
                raise CertificateRejectedError("certificate not accepted")

        self.cwd = self.home
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def get_working_directory(self) -> str:
        return self.cwd

    def set_working_directory(self, path: str) -> None:
        if path not in self.directories:
            raise ServerRejectedError(f"550 {path}: No such directory")
        self.cwd = path

    def open_read(self, path: str):
        if path not in self.files:
            raise RemoteIOError(f"550 {path}: No such file")
        stream = io.BytesIO(self.files[path])
        self.opened_streams.append(stream)
        return stream

    def open_write(self, path: str):
        stream = _WriteBuffer(self.files, path, fail_on_write=self.fail_on_write)
        self.opened_streams.append(stream)
        return stream

    def rename(self, old_path: str, new_path: str) -> None:
        if old_path not in self.files:
            raise ServerRejectedError(f"550 {old_path}: No such file")
        self.files[new_path] = self.files.pop(old_path)

    def create_directory(self, path: str) -> None:
        self.directories.add(path)

    def delete_file(self, path: str) -> None:
        if self.files.pop(path, None) is None:
            raise ServerRejectedError(f"550 {path}: No such file")

    def delete_directory(self, path: str) -> None:
        if path not in self.directories:
            raise ServerRejectedError(f"550 {path}: No such directory")
        self.directories.remove(path)

    def file_exists(self, path: str) -> bool:
        return path in self.files

    def directory_exists(self, path: str) -> bool:
        return path in self.directories

    def get_modified_time(self, path: str) -> datetime:
        if path not in self.modified:
            raise ServerRejectedError(f"550 {path}: No such file")
        return self.modified[path]

    def get_file_size(self, path: str) -> int:
        if path not in self.files:
            raise ServerRejectedError(f"550 {path}: No such file")
        return len(self.files[path])

    def execute(self, command: str) -> Reply:
        self.commands.append(command)
        verb = command.split(" ")[0]
        if command in self.failing_commands or verb in self.failing_commands:
            return Reply(success=False, code="500", message=f"500 '{verb}': command not understood")
        return Reply(success=True, code="200", message="200 OK")

    def get_listing(self, path: str) -> list[RawEntry]:
        return list(self.listings.get(path, []))

    def server_info(self) -> dict[str, str]:
        return {"System type": "UNIX Type: L8", "Encryption mode": "fake"}

    def add_entry(self, directory: str, name: str, full_name: str, size: int = 0, folder=False):
        """Add a listing entry for directory."""
        self.listings.setdefault(directory, []).append(
            RawEntry(
                name=name,
                full_name=full_name,
                type=ItemType.FOLDER if folder else ItemType.FILE,
                size=size,
            )
        )


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def transport_factory():
    """Build additional independent FakeTransport instances."""
    return FakeTransport


@pytest.fixture
def sync_config() -> SyncConfig:
    """Plain FTP configuration for ftp.example.test."""
    return SyncConfig(host="ftp.example.test", username="alice", remote_path="/")


@pytest.fixture
def secure_config() -> SyncConfig:
    """Explicit TLS configuration for ftp.example.test."""
    return SyncConfig(host="ftp.example.test", username="alice", security="explicit")

