"""Trust-on-first-use certificate decisions.

Two pieces of state are involved:

- TrustedFingerprints: the persisted, process-wide set of fingerprints the
  user has accepted. Read at startup, appended to when the user trusts a new
  certificate. Shared by every session; writes are serialized.
- TrustStore: per-session view. Holds the certificates captured during the
  current run (pending first use) and decides accept/prompt/reject for a
  presented certificate.

Decision order for a presented certificate:
1. No client certificate attached yet AND the handshake reports a policy
   violation -> PENDING_FIRST_USE (capture it, reject this attempt, retry)
2. No external validator, or fingerprint already trusted -> AUTO_TRUSTED
3. Otherwise ask the validator -> USER_PROMPTED (accepted iff TRUSTED)
"""

import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ftpsync.certificate_validator import (
    CertificateFingerprint,
    CertificateValidator,
    CertificateVerdict,
)
from ftpsync.file_lock_manager import acquire_file_lock

logger = logging.getLogger(__name__)


class TrustDecision(Enum):
    """How a presented certificate was decided."""

    AUTO_TRUSTED = "auto_trusted"
    PENDING_FIRST_USE = "pending_first_use"
    USER_PROMPTED = "user_prompted"


@dataclass(frozen=True)
class TrustEvaluation:
    """Outcome of TrustStore.evaluate()."""

    decision: TrustDecision
    accepted: bool


class TrustedFingerprints:
    """Persisted set of trusted certificate fingerprints.

    Stored as a text file, one fingerprint per line. Lookups read an in-memory
    snapshot; add() appends under a thread lock plus a cross-process file lock
    so concurrent writers never lose updates.
    """

    def __init__(self, path: Path | None = None, fingerprints: set[str] | None = None):
        """
        Initialize trusted fingerprint list.

        Args:
            path: Backing file (None keeps the list in memory only)
            fingerprints: Initial fingerprints when no file is used
        """
        self.path = path
        self._write_lock = threading.Lock()
        self._fingerprints: frozenset[str] = frozenset(
            _normalize(f) for f in (fingerprints or set())
        )
        if path is not None:
            self.reload()

    def reload(self) -> None:
        """Re-read the backing file."""
        if self.path is None or not self.path.exists():
            return
        with open(self.path) as f:
            loaded = {_normalize(line) for line in f if line.strip()}
        self._fingerprints = frozenset(loaded)
        logger.debug(f"Loaded {len(loaded)} trusted certificate(s) from {self.path}")

    def __contains__(self, fingerprint: object) -> bool:
        return isinstance(fingerprint, str) and _normalize(fingerprint) in self._fingerprints

    def __len__(self) -> int:
        return len(self._fingerprints)

    def __iter__(self):
        return iter(sorted(self._fingerprints))

    def add(self, fingerprint: str) -> bool:
        """Trust a fingerprint permanently.

        Returns:
            True if added, False if it was already trusted
        """
        fingerprint = _normalize(fingerprint)
        with self._write_lock:
            if self.path is None:
                if fingerprint in self._fingerprints:
                    return False
                self._fingerprints = self._fingerprints | {fingerprint}
                return True

            with acquire_file_lock(self.path, operation="trusted certificate update"):
                # Pick up entries appended by other processes
                self.reload()
                if fingerprint in self._fingerprints:
                    return False
                with open(self.path, "a") as f:
                    f.write(fingerprint + "\n")
                os.chmod(self.path, 0o600)
                self._fingerprints = self._fingerprints | {fingerprint}

        logger.info(f"Trusted certificate: {fingerprint}")
        return True

    def remove(self, fingerprint: str) -> bool:
        """Stop trusting a fingerprint.

        Returns:
            True if removed, False if it was not trusted
        """
        fingerprint = _normalize(fingerprint)
        with self._write_lock:
            if self.path is None:
                if fingerprint not in self._fingerprints:
                    return False
                self._fingerprints = self._fingerprints - {fingerprint}
                return True

            with acquire_file_lock(self.path, operation="trusted certificate update"):
                self.reload()
                if fingerprint not in self._fingerprints:
                    return False
                remaining = self._fingerprints - {fingerprint}
                _atomic_write_lines(self.path, sorted(remaining))
                self._fingerprints = remaining

        logger.info(f"Removed trusted certificate: {fingerprint}")
        return True


class TrustStore:
    """Per-session certificate trust state."""

    def __init__(self, trusted: TrustedFingerprints):
        self.trusted = trusted
        self.pending_certificates: list[bytes] = []

    def capture(self, certificate: bytes) -> None:
        """Remember a certificate for this session's retry attempt."""
        if certificate not in self.pending_certificates:
            self.pending_certificates.append(certificate)

    def evaluate(
        self,
        fingerprint: CertificateFingerprint,
        has_client_certificate_attached: bool,
        policy_violation: bool,
        validator: CertificateValidator | None = None,
    ) -> TrustEvaluation:
        """Decide whether to accept a presented certificate.

        Never modifies the persisted trust list.

        Args:
            fingerprint: Presented certificate
            has_client_certificate_attached: Whether this attempt already carries
                a certificate captured earlier in the session
            policy_violation: Whether the handshake reported a verification failure
            validator: Optional interactive validator

        Returns:
            TrustEvaluation with the decision path and accept flag
        """
        if not has_client_certificate_attached and policy_violation:
            logger.debug(f"Certificate pending first use: {fingerprint.fingerprint}")
            return TrustEvaluation(TrustDecision.PENDING_FIRST_USE, accepted=False)

        if validator is None or fingerprint.fingerprint in self.trusted:
            logger.info(f"Trusted: {fingerprint.fingerprint}")
            return TrustEvaluation(TrustDecision.AUTO_TRUSTED, accepted=True)

        verdict = validator.evaluate(fingerprint)
        accepted = verdict is CertificateVerdict.TRUSTED
        logger.info(
            f"Certificate {fingerprint.fingerprint} {'accepted' if accepted else 'rejected'} by validator"
        )
        return TrustEvaluation(TrustDecision.USER_PROMPTED, accepted=accepted)


def _normalize(fingerprint: str) -> str:
    return fingerprint.strip().replace(":", "").upper()


def _atomic_write_lines(path: Path, lines: list[str]) -> None:
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w") as f:
            f.writelines(line + "\n" for line in lines)
        os.chmod(temp_path, 0o600)
        temp_path.replace(path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


__all__ = ["TrustDecision", "TrustEvaluation", "TrustStore", "TrustedFingerprints"]
