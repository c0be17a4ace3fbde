"""
Host key verification callback.

Provides:
- VerificationStage: How far a verification attempt got
- VerificationResult: Accept, or reject with a reason and error
- KnownHostsVerifier: Verifier bound to one expected host and known_hosts blob
- KnownHostsClient: AsyncSSH client that defers host key checks to a verifier

The known_hosts blob is captured once (usually from a host key scan) and
never modified afterwards, so a single verifier can serve any number of
concurrent handshakes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import asyncssh

from hostkey_smoke.errors import (
    ErrorContext,
    HostKeyNotVerified,
    HostKeyRevoked,
    HostMismatch,
    KnownHostsParseError,
    MissingCertificate,
    SSHError,
)
from hostkey_smoke.events import EventEmitter, VerifyRecord
from hostkey_smoke.known_hosts import (
    DEFAULT_SSH_PORT,
    KnownHostsEntry,
    canonical_host,
    join_host_port,
    normalize_host,
    parse_known_hosts,
)
from hostkey_smoke.matcher import (
    FingerprintKind,
    HostKeyCertificate,
    HostMatcher,
    MatchOutcome,
    fingerprint,
)

logger = logging.getLogger(__name__)


class VerificationStage(str, Enum):
    """Stages of a single verification attempt, in order."""
    STARTED = "started"
    CERTIFICATE_CHECKED = "certificate_checked"
    HOST_CHECKED = "host_checked"
    ENTRIES_SCANNED = "entries_scanned"


@dataclass(frozen=True)
class VerificationResult:
    """
    Decision for one handshake attempt.

    Attributes:
        accepted: True only when a known_hosts entry vouched for the key
        reason: Short rejection reason (empty when accepted)
        error: Exception to surface to the transport when rejected
        stage: Last stage completed before the decision
        entries_checked: Number of entries consulted
    """
    accepted: bool
    reason: str = ""
    error: SSHError | None = None
    stage: VerificationStage = VerificationStage.STARTED
    entries_checked: int = 0

    def __post_init__(self) -> None:
        if self.accepted:
            assert self.error is None, "Accepted result cannot carry an error"
        else:
            assert self.error is not None, "Rejected result must carry an error"

    @classmethod
    def accept(cls, entries_checked: int) -> "VerificationResult":
        return cls(
            accepted=True,
            stage=VerificationStage.ENTRIES_SCANNED,
            entries_checked=entries_checked,
        )

    @classmethod
    def reject(
        cls,
        error: SSHError,
        stage: VerificationStage,
        entries_checked: int = 0,
    ) -> "VerificationResult":
        reason = getattr(error, "reason", None) or "known_hosts parse error"
        return cls(
            accepted=False,
            reason=reason,
            error=error,
            stage=stage,
            entries_checked=entries_checked,
        )


class KnownHostsVerifier:
    """
    Verifies presented host keys for one expected host.

    Constructed once per session with the host the caller intends to
    trust and the known_hosts text obtained for it. The blob is parsed
    once; a parse failure is kept and turned into a rejection on every
    verification.

    Usage:
        known_hosts = await scan_host_key("127.0.0.1:2222")
        verifier = KnownHostsVerifier("127.0.0.1:2222", known_hosts)

        result = verifier.verify(certificate, hostname="127.0.0.1:2222")
        if not result.accepted:
            raise result.error

        # or as a transport callback that raises on reject
        verifier(certificate, False, "127.0.0.1:2222")
    """

    def __init__(
        self,
        expected_host: str,
        known_hosts: str | bytes,
        matcher: HostMatcher | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        """
        Initialise the verifier.

        Args:
            expected_host: "host" or "host:port" the caller intends to trust
            known_hosts: known_hosts formatted text for that host
            matcher: Entry matcher (default: SHA256 fingerprints only)
            emitter: Optional event emitter for VERIFY events
        """
        assert isinstance(expected_host, str) and expected_host, \
            f"expected_host must be a non-empty string, got {expected_host!r}"

        self._expected_host = expected_host
        self._matcher = matcher or HostMatcher()
        self._emitter = emitter

        self._entries: tuple[KnownHostsEntry, ...] = ()
        self._parse_error: KnownHostsParseError | None = None
        try:
            self._entries = tuple(parse_known_hosts(known_hosts))
        except KnownHostsParseError as e:
            self._parse_error = e

    @property
    def expected_host(self) -> str:
        return self._expected_host

    @property
    def entries(self) -> tuple[KnownHostsEntry, ...]:
        return self._entries

    @property
    def matcher(self) -> HostMatcher:
        return self._matcher

    def verify(
        self,
        certificate: HostKeyCertificate | None,
        valid: bool = False,
        hostname: str | None = None,
    ) -> VerificationResult:
        """
        Decide whether to trust the presented host key.

        Args:
            certificate: Key presented by the server, or None
            valid: Transport's own opinion of the key; logged, never trusted
            hostname: Hostname the transport connected to (defaults to
                certificate.hostname)

        Returns:
            VerificationResult; never raises for a rejection
        """
        if hostname is None:
            hostname = certificate.hostname if certificate is not None else ""

        result = self._decide(certificate, hostname)

        presented_fp = (
            fingerprint(certificate.public_key, FingerprintKind.SHA256)
            if certificate is not None else None
        )
        if result.accepted:
            logger.info("Host key for %s accepted (%s)", self._expected_host, presented_fp)
        else:
            logger.warning(
                "Host key for %s rejected: %s (transport valid=%s)",
                self._expected_host, result.error, valid,
            )

        if self._emitter:
            self._emitter.record(
                VerifyRecord.from_result(result, self._expected_host, hostname, presented_fp)
            )

        return result

    def __call__(
        self,
        certificate: HostKeyCertificate | None,
        valid: bool,
        hostname: str,
    ) -> None:
        """
        Transport callback form of verify().

        Raises:
            HostKeyVerificationError: If the key is rejected
            KnownHostsParseError: If the captured known_hosts is malformed
        """
        result = self.verify(certificate, valid, hostname)
        if not result.accepted:
            assert result.error is not None
            raise result.error

    def _decide(
        self,
        certificate: HostKeyCertificate | None,
        hostname: str,
    ) -> VerificationResult:
        stage = VerificationStage.STARTED

        if certificate is None:
            return VerificationResult.reject(
                MissingCertificate(
                    f"no certificate returned for {hostname}",
                    ErrorContext(hostname=hostname),
                ),
                stage,
            )

        stage = VerificationStage.CERTIFICATE_CHECKED
        if self._parse_error is not None:
            return VerificationResult.reject(self._parse_error, stage)

        logger.debug("Known keys: %d", len(self._entries))

        expected = canonical_host(self._expected_host)
        presented = canonical_host(hostname)
        if expected != presented:
            return VerificationResult.reject(
                HostMismatch(
                    f"host mismatch: {expected!r} {presented!r}",
                    ErrorContext(host=expected, hostname=presented),
                ),
                stage,
            )

        stage = VerificationStage.HOST_CHECKED
        known_host = normalize_host(self._expected_host)
        presented_fp = fingerprint(certificate.public_key, FingerprintKind.SHA256)

        # Revocations win over any number of trusting lines
        for entry in self._entries:
            if not entry.is_revoked:
                continue
            if self._matcher.check(entry, known_host, certificate) is MatchOutcome.REVOKED:
                return VerificationResult.reject(
                    HostKeyRevoked(
                        f"hostkey for {known_host} is revoked "
                        f"(known_hosts line {entry.line_number})",
                        ErrorContext(
                            host=known_host,
                            hostname=hostname,
                            fingerprint=presented_fp,
                            line_number=entry.line_number,
                        ),
                    ),
                    VerificationStage.ENTRIES_SCANNED,
                    entries_checked=len(self._entries),
                )

        checked = 0
        for entry in self._entries:
            checked += 1
            if self._matcher.matches(entry, known_host, certificate):
                return VerificationResult.accept(entries_checked=checked)

        return VerificationResult.reject(
            HostKeyNotVerified(
                "hostkey cannot be verified",
                ErrorContext(host=known_host, hostname=hostname, fingerprint=presented_fp),
            ),
            VerificationStage.ENTRIES_SCANNED,
            entries_checked=checked,
        )


def presented_hostname(host: str, port: int) -> str:
    """Hostname as reported to the verifier: bare for port 22, host:port otherwise."""
    if port == DEFAULT_SSH_PORT:
        return host
    return join_host_port(host, port)


class KnownHostsClient(asyncssh.SSHClient):
    """
    AsyncSSH client that verifies server host keys with a KnownHostsVerifier.

    AsyncSSH only consults validate_host_public_key() for keys it does not
    already trust, so connect with an empty trusted key list:

    Usage:
        client = KnownHostsClient(verifier)
        conn = await asyncssh.connect(
            host, port,
            known_hosts=([], [], []),
            client_factory=lambda: client,
        )
    """

    def __init__(self, verifier: KnownHostsVerifier) -> None:
        super().__init__()
        self._verifier = verifier
        self._result: VerificationResult | None = None
        self._server_key: asyncssh.SSHKey | None = None

    @property
    def verification_result(self) -> VerificationResult | None:
        """Result of the most recent host key check."""
        return self._result

    @property
    def server_key(self) -> asyncssh.SSHKey | None:
        return self._server_key

    def validate_host_public_key(
        self,
        host: str,
        addr: tuple[str, int],
        port: int,
        key: asyncssh.SSHKey,
    ) -> bool:
        """
        Validate the server's host public key.

        Called by AsyncSSH during the handshake. Returns True to accept.
        """
        self._server_key = key
        hostname = presented_hostname(host or addr[0], port)
        certificate = HostKeyCertificate.from_key(key, hostname)

        self._result = self._verifier.verify(certificate, hostname=hostname)
        return self._result.accepted
