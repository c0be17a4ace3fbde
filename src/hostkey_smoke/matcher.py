"""
Matching presented host keys against known_hosts entries.

Provides:
- FingerprintKind: Digest schemes a fingerprint can be computed with
- fingerprint(): OpenSSH-style fingerprint strings
- HostKeyCertificate: Host key and hostname presented at handshake time
- MatchOutcome: Why an entry did or did not vouch for a key
- HostMatcher: Per-entry host identity and fingerprint check
"""
from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum

import asyncssh

from hostkey_smoke.known_hosts import KnownHostsEntry, matches_hashed_host

logger = logging.getLogger(__name__)


class FingerprintKind(str, Enum):
    """Digest algorithms a host key fingerprint may use."""
    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"


# Strongest first
FINGERPRINT_PREFERENCE: tuple[FingerprintKind, ...] = (
    FingerprintKind.SHA256,
    FingerprintKind.SHA1,
    FingerprintKind.MD5,
)

DEFAULT_SUPPORTED_KINDS: frozenset[FingerprintKind] = frozenset({FingerprintKind.SHA256})


def fingerprint(key: asyncssh.SSHKey, kind: FingerprintKind = FingerprintKind.SHA256) -> str:
    """
    Get the fingerprint of a public key.

    Args:
        key: AsyncSSH key object
        kind: Digest to use

    Returns:
        "SHA256:<base64>", "SHA1:<base64>" or "MD5:aa:bb:..."
    """
    public_data = key.public_data
    if kind == FingerprintKind.SHA256:
        digest = hashlib.sha256(public_data).digest()
        return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")
    elif kind == FingerprintKind.SHA1:
        digest = hashlib.sha1(public_data).digest()
        return "SHA1:" + base64.b64encode(digest).decode("ascii").rstrip("=")
    elif kind == FingerprintKind.MD5:
        digest = hashlib.md5(public_data).digest()
        return "MD5:" + ":".join(f"{b:02x}" for b in digest)
    else:
        raise ValueError(f"Unknown fingerprint kind: {kind}")


@dataclass(frozen=True)
class HostKeyCertificate:
    """
    Host key presented by the server during the handshake.

    Attributes:
        public_key: The server's public host key
        hostname: Hostname the transport believes it connected to
        kinds: Fingerprint kinds available for this key
    """
    public_key: asyncssh.SSHKey
    hostname: str = ""
    kinds: frozenset[FingerprintKind] = field(
        default_factory=lambda: frozenset(FingerprintKind)
    )

    @classmethod
    def from_key(cls, key: asyncssh.SSHKey, hostname: str = "") -> "HostKeyCertificate":
        """Certificate for a decoded key; every kind can be derived from the blob."""
        return cls(public_key=key, hostname=hostname, kinds=frozenset(FingerprintKind))

    @property
    def algorithm(self) -> str:
        return self.public_key.get_algorithm()


class MatchOutcome(str, Enum):
    """Result of checking one known_hosts entry."""
    MATCHED = "matched"
    HOST_NOT_FOUND = "host_not_found"
    UNSUPPORTED_KIND = "unsupported_kind"
    FINGERPRINT_MISMATCH = "fingerprint_mismatch"
    REVOKED = "revoked"
    CERT_AUTHORITY = "cert_authority"


class HostMatcher:
    """
    Decides whether a single known_hosts entry vouches for a presented key.

    Identity is proven only by comparing fingerprints computed with a
    supported digest, never by comparing raw key bytes. Entries are
    checked independently; callers accept if any entry matches.

    Usage:
        matcher = HostMatcher()
        if matcher.matches(entry, "[example.com]:2222", certificate):
            ...
    """

    def __init__(
        self,
        supported_kinds: frozenset[FingerprintKind] = DEFAULT_SUPPORTED_KINDS,
    ) -> None:
        assert supported_kinds, "HostMatcher needs at least one supported kind"
        self._supported_kinds = frozenset(supported_kinds)

    @property
    def supported_kinds(self) -> frozenset[FingerprintKind]:
        return self._supported_kinds

    def select_kind(self, certificate: HostKeyCertificate) -> FingerprintKind | None:
        """Strongest kind both the matcher and the certificate support."""
        for kind in FINGERPRINT_PREFERENCE:
            if kind in self._supported_kinds and kind in certificate.kinds:
                return kind
        return None

    def check(
        self,
        entry: KnownHostsEntry,
        host: str,
        certificate: HostKeyCertificate,
    ) -> MatchOutcome:
        """
        Check one entry against a normalised host and presented key.

        Args:
            entry: Parsed known_hosts entry
            host: Host in known_hosts form (see normalize_host)
            certificate: Key presented by the server

        Returns:
            MATCHED if the entry authorises the key for host; REVOKED if the
            entry revokes exactly this key; otherwise the reason it did not
            match
        """
        if not contains_host(entry.hosts, host):
            logger.debug("line %d: host %s not found", entry.line_number, host)
            return MatchOutcome.HOST_NOT_FOUND

        kind = self.select_kind(certificate)
        if kind is None:
            logger.debug(
                "line %d: fingerprint kinds %s not supported",
                entry.line_number,
                sorted(k.value for k in certificate.kinds),
            )
            return MatchOutcome.UNSUPPORTED_KIND

        known = fingerprint(entry.key, kind)
        presented = fingerprint(certificate.public_key, kind)
        logger.debug(
            "line %d: known and presented fingerprints: %s %s",
            entry.line_number, known, presented,
        )
        if known != presented:
            return MatchOutcome.FINGERPRINT_MISMATCH

        if entry.is_revoked:
            return MatchOutcome.REVOKED
        if entry.is_cert_authority:
            # A CA key signs host certificates; it never is the host key
            return MatchOutcome.CERT_AUTHORITY
        return MatchOutcome.MATCHED

    def matches(
        self,
        entry: KnownHostsEntry,
        host: str,
        certificate: HostKeyCertificate,
    ) -> bool:
        """True iff entry authorises the presented key for host."""
        return self.check(entry, host, certificate) is MatchOutcome.MATCHED


def contains_host(patterns: tuple[str, ...], host: str) -> bool:
    """Literal patterns must equal host verbatim; hashed patterns must hash to it."""
    for pattern in patterns:
        if pattern == host or matches_hashed_host(pattern, host):
            return True
    return False
