"""hostkey-smoke: known_hosts host key verification for SSH clients, with a smoke harness."""

__version__ = "0.1.0"

from hostkey_smoke.errors import (
    ErrorContext,
    HostKeyNotVerified,
    HostKeyRevoked,
    HostKeyScanError,
    HostKeyVerificationError,
    HostMismatch,
    KnownHostsParseError,
    MissingCertificate,
    SSHError,
)
from hostkey_smoke.events import Event, EventEmitter, EventLog, EventType
from hostkey_smoke.known_hosts import (
    KnownHostsEntry,
    LineKind,
    LineOutcome,
    canonical_host,
    hash_host,
    join_host_port,
    normalize_host,
    parse_known_hosts,
    parse_line,
    split_host_port,
)
from hostkey_smoke.matcher import (
    FingerprintKind,
    HostKeyCertificate,
    HostMatcher,
    MatchOutcome,
    fingerprint,
)
from hostkey_smoke.scan import known_hosts_line, scan_host_key
from hostkey_smoke.verifier import (
    KnownHostsClient,
    KnownHostsVerifier,
    VerificationResult,
    VerificationStage,
)

__all__ = [
    # Known hosts
    "KnownHostsEntry",
    "LineKind",
    "LineOutcome",
    "parse_known_hosts",
    "parse_line",
    "canonical_host",
    "normalize_host",
    "split_host_port",
    "join_host_port",
    "hash_host",
    # Matching
    "FingerprintKind",
    "HostKeyCertificate",
    "HostMatcher",
    "MatchOutcome",
    "fingerprint",
    # Verification
    "KnownHostsVerifier",
    "KnownHostsClient",
    "VerificationResult",
    "VerificationStage",
    # Scanning
    "scan_host_key",
    "known_hosts_line",
    # Errors
    "SSHError",
    "ErrorContext",
    "KnownHostsParseError",
    "HostKeyScanError",
    "HostKeyVerificationError",
    "MissingCertificate",
    "HostMismatch",
    "HostKeyNotVerified",
    "HostKeyRevoked",
    # Events
    "Event",
    "EventLog",
    "EventEmitter",
    "EventType",
]
