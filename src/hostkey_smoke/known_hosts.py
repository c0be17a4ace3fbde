"""
OpenSSH known_hosts parsing and host identity canonicalisation.

Known_hosts format, one entry per line:
    hostname[,hostname2] key_type key_data [comment]
    [hostname]:port key_type key_data [comment]
    |1|salt|hash key_type key_data [comment]
    @revoked hostname key_type key_data [comment]
    @cert-authority *.example.com key_type key_data [comment]

Blank lines and '#' comments are skipped. Every other line must parse,
otherwise the whole blob is rejected.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from enum import Enum

import asyncssh

from hostkey_smoke.errors import KnownHostsParseError

MARKER_REVOKED = "@revoked"
MARKER_CERT_AUTHORITY = "@cert-authority"
MARKERS = frozenset({MARKER_REVOKED, MARKER_CERT_AUTHORITY})

HASHED_HOST_PREFIX = "|1|"
DEFAULT_SSH_PORT = 22


@dataclass(frozen=True)
class KnownHostsEntry:
    """
    One parsed known_hosts line.

    Attributes:
        hosts: Host patterns exactly as written (literal, [host]:port or hashed)
        key: Public key the hosts are bound to
        marker: "@revoked", "@cert-authority" or None
        comment: Trailing comment after the key, if any
        line_number: 1-based line the entry came from
    """
    hosts: tuple[str, ...]
    key: asyncssh.SSHKey
    marker: str | None = None
    comment: str = ""
    line_number: int = 1

    def __post_init__(self) -> None:
        assert self.hosts, "KnownHostsEntry must have at least one host"
        assert self.marker is None or self.marker in MARKERS, \
            f"Unknown marker {self.marker!r}"

    @property
    def is_revoked(self) -> bool:
        return self.marker == MARKER_REVOKED

    @property
    def is_cert_authority(self) -> bool:
        return self.marker == MARKER_CERT_AUTHORITY

    @property
    def is_hashed(self) -> bool:
        return any(h.startswith(HASHED_HOST_PREFIX) for h in self.hosts)


class LineKind(str, Enum):
    """What a single known_hosts line turned out to be."""
    SKIP = "skip"
    ENTRY = "entry"
    ERROR = "error"


@dataclass(frozen=True)
class LineOutcome:
    """Tagged result of parsing one line."""
    kind: LineKind
    entry: KnownHostsEntry | None = None
    error: KnownHostsParseError | None = None

    @classmethod
    def skip(cls) -> "LineOutcome":
        return cls(kind=LineKind.SKIP)

    @classmethod
    def of_entry(cls, entry: KnownHostsEntry) -> "LineOutcome":
        return cls(kind=LineKind.ENTRY, entry=entry)

    @classmethod
    def of_error(cls, error: KnownHostsParseError) -> "LineOutcome":
        return cls(kind=LineKind.ERROR, error=error)


def parse_line(line: str, line_number: int = 1) -> LineOutcome:
    """
    Parse a single known_hosts line.

    Args:
        line: Raw line text (surrounding whitespace is ignored)
        line_number: 1-based position, used in error messages

    Returns:
        SKIP for blank and comment lines, ENTRY for a valid host line,
        ERROR for anything else
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return LineOutcome.skip()

    def error(message: str) -> LineOutcome:
        return LineOutcome.of_error(
            KnownHostsParseError(message, line_number=line_number, line=stripped)
        )

    marker = None
    if stripped.startswith("@"):
        parts = stripped.split(None, 1)
        if parts[0] not in MARKERS:
            return error(f"unknown marker {parts[0]!r}")
        marker = parts[0]
        if len(parts) < 2:
            return error("missing host pattern")
        stripped = parts[1]

    # hosts, key_type, key_data, [comment]
    fields = stripped.split(None, 3)
    if len(fields) < 2:
        return error("missing key")
    if len(fields) < 3:
        return error("missing key data")

    hosts = tuple(fields[0].split(","))
    if any(not h for h in hosts):
        return error("empty host pattern")

    key_type, key_data = fields[1], fields[2]
    comment = fields[3] if len(fields) > 3 else ""

    try:
        key = asyncssh.import_public_key(f"{key_type} {key_data}")
    except (asyncssh.KeyImportError, ValueError) as e:
        return error(f"invalid {key_type} key: {e}")

    return LineOutcome.of_entry(KnownHostsEntry(
        hosts=hosts,
        key=key,
        marker=marker,
        comment=comment,
        line_number=line_number,
    ))


def parse_known_hosts(text: str | bytes) -> list[KnownHostsEntry]:
    """
    Parse a known_hosts blob.

    Entries come back in input order. The first malformed line aborts
    the parse.

    Args:
        text: known_hosts content; bytes are decoded as UTF-8

    Returns:
        Parsed entries (empty for blank or comment-only input)

    Raises:
        KnownHostsParseError: On the first line that is neither a
            comment, blank, nor a valid entry
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise KnownHostsParseError(f"known_hosts is not valid UTF-8: {e}") from e

    entries: list[KnownHostsEntry] = []
    for line_number, line in enumerate(_split_lines(text), start=1):
        outcome = parse_line(line, line_number)
        if outcome.kind is LineKind.ERROR:
            assert outcome.error is not None
            raise outcome.error
        if outcome.kind is LineKind.ENTRY:
            assert outcome.entry is not None
            entries.append(outcome.entry)

    return entries


def _split_lines(text: str) -> list[str]:
    """Split on LF only, dropping the CR of CRLF line endings."""
    return [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]


# ---------------------------------------------------------------------------
# Host identity
# ---------------------------------------------------------------------------

def split_host_port(address: str) -> tuple[str, int]:
    """
    Split "host:port" or "[host]:port" into its parts.

    Raises:
        ValueError: If the port is missing or the address is malformed
    """
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {address!r}")
        host = address[1:end]
        rest = address[end + 1:]
        if not rest:
            raise ValueError(f"missing port in address {address!r}")
        if not rest.startswith(":"):
            raise ValueError(f"unexpected {rest!r} after ']' in address {address!r}")
        port_str = rest[1:]
    else:
        host, sep, port_str = address.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {address!r}")
        if ":" in host:
            raise ValueError(f"too many colons in address {address!r}")

    if not port_str.isdigit():
        raise ValueError(f"invalid port {port_str!r} in address {address!r}")
    port = int(port_str)
    if port > 65535:
        raise ValueError(f"port must be at most 65535, got {port}")

    return host, port


def join_host_port(host: str, port: int) -> str:
    """Combine host and port, bracketing IPv6 literals."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def canonical_host(address: str) -> str:
    """
    Canonical "host" or "host:port" form of an address.

    "[example.com]:2222" and "example.com:2222" both become
    "example.com:2222". An address without a port is returned unchanged.
    """
    try:
        host, port = split_host_port(address)
    except ValueError:
        return address
    return join_host_port(host, port)


def host_without_port(address: str) -> str:
    """Host part of an address, or the address itself if it has no port."""
    try:
        host, _ = split_host_port(address)
    except ValueError:
        return address
    return host


def normalize_host(address: str) -> str:
    """
    Render an address the way known_hosts records it.

    - "example.com" and "example.com:22" -> "example.com"
    - "example.com:2222" -> "[example.com]:2222"
    - "::1" -> "[::1]"
    """
    try:
        host, port = split_host_port(address)
    except ValueError:
        host, port = address, DEFAULT_SSH_PORT

    if port != DEFAULT_SSH_PORT:
        return f"[{host}]:{port}"
    if ":" in host and not host.startswith("["):
        return f"[{host}]"
    return host


# ---------------------------------------------------------------------------
# Hashed hostnames
# ---------------------------------------------------------------------------

def hash_host(host: str, salt: bytes | None = None) -> str:
    """
    Hash a host using OpenSSH's HashKnownHosts scheme.

    HMAC-SHA1 keyed with a 20-byte salt, stored as |1|<b64 salt>|<b64 hash>.
    """
    if salt is None:
        salt = secrets.token_bytes(20)
    digest = hmac.new(salt, host.encode("utf-8"), hashlib.sha1).digest()
    salt_b64 = base64.b64encode(salt).decode("ascii")
    hash_b64 = base64.b64encode(digest).decode("ascii")
    return f"{HASHED_HOST_PREFIX}{salt_b64}|{hash_b64}"


def matches_hashed_host(pattern: str, host: str) -> bool:
    """Check whether host hashes to the stored |1|salt|hash pattern."""
    if not pattern.startswith(HASHED_HOST_PREFIX):
        return False

    parts = pattern.split("|")
    if len(parts) != 4:
        return False

    try:
        salt = base64.b64decode(parts[2], validate=True)
        stored_hash = base64.b64decode(parts[3], validate=True)
    except (ValueError, binascii.Error):
        return False

    computed = hmac.new(salt, host.encode("utf-8"), hashlib.sha1).digest()
    return hmac.compare_digest(stored_hash, computed)
