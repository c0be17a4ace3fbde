"""
Error taxonomy for host key verification, with structured data for JSONL logging.

Error hierarchy:
- SSHError (base)
  - KnownHostsParseError (malformed known_hosts line)
  - HostKeyScanError (could not obtain the server's host key)
  - HostKeyVerificationError (handshake must be aborted)
    - MissingCertificate (no host key presented)
    - HostMismatch (callback invoked for an unexpected host)
    - HostKeyNotVerified (no known_hosts entry vouches for the key)
    - HostKeyRevoked (key is listed under @revoked)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any


@dataclass
class ErrorContext:
    """
    Structured context for verification errors.

    Carries what is needed to debug a rejected handshake and to
    serialise the failure into a JSONL event.
    """
    host: str | None = None
    port: int | None = None
    hostname: str | None = None
    fingerprint: str | None = None
    line_number: int | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.port is not None:
            assert isinstance(self.port, int) and 1 <= self.port <= 65535, (
                f"Port must be between 1 and 65535, got {self.port}"
            )
        if self.line_number is not None:
            assert self.line_number >= 1, (
                f"line_number must be 1-based, got {self.line_number}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "extra":
                # Extra keys must not shadow real fields
                field_names = {f.name for f in fields(self)} - {"extra"}
                collisions = field_names & value.keys()
                assert not collisions, (
                    f"Extra keys collision with dataclass field names: "
                    f"{collisions}. Use distinct key names in extra."
                )
                result.update(value)
            else:
                result[key] = value
        return result


class SSHError(Exception):
    """
    Base exception for all errors raised by hostkey_smoke.

    All errors carry structured context for logging and debugging.
    """

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        assert isinstance(message, str) and message.strip(), (
            f"SSHError message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Return the error type name for logging."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSONL logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


class KnownHostsParseError(SSHError):
    """
    A known_hosts line could not be parsed.

    Comment and blank lines never raise this; anything else that fails
    to yield a host list and a decodable key does, and aborts the whole
    parse.
    """

    def __init__(
        self,
        message: str,
        line_number: int | None = None,
        line: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        context.line_number = line_number
        if line is not None:
            context.extra["line"] = line
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message, context)

    @property
    def line_number(self) -> int | None:
        return self.context.line_number


class HostKeyScanError(SSHError):
    """Scanning a server for its host key failed or timed out."""
    pass


class HostKeyVerificationError(SSHError):
    """
    Base class for handshake rejections.

    Raising any subclass from the verification callback aborts the
    handshake. There is no fallback to accepting the key.
    """

    reason = "hostkey verification failed"


class MissingCertificate(HostKeyVerificationError):
    """The transport invoked the callback without a host key."""

    reason = "missing certificate"


class HostMismatch(HostKeyVerificationError):
    """
    The hostname reported by the transport is not the configured host.

    Raised before any known_hosts entry is consulted.
    """

    reason = "host mismatch"


class HostKeyNotVerified(HostKeyVerificationError):
    """No known_hosts entry authorises the presented key for this host."""

    reason = "hostkey cannot be verified"


class HostKeyRevoked(HostKeyVerificationError):
    """The presented key matches an @revoked known_hosts entry."""

    reason = "hostkey revoked"
