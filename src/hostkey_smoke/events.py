"""
Structured run events for hostkey_smoke.

A run produces four kinds of record:
- ScanRecord: a host key fetched from a server
- VerifyRecord: one accept/reject decision of a KnownHostsVerifier
- CaseRecord: a finished smoke case
- ErrorRecord: an SSHError that aborted the run

Records are wrapped in a timestamped Event and routed to an EventLog
(in memory) and/or a JSONL file, one object per line:

    {"event_type": "VERIFY", "timestamp": 1700000000000.0, "data": {...}}
"""
from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, ClassVar, Union

if TYPE_CHECKING:
    import asyncssh

    from hostkey_smoke.errors import SSHError
    from hostkey_smoke.smoketest import CaseResult
    from hostkey_smoke.verifier import VerificationResult


class EventType(str, Enum):
    SCAN = "SCAN"
    VERIFY = "VERIFY"
    CASE = "CASE"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ScanRecord:
    event_type: ClassVar[EventType] = EventType.SCAN

    address: str
    algorithm: str
    fingerprint: str

    @classmethod
    def from_key(cls, address: str, key: "asyncssh.SSHKey") -> "ScanRecord":
        return cls(address, key.get_algorithm(), key.get_fingerprint("sha256"))


@dataclass(frozen=True)
class VerifyRecord:
    """
    One verification decision.

    fingerprint is the SHA256 fingerprint of the presented key, or None
    when no key was presented.
    """
    event_type: ClassVar[EventType] = EventType.VERIFY

    expected_host: str
    hostname: str
    accepted: bool
    reason: str
    stage: str
    entries_checked: int
    fingerprint: str | None = None

    @classmethod
    def from_result(
        cls,
        result: "VerificationResult",
        expected_host: str,
        hostname: str,
        fingerprint: str | None = None,
    ) -> "VerifyRecord":
        return cls(
            expected_host=expected_host,
            hostname=hostname,
            accepted=result.accepted,
            reason=result.reason,
            stage=result.stage.value,
            entries_checked=result.entries_checked,
            fingerprint=fingerprint,
        )


@dataclass(frozen=True)
class CaseRecord:
    event_type: ClassVar[EventType] = EventType.CASE

    description: str
    passed: bool
    verified: bool
    duration_ms: float
    error: str | None = None

    @classmethod
    def from_result(cls, result: "CaseResult", duration_ms: float) -> "CaseRecord":
        return cls(
            description=result.case.description,
            passed=result.passed,
            verified=result.verified,
            duration_ms=duration_ms,
            error=result.error,
        )


@dataclass(frozen=True)
class ErrorRecord:
    event_type: ClassVar[EventType] = EventType.ERROR

    error_type: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, error: "SSHError") -> "ErrorRecord":
        return cls(error.error_type, str(error), error.context.to_dict())


Record = Union[ScanRecord, VerifyRecord, CaseRecord, ErrorRecord]


@dataclass(frozen=True)
class Event:
    """
    A timestamped record as it is logged.

    event_type is a plain string so that components outside the run
    itself (the mock server) can log their own event kinds.
    """
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=lambda: time.time() * 1000)

    @classmethod
    def of(cls, record: Record) -> "Event":
        return cls(record.event_type.value, asdict(record))

    def to_json(self) -> str:
        return json.dumps(
            {"event_type": self.event_type, "timestamp": self.timestamp, "data": self.data},
            default=str,
        )


class EventLog:
    """In-memory event sink, in emission order."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def append(self, event: Event) -> None:
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    def of_type(self, event_type: str | EventType) -> list[Event]:
        if isinstance(event_type, EventType):
            event_type = event_type.value
        return [e for e in self._events if e.event_type == event_type]


class EventEmitter:
    """
    Routes events to an EventLog and/or appends them to a JSONL file.

    The file is opened on construction and stays open until close().
    """

    def __init__(
        self,
        log: EventLog | None = None,
        jsonl_path: Path | str | None = None,
    ) -> None:
        self._log = log
        self._file: IO[str] | None = None

        if jsonl_path is not None:
            path = Path(jsonl_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._file = path.open("a", encoding="utf-8")

    def record(self, record: Record) -> Event:
        """Wrap a record in an Event and publish it."""
        return self.publish(Event.of(record))

    def publish(self, event: Event) -> Event:
        if self._log is not None:
            self._log.append(event)
        if self._file is not None:
            self._file.write(event.to_json() + "\n")
            self._file.flush()
        return event

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
