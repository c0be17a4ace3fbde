"""
End-to-end smoke run of key-based SSH with known_hosts verification.

Starts a disposable SSH server, scans its host key once, then for each
case generates a throwaway client key, connects with KnownHostsClient and
runs a probe command. Each case reports OK or FAILED.
"""
from __future__ import annotations

import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import asyncssh

from hostkey_smoke.errors import SSHError
from hostkey_smoke.events import CaseRecord, EventEmitter, ErrorRecord
from hostkey_smoke.known_hosts import split_host_port
from hostkey_smoke.scan import known_hosts_line, scan_host_key
from hostkey_smoke.testing.mock_server import MockServerConfig, MockSSHServer
from hostkey_smoke.verifier import KnownHostsClient, KnownHostsVerifier

logger = logging.getLogger(__name__)


@dataclass
class SmokeConfig:
    """
    Settings for a smoke run.

    Attributes:
        username: User the generated keys authenticate as
        rsa_bits: Size of generated RSA client keys
        timeout: Seconds allowed for the scan and for each connection
        command: Probe command run after authentication
        event_log_path: Optional JSONL file for events
    """
    username: str = "git"
    rsa_bits: int = 4096
    timeout: float = 5.0
    command: str = "echo ok"
    event_log_path: Path | None = None

    def __post_init__(self) -> None:
        if not self.username:
            raise ValueError("username must not be empty")
        if self.rsa_bits < 1024:
            raise ValueError(f"rsa_bits must be >= 1024, got {self.rsa_bits}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if not self.command.strip():
            raise ValueError("command must not be empty")


@dataclass
class SmokeCase:
    """
    One smoke test case.

    Attributes:
        description: Human-readable name printed in the report
        key_algorithm: Client key algorithm to generate
        key_size: Key size, only used for RSA
        tamper_known_hosts: Replace the scanned key with an unrelated one
        expect_verified: Whether the host key should be accepted
    """
    description: str
    key_algorithm: str
    key_size: int | None = None
    tamper_known_hosts: bool = False
    expect_verified: bool = True


@dataclass
class CaseResult:
    """Outcome of one case."""
    case: SmokeCase
    passed: bool
    verified: bool = False
    exit_status: int | None = None
    output: str = ""
    error: str | None = None

    def summary(self) -> str:
        if not self.passed:
            return f"FAILED ({self.error})" if self.error else "FAILED"
        if self.case.expect_verified:
            return f"OK (exit status {self.exit_status})"
        return f"OK (rejected: {self.error})"


def default_cases(config: SmokeConfig) -> list[SmokeCase]:
    """RSA and ed25519 key cases plus a spoofed host key that must be rejected."""
    return [
        SmokeCase("SSH with rsa key", "ssh-rsa", key_size=config.rsa_bits),
        SmokeCase("SSH with ed25519 key", "ssh-ed25519"),
        SmokeCase(
            "SSH with spoofed host key",
            "ssh-ed25519",
            tamper_known_hosts=True,
            expect_verified=False,
        ),
    ]


def generate_client_key(algorithm: str, key_size: int | None = None) -> asyncssh.SSHKey:
    """Generate a throwaway client key pair."""
    if algorithm == "ssh-rsa":
        return asyncssh.generate_private_key(
            "ssh-rsa", comment="smoketest", key_size=key_size or 4096,
        )
    return asyncssh.generate_private_key(algorithm, comment="smoketest")


def spoofed_known_hosts(address: str) -> bytes:
    """A well-formed known_hosts line for address with an unrelated key."""
    impostor = asyncssh.generate_private_key("ssh-ed25519")
    return (known_hosts_line(address, impostor) + "\n").encode("utf-8")


async def run_case(
    case: SmokeCase,
    server: MockSSHServer,
    known_hosts: bytes,
    config: SmokeConfig,
    emitter: EventEmitter | None = None,
) -> CaseResult:
    """
    Run one case against a started server.

    The verifier is built from the server address and the given
    known_hosts blob, exactly as a caller would after scanning.
    """
    address = server.address
    host, port = split_host_port(address)

    client_key = generate_client_key(case.key_algorithm, case.key_size)
    server.authorize_key(client_key)

    if case.tamper_known_hosts:
        known_hosts = spoofed_known_hosts(address)

    verifier = KnownHostsVerifier(address, known_hosts, emitter=emitter)
    client = KnownHostsClient(verifier)

    try:
        async with asyncssh.connect(
            host,
            port,
            username=config.username,
            client_keys=[client_key],
            known_hosts=([], [], []),
            client_factory=lambda: client,
            connect_timeout=config.timeout,
        ) as conn:
            completed = await asyncio.wait_for(
                conn.run(config.command, check=False),
                timeout=config.timeout,
            )
    except asyncssh.HostKeyNotVerifiable as e:
        result = client.verification_result
        error = result.error if result is not None else e
        return CaseResult(
            case=case,
            passed=not case.expect_verified,
            verified=False,
            error=str(error),
        )
    except (OSError, asyncio.TimeoutError, asyncssh.Error) as e:
        return CaseResult(case=case, passed=False, error=f"{type(e).__name__}: {e}")

    stdout = completed.stdout if isinstance(completed.stdout, str) else ""
    return CaseResult(
        case=case,
        passed=case.expect_verified and completed.exit_status == 0,
        verified=True,
        exit_status=completed.exit_status,
        output=stdout,
        error=None if case.expect_verified else "host key was accepted",
    )


async def run_smoke_tests(
    config: SmokeConfig,
    cases: list[SmokeCase] | None = None,
    emitter: EventEmitter | None = None,
    report: Callable[[str], None] | None = None,
) -> list[CaseResult]:
    """
    Start a server, scan it once and run every case against it.

    Args:
        config: Smoke run settings
        cases: Cases to run (default: default_cases(config))
        emitter: Optional event emitter for SCAN, VERIFY and CASE events
        report: Line sink for the human-readable report (default: stdout)

    Returns:
        One CaseResult per case, in order

    Raises:
        HostKeyScanError: If the server's host key cannot be scanned
    """
    if cases is None:
        cases = default_cases(config)
    if report is None:
        report = print

    report("Running tests...")
    results: list[CaseResult] = []

    server_config = MockServerConfig(username=config.username)
    async with MockSSHServer(server_config) as server:
        known_hosts = await scan_host_key(
            server.address, timeout=config.timeout, emitter=emitter,
        )

        for case in cases:
            started = time.monotonic()
            result = await run_case(case, server, known_hosts, config, emitter)
            if emitter:
                duration_ms = (time.monotonic() - started) * 1000
                emitter.record(CaseRecord.from_result(result, duration_ms))

            report(f"Test case {case.description!r}: {result.summary()}")
            if not result.passed:
                logger.error("Test case %r failed: %s", case.description, result.error)
            results.append(result)

    return results


def all_passed(results: list[CaseResult]) -> bool:
    return bool(results) and all(r.passed for r in results)


async def run(config: SmokeConfig, emitter: EventEmitter | None = None) -> int:
    """Run the default smoke suite and return a process exit code."""
    try:
        results = await run_smoke_tests(config, emitter=emitter)
    except SSHError as e:
        logger.error("Smoke run aborted: %s", e)
        if emitter:
            emitter.record(ErrorRecord.from_error(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0 if all_passed(results) else 1


__all__ = [
    "CaseResult",
    "SmokeCase",
    "SmokeConfig",
    "all_passed",
    "default_cases",
    "generate_client_key",
    "run",
    "run_case",
    "run_smoke_tests",
    "spoofed_known_hosts",
]
