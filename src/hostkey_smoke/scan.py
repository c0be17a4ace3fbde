"""
Host key scanning, the ssh-keyscan step that feeds KnownHostsVerifier.

Connects just far enough to receive the server's host key and renders it
as a known_hosts line for the scanned address.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from typing import Sequence

import asyncssh

from hostkey_smoke.errors import ErrorContext, HostKeyScanError
from hostkey_smoke.events import EventEmitter, ScanRecord
from hostkey_smoke.known_hosts import normalize_host, split_host_port
from hostkey_smoke.matcher import fingerprint

logger = logging.getLogger(__name__)

DEFAULT_SCAN_TIMEOUT = 5.0


def known_hosts_line(address: str, key: asyncssh.SSHKey) -> str:
    """Format a key as a known_hosts line for address, without comment."""
    key_data = base64.b64encode(key.public_data).decode("ascii")
    return f"{normalize_host(address)} {key.get_algorithm()} {key_data}"


async def scan_host_key(
    address: str,
    timeout: float = DEFAULT_SCAN_TIMEOUT,
    algorithms: Sequence[str] | None = None,
    emitter: EventEmitter | None = None,
) -> bytes:
    """
    Fetch a server's host key as known_hosts bytes.

    Args:
        address: "host:port" of the SSH server
        timeout: Seconds to wait for the key
        algorithms: Restrict the host key algorithms offered to the server
        emitter: Optional event emitter for SCAN events

    Returns:
        One known_hosts line, newline terminated

    Raises:
        ValueError: If timeout is not positive
        HostKeyScanError: If the address is invalid, the server cannot be
            reached in time, or it presents no host key
    """
    if timeout <= 0:
        raise ValueError(f"timeout must be > 0, got {timeout}")

    try:
        host, port = split_host_port(address)
    except ValueError as e:
        raise HostKeyScanError(
            f"invalid scan address {address!r}: {e}",
            ErrorContext(original_error=str(e)),
        ) from e
    if port < 1:
        raise HostKeyScanError(f"invalid port in scan address {address!r}")

    context = ErrorContext(host=host, port=port)
    options = {}
    if algorithms:
        options["server_host_key_algs"] = list(algorithms)

    try:
        key = await asyncio.wait_for(
            asyncssh.get_server_host_key(host, port, **options),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        context.original_error = "timeout"
        raise HostKeyScanError(
            f"timed out after {timeout}s scanning {address}", context,
        ) from e
    except (OSError, asyncssh.Error) as e:
        context.original_error = str(e)
        raise HostKeyScanError(f"scanning {address} failed: {e}", context) from e

    if key is None:
        raise HostKeyScanError(f"{address} presented no host key", context)

    line = known_hosts_line(address, key)
    logger.info("Scanned %s: %s %s", address, key.get_algorithm(), fingerprint(key))

    if emitter:
        emitter.record(ScanRecord.from_key(address, key))

    return (line + "\n").encode("utf-8")
