"""
Pytest fixtures for hostkey_smoke tests.

Provides:
- Throwaway host keys and known_hosts line builders
- MockSSHServer fixture (no Docker, no network beyond localhost)
- Event capture fixture for asserting event sequences
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, AsyncGenerator, Callable

import asyncssh
import pytest

if TYPE_CHECKING:
    from hostkey_smoke.events import EventLog
    from hostkey_smoke.testing.mock_server import MockSSHServer


def openssh_public(key: asyncssh.SSHKey) -> str:
    """'<algorithm> <base64>' for a key, without comment."""
    algorithm, key_data = key.export_public_key("openssh").decode("ascii").split()[:2]
    return f"{algorithm} {key_data}"


@pytest.fixture(scope="session")
def host_key() -> asyncssh.SSHKey:
    """The key the 'real' server presents."""
    return asyncssh.generate_private_key("ssh-ed25519")


@pytest.fixture(scope="session")
def other_key() -> asyncssh.SSHKey:
    """An unrelated key, e.g. presented by an impostor."""
    return asyncssh.generate_private_key("ssh-ed25519")


@pytest.fixture
def known_hosts_for() -> Callable[..., str]:
    """
    Build a known_hosts line.

    Usage:
        line = known_hosts_for("[example.com]:2222", host_key)
        line = known_hosts_for("h1,h2", host_key, marker="@revoked")
    """
    def build(hosts: str, key: asyncssh.SSHKey, marker: str | None = None) -> str:
        line = f"{hosts} {openssh_public(key)}"
        if marker:
            line = f"{marker} {line}"
        return line + "\n"

    return build


@pytest.fixture
async def mock_ssh_server() -> AsyncGenerator["MockSSHServer", None]:
    """
    Fixture providing a started MockSSHServer with an ed25519 host key.

    Usage:
        async def test_example(mock_ssh_server):
            mock_ssh_server.authorize_key(client_key)
            known_hosts = await scan_host_key(mock_ssh_server.address)
    """
    from hostkey_smoke.testing.mock_server import MockServerConfig, MockSSHServer

    async with MockSSHServer(MockServerConfig(username="git")) as server:
        yield server


@pytest.fixture
def event_log() -> "EventLog":
    """In-memory sink for asserting event sequences."""
    from hostkey_smoke.events import EventLog

    return EventLog()


@pytest.fixture
def temp_jsonl_path(tmp_path: Path) -> Path:
    """Provide a temporary path for JSONL event log output."""
    return tmp_path / "events.jsonl"
