"""
Disposable SSH server for smoke and integration testing.

Provides:
- MockServerConfig: Configuration for the server
- MockSSHServer: Async context manager that runs the server on a free port

The server supports:
- Port 0 binding with dynamic port allocation
- A freshly generated host key per instance (or a supplied one)
- Public key authentication against keys authorised at runtime
- Canned command outputs and exit codes
- JSONL event logging for debugging

Example:
    async with MockSSHServer() as server:
        server.authorize_key(client_key)
        known_hosts = await scan_host_key(server.address)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import asyncssh

from hostkey_smoke.events import Event, EventEmitter, EventLog
from hostkey_smoke.known_hosts import join_host_port


@dataclass
class MockServerConfig:
    """
    Configuration for the mock SSH server.

    Attributes:
        username: Username to accept (default: "git")
        host_key_algorithm: Algorithm for the generated host key
        host_key_size: Key size for generated RSA host keys
        host_key_path: Private host key to load instead of generating one
        listen_host: Interface to bind
        command_exit_codes: Map commands to exit codes
        command_outputs: Map commands to (stdout, stderr)
    """
    username: str = "git"
    host_key_algorithm: str = "ssh-ed25519"
    host_key_size: int = 2048
    host_key_path: Path | None = None
    listen_host: str = "127.0.0.1"

    command_exit_codes: dict[str, int] = field(default_factory=dict)
    command_outputs: dict[str, tuple[str, str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        assert self.username, "username must not be empty"
        assert self.host_key_size >= 1024, \
            f"host_key_size must be >= 1024, got {self.host_key_size}"


class MockSSHServerProtocol(asyncssh.SSHServer):
    """SSH server protocol handler accepting only authorised public keys."""

    def __init__(
        self,
        config: MockServerConfig,
        authorized_keys: list[asyncssh.SSHKey],
        emitter: EventEmitter,
    ) -> None:
        self._config = config
        self._authorized_keys = authorized_keys
        self._emitter = emitter

    def connection_made(self, conn: asyncssh.SSHServerConnection) -> None:
        _server_event(
            self._emitter,
            "SERVER_CONNECT",
            peer=str(conn.get_extra_info("peername")),
        )

    def connection_lost(self, exc: Exception | None) -> None:
        _server_event(
            self._emitter,
            "SERVER_DISCONNECT",
            error=str(exc) if exc else None,
        )

    def begin_auth(self, username: str) -> bool:
        _server_event(
            self._emitter,
            "SERVER_AUTH_BEGIN",
            username=username,
            expected_username=self._config.username,
        )
        return True

    def password_auth_supported(self) -> bool:
        return False

    def public_key_auth_supported(self) -> bool:
        return True

    def validate_public_key(self, username: str, key: asyncssh.SSHKey) -> bool:
        """Accept the configured user with any authorised key."""
        authorised = any(
            key.public_data == known.public_data for known in self._authorized_keys
        )
        valid = username == self._config.username and authorised

        _server_event(
            self._emitter,
            "SERVER_AUTH",
            username=username,
            method="publickey",
            algorithm=key.get_algorithm(),
            success=valid,
        )
        return valid


async def handle_mock_process(
    process: asyncssh.SSHServerProcess,
    config: MockServerConfig,
    emitter: EventEmitter,
) -> None:
    """Answer an exec request from the configured outputs."""
    command = process.command or ""
    _server_event(emitter, "SERVER_EXEC", command=command)

    if command in config.command_outputs:
        stdout, stderr = config.command_outputs[command]
    elif command.startswith("echo "):
        stdout, stderr = command[5:] + "\n", ""
    elif command == "whoami":
        stdout, stderr = config.username + "\n", ""
    else:
        stdout, stderr = "", ""

    exit_code = config.command_exit_codes.get(command, 0)

    if stdout:
        process.stdout.write(stdout)
    if stderr:
        process.stderr.write(stderr)

    _server_event(
        emitter,
        "SERVER_EXEC_COMPLETE",
        command=command,
        exit_code=exit_code,
        stdout_len=len(stdout),
        stderr_len=len(stderr),
    )
    process.exit(exit_code)


def _server_event(emitter: EventEmitter, event_type: str, **data: Any) -> None:
    """Publish a SERVER_* event; these kinds are not part of EventType."""
    emitter.publish(Event(event_type, data))


class MockSSHServer:
    """
    Async context manager for running a throwaway SSH server.

    Binds to port 0 so tests can run in parallel without port conflicts.

    Usage:
        async with MockSSHServer(MockServerConfig(username="git")) as server:
            server.authorize_key(client_key)
            async with asyncssh.connect(
                "127.0.0.1", server.port,
                username="git",
                client_keys=[client_key],
                known_hosts=None,
            ) as conn:
                result = await conn.run("echo hello")
    """

    def __init__(
        self,
        config: MockServerConfig | None = None,
        event_log: EventLog | None = None,
        event_log_path: Path | str | None = None,
    ) -> None:
        self._config = config or MockServerConfig()
        self._event_log = event_log or EventLog()
        self._event_log_path = event_log_path
        self._emitter = EventEmitter(self._event_log)

        self._server: asyncssh.SSHAcceptor | None = None
        self._port: int = 0
        self._host_key: asyncssh.SSHKey | None = None
        self._authorized_keys: list[asyncssh.SSHKey] = []

    @property
    def port(self) -> int:
        """Assigned port (only valid after entering the context)."""
        assert self._port > 0, "Port not assigned - server not started"
        return self._port

    @property
    def address(self) -> str:
        """"host:port" the server listens on."""
        return join_host_port(self._config.listen_host, self.port)

    @property
    def host_key(self) -> asyncssh.SSHKey:
        """Private host key in use (only valid after entering the context)."""
        assert self._host_key is not None, "Host key not loaded - server not started"
        return self._host_key

    @property
    def events(self) -> list[Event]:
        return self._event_log.events

    @property
    def config(self) -> MockServerConfig:
        return self._config

    def authorize_key(self, key: asyncssh.SSHKey) -> None:
        """Allow a client key to authenticate as the configured user."""
        self._authorized_keys.append(key)

    async def __aenter__(self) -> "MockSSHServer":
        await self._start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self._stop()

    async def _start(self) -> None:
        self._emitter = EventEmitter(self._event_log, jsonl_path=self._event_log_path)

        if self._config.host_key_path:
            self._host_key = asyncssh.read_private_key(self._config.host_key_path)
        elif self._config.host_key_algorithm == "ssh-rsa":
            self._host_key = asyncssh.generate_private_key(
                "ssh-rsa", comment="hostkey", key_size=self._config.host_key_size,
            )
        else:
            self._host_key = asyncssh.generate_private_key(
                self._config.host_key_algorithm, comment="hostkey",
            )

        self._server = await asyncssh.create_server(
            lambda: MockSSHServerProtocol(
                self._config, self._authorized_keys, self._emitter,
            ),
            self._config.listen_host,
            0,
            server_host_keys=[self._host_key],
            process_factory=self._process_factory,
        )
        self._port = self._server.sockets[0].getsockname()[1]

        _server_event(
            self._emitter,
            "SERVER_START",
            port=self._port,
            host_key_algorithm=self._host_key.get_algorithm(),
        )

    async def _stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        _server_event(self._emitter, "SERVER_STOP", port=self._port)
        self._emitter.close()

    async def _process_factory(self, process: asyncssh.SSHServerProcess) -> None:
        await handle_mock_process(process, self._config, self._emitter)
