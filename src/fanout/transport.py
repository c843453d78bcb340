"""SSH transport: run one command on one host."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

import asyncssh

from .config import SSHSettings
from .hosts import HostTarget

logger = logging.getLogger(__name__)

# Receives raw chunks of combined stdout/stderr as they are produced
OutputSink = Callable[[bytes], None]

READ_SIZE = 65536


@dataclass
class Outcome:
    """Result of one remote execution."""

    success: bool
    exit_status: int | None = None
    error: str = ""

    def describe(self) -> str:
        if self.success:
            return "ok"
        if self.error:
            return self.error
        return f"exit status {self.exit_status}"


class RemoteExecutor(Protocol):
    """Anything that can run a command on a host and report the outcome."""

    def execute(self, command: str, host: str, sink: OutputSink) -> Awaitable[Outcome]:
        ...


class SSHExecutor:
    """Runs commands over SSH with asyncssh.

    Never retries and never raises for transport problems: connection
    refusal, timeouts and non-zero exits all come back as a failed Outcome.
    """

    def __init__(self, settings: SSHSettings | None = None):
        self.settings = settings or SSHSettings()

    def _connect_kwargs(self, target: HostTarget) -> dict[str, Any]:
        """Build asyncssh.connect options, leaving unset ones to ssh config."""
        kwargs: dict[str, Any] = {
            "connect_timeout": self.settings.connect_timeout,
            "known_hosts": (
                str(self.settings.known_hosts) if self.settings.known_hosts else None
            ),
        }
        username = target.user or self.settings.user
        if username:
            kwargs["username"] = username
        port = target.port or self.settings.port
        if port:
            kwargs["port"] = port
        if self.settings.ssh_key:
            kwargs["client_keys"] = [str(self.settings.ssh_key)]
        return kwargs

    async def execute(self, command: str, host: str, sink: OutputSink) -> Outcome:
        """Run ``command`` on ``host``, streaming output bytes into ``sink``."""
        if not command:
            raise ValueError("Command must be a non-empty string")
        if not host:
            raise ValueError("Host must be a non-empty string")

        try:
            target = HostTarget.parse(host)
        except ValueError as e:
            return Outcome(success=False, error=f"Bad host: {e}")

        try:
            async with asyncssh.connect(
                target.host, **self._connect_kwargs(target)
            ) as conn:
                return await asyncio.wait_for(
                    self._run_command(conn, command, sink),
                    timeout=self.settings.command_timeout,
                )
        except asyncssh.Error as e:
            return Outcome(success=False, error=f"SSH error: {e}")
        except asyncio.TimeoutError:
            return Outcome(success=False, error="Timed out")
        except OSError as e:
            return Outcome(success=False, error=f"Connection error: {e}")

    async def _run_command(
        self, conn: asyncssh.SSHClientConnection, command: str, sink: OutputSink
    ) -> Outcome:
        # Raw bytes: remote output is not guaranteed to be valid UTF-8
        async with conn.create_process(command, encoding=None) as proc:
            # Read stdout and stderr concurrently
            async def read_stream(stream):
                while True:
                    chunk = await stream.read(READ_SIZE)
                    if not chunk:
                        break
                    sink(chunk)

            await asyncio.gather(
                read_stream(proc.stdout),
                read_stream(proc.stderr),
            )

            await proc.wait()
            exit_status = proc.exit_status

        if exit_status != 0:
            logger.debug("Remote command exited with status %s", exit_status)
            return Outcome(success=False, exit_status=exit_status)
        return Outcome(success=True, exit_status=0)
