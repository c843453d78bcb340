"""Per-command dispatch: try hosts in random order until one succeeds."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from .hosts import permutation
from .recorder import Attempt, AttemptOutcome, AttemptRecorder
from .transport import OutputSink, RemoteExecutor

logger = logging.getLogger(__name__)


class CommandStatus(Enum):
    """Status of a command's dispatch."""

    PENDING = "pending"
    TRYING = "trying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self not in (CommandStatus.PENDING, CommandStatus.TRYING)


@dataclass
class CommandState:
    """Runtime state for a command."""

    command_id: int
    command: str
    status: CommandStatus = CommandStatus.PENDING
    current_host: str = ""
    attempts: list[Attempt] = field(default_factory=list)
    output_lines: list[str] = field(default_factory=list)
    output_path: Path | None = None
    error_message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == CommandStatus.SUCCEEDED


class LineSplitter:
    """Turns raw output chunks into display lines.

    Undecodable bytes are replaced; the artifact itself always gets the raw
    chunks.
    """

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, data: bytes) -> list[str]:
        *lines, self._pending = (self._pending + data).split(b"\n")
        return [_decode(line) for line in lines]

    def flush(self) -> list[str]:
        if not self._pending:
            return []
        line, self._pending = self._pending, b""
        return [_decode(line)]


def _decode(line: bytes) -> str:
    return line.rstrip(b"\r").decode("utf-8", errors="replace")


# Type alias for output callback
OutputCallback = Callable[[int, str], None]  # (command_id, line) -> None
StatusCallback = Callable[[int, CommandStatus], None]  # (command_id, status) -> None


class DispatchEngine:
    """Owns the retry loop for one command.

    Hosts are tried strictly one after another in the order of a fresh
    permutation. Every try gets its own attempt artifact; the first success
    is promoted and ends the loop. There is no delay between tries.
    """

    def __init__(
        self,
        state: CommandState,
        hosts: list[str],
        executor: RemoteExecutor,
        recorder: AttemptRecorder,
        rng: random.Random,
        on_output: OutputCallback | None = None,
        on_status: StatusCallback | None = None,
        abort: asyncio.Event | None = None,
    ):
        self.state = state
        self.hosts = hosts
        self.executor = executor
        self.recorder = recorder
        self.rng = rng
        self.on_output = on_output
        self.on_status = on_status
        self.abort = abort

    def _emit_output(self, line: str) -> None:
        self.state.output_lines.append(line)
        if self.on_output:
            self.on_output(self.state.command_id, line)

    def _emit_status(self, status: CommandStatus) -> None:
        self.state.status = status
        if self.on_status:
            self.on_status(self.state.command_id, status)

    def _make_sink(self, attempt: Attempt, splitter: LineSplitter) -> OutputSink:
        """Sink writing raw bytes to the artifact and decoded lines to callbacks."""

        def sink(data: bytes) -> None:
            attempt.write(data)
            for line in splitter.feed(data):
                self._emit_output(line)

        return sink

    async def run(self) -> bool:
        """Dispatch the command. Returns True if any host succeeded.

        Raises ArtifactError if an attempt artifact cannot be created.
        """
        state = self.state
        cmd_id = state.command_id
        order = permutation(len(self.hosts), self.rng)

        if not order:
            state.error_message = "No hosts available"
            logger.error("FAILED id=%d no hosts available", cmd_id)
            self._emit_status(CommandStatus.EXHAUSTED)
            return False

        for sequence, index in enumerate(order):
            if self.abort is not None and self.abort.is_set():
                state.error_message = "Run aborted"
                logger.warning("ABORTED id=%d before attempt %d", cmd_id, sequence)
                self._emit_status(CommandStatus.ABORTED)
                return False

            host = self.hosts[index]
            attempt = self.recorder.begin_attempt(cmd_id, sequence, host)
            state.attempts.append(attempt)
            state.current_host = host
            try:
                self._emit_status(CommandStatus.TRYING)
                self._emit_output(f"$ [{host}] {state.command}")
                logger.info("EXEC id=%d host=%s", cmd_id, host)
                splitter = LineSplitter()
                outcome = await self.executor.execute(
                    state.command, host, self._make_sink(attempt, splitter)
                )
                for line in splitter.flush():
                    self._emit_output(line)
            finally:
                attempt.close()

            if not outcome.success:
                attempt.outcome = AttemptOutcome.FAILURE
                attempt.error = outcome.describe()
                state.error_message = attempt.error
                logger.warning("ERROR id=%d host=%s status=%s", cmd_id, host, attempt.error)
                self._emit_output(f"ERROR: {attempt.error}")
                continue

            attempt.outcome = AttemptOutcome.SUCCESS
            state.output_path = self._promote(attempt)
            state.error_message = ""
            logger.info("SUCC id=%d output=%s", cmd_id, state.output_path)
            self._emit_status(CommandStatus.SUCCEEDED)
            return True

        logger.error("FAILED id=%d exhausted all hosts and could not complete", cmd_id)
        self._emit_status(CommandStatus.EXHAUSTED)
        return False

    def _promote(self, attempt: Attempt) -> Path:
        """Promote a successful attempt, falling back to its attempt path."""
        try:
            return self.recorder.promote(attempt)
        except OSError as e:
            logger.error(
                "ERROR id=%d: could not write output path %s, final output in %s (%s)",
                attempt.command_id,
                self.recorder.final_path(attempt.command_id),
                attempt.path,
                e,
            )
            return attempt.path
