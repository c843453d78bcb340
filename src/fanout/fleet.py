"""Fleet coordination: dispatch every command concurrently and tally results."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .config import Settings
from .dispatch import CommandState, CommandStatus, DispatchEngine, OutputCallback, StatusCallback
from .hosts import HostShuffler
from .recorder import AttemptRecorder
from .transport import RemoteExecutor, SSHExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    """Terminal outcome of one command, sent over the completion channel."""

    command_id: int
    succeeded: bool
    error: Exception | None = None


@dataclass
class RunSummary:
    """Aggregate counts for a finished run."""

    total: int = 0
    succeeded: int = 0
    failed_ids: list[int] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    def add(self, result: CompletionResult) -> None:
        self.total += 1
        if result.succeeded:
            self.succeeded += 1
        else:
            self.failed_ids.append(result.command_id)


class FleetAborted(Exception):
    """The run was stopped early because a command hit a fatal error."""

    def __init__(self, summary: RunSummary, cause: Exception):
        super().__init__(f"Run aborted: {cause}")
        self.summary = summary
        self.cause = cause


class Fleet:
    """Dispatches commands across the host pool."""

    def __init__(
        self,
        commands: list[str],
        hosts: list[str],
        settings: Settings | None = None,
        executor: RemoteExecutor | None = None,
        recorder: AttemptRecorder | None = None,
        on_output: OutputCallback | None = None,
        on_status: StatusCallback | None = None,
    ):
        self.commands = list(commands)
        self.hosts = list(hosts)
        self.settings = settings or Settings()
        self.executor = executor or SSHExecutor(self.settings.ssh)
        self.recorder = recorder or AttemptRecorder(self.settings.output_dir)
        self.on_output = on_output
        self.on_status = on_status
        self.states: dict[int, CommandState] = self._fresh_states()
        self._abort = asyncio.Event()

    def _fresh_states(self) -> dict[int, CommandState]:
        return {
            cmd_id: CommandState(command_id=cmd_id, command=command)
            for cmd_id, command in enumerate(self.commands)
        }

    async def run_all(self) -> RunSummary:
        """Run every command to a terminal state and return the summary.

        Raises FleetAborted, after all commands have reported, if any command
        hit a fatal error.
        """
        # Fresh states and abort flag for every run
        self.states = self._fresh_states()
        self._abort = asyncio.Event()
        shuffler = HostShuffler(self.settings.seed)
        # One generator per command, drawn in id order so a seed is reproducible
        rngs = {cmd_id: shuffler.spawn() for cmd_id in self.states}
        channel: asyncio.Queue[CompletionResult] = asyncio.Queue()

        max_workers = self.settings.max_workers
        if max_workers is None:
            tasks = [
                asyncio.create_task(self._dispatch(cmd_id, rngs[cmd_id], channel))
                for cmd_id in self.states
            ]
        else:
            work: asyncio.Queue[int] = asyncio.Queue()
            for cmd_id in self.states:
                work.put_nowait(cmd_id)
            tasks = [
                asyncio.create_task(self._worker(work, rngs, channel))
                for _ in range(min(max_workers, len(self.states)))
            ]

        summary = RunSummary()
        fatal: Exception | None = None
        for _ in range(len(self.states)):
            result = await channel.get()
            summary.add(result)
            if result.error is not None and fatal is None:
                fatal = result.error
                self._abort.set()
                logger.error("ABORT id=%d: %s; no new attempts will start", result.command_id, fatal)

        await asyncio.gather(*tasks)

        logger.info(
            "FINISHED=%d FAILED=%d TOTAL=%d", summary.succeeded, summary.failed, summary.total
        )
        if fatal is not None:
            raise FleetAborted(summary, fatal) from fatal
        return summary

    async def _worker(self, work: asyncio.Queue[int], rngs, channel) -> None:
        """Pull commands off the work queue until it is empty."""
        while True:
            try:
                cmd_id = work.get_nowait()
            except asyncio.QueueEmpty:
                return
            await self._dispatch(cmd_id, rngs[cmd_id], channel)

    async def _dispatch(self, cmd_id: int, rng, channel: asyncio.Queue[CompletionResult]) -> None:
        """Run one command's engine and report exactly one result."""
        state = self.states[cmd_id]
        engine = DispatchEngine(
            state,
            self.hosts,
            self.executor,
            self.recorder,
            rng,
            on_output=self.on_output,
            on_status=self.on_status,
            abort=self._abort,
        )
        result = CompletionResult(cmd_id, False)
        try:
            result = CompletionResult(cmd_id, await engine.run())
        except Exception as e:
            logger.error("FATAL id=%d: %s", cmd_id, e)
            state.error_message = str(e)
            state.status = CommandStatus.ABORTED
            result = CompletionResult(cmd_id, False, error=e)
            self._notify_aborted(cmd_id)
        finally:
            # Exactly one result per command, whatever happened above
            channel.put_nowait(result)

    def _notify_aborted(self, cmd_id: int) -> None:
        if not self.on_status:
            return
        try:
            self.on_status(cmd_id, CommandStatus.ABORTED)
        except Exception as e:
            logger.error("FATAL id=%d: status callback failed: %s", cmd_id, e)
