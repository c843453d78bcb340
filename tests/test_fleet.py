"""Tests for fleet coordination."""

import asyncio
import logging
import re

import pytest

from fanout.config import Settings
from fanout.dispatch import CommandStatus
from fanout.fleet import CompletionResult, Fleet, FleetAborted, RunSummary
from fanout.recorder import ArtifactError, AttemptRecorder


def make_fleet(commands, hosts, executor, tmp_path, **settings_kwargs):
    settings = Settings(output_dir=tmp_path, **settings_kwargs)
    return Fleet(commands, hosts, settings, executor=executor)


def artifact_names(tmp_path):
    return sorted(p.name for p in tmp_path.iterdir())


class TestRunSummary:
    def test_counts(self):
        summary = RunSummary()
        summary.add(CompletionResult(0, True))
        summary.add(CompletionResult(2, False))
        summary.add(CompletionResult(1, True))

        assert (summary.succeeded, summary.failed, summary.total) == (2, 1, 3)
        assert summary.failed_ids == [2]


class TestFleet:
    @pytest.mark.asyncio
    async def test_one_host_always_fails(self, make_executor, tmp_path):
        """Three commands, host A always fails, host B always succeeds."""
        commands = ["job 0", "job 1", "job 2"]
        executor = make_executor(failing={"A"})
        fleet = make_fleet(commands, ["A", "B"], executor, tmp_path)

        summary = await fleet.run_all()

        assert (summary.succeeded, summary.failed, summary.total) == (3, 0, 3)
        for cmd_id, command in enumerate(commands):
            final = tmp_path / f"cmd_{cmd_id}-final.log"
            assert final.read_text() == f"{command} on B\n"
            tried = executor.hosts_for(command)
            assert tried in (["A", "B"], ["B"])
            assert fleet.states[cmd_id].status == CommandStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_no_hosts(self, make_executor, tmp_path, caplog):
        executor = make_executor()
        fleet = make_fleet(["job"], [], executor, tmp_path)

        with caplog.at_level(logging.INFO, logger="fanout"):
            summary = await fleet.run_all()

        assert (summary.succeeded, summary.failed, summary.total) == (0, 1, 1)
        assert artifact_names(tmp_path) == []
        assert "FINISHED=0 FAILED=1 TOTAL=1" in caplog.text

    @pytest.mark.asyncio
    async def test_both_hosts_fail(self, make_executor, tmp_path):
        executor = make_executor(failing={"A", "B"})
        fleet = make_fleet(["job"], ["A", "B"], executor, tmp_path)

        summary = await fleet.run_all()

        assert summary.failed_ids == [0]
        assert artifact_names(tmp_path) == ["cmd_0-attempt0.log", "cmd_0-attempt1.log"]
        assert fleet.states[0].status == CommandStatus.EXHAUSTED

    @pytest.mark.asyncio
    async def test_promotion_failure(self, make_executor, tmp_path, caplog):
        (tmp_path / "cmd_0-final.log").mkdir()
        executor = make_executor()
        fleet = make_fleet(["job"], ["A"], executor, tmp_path)

        with caplog.at_level(logging.INFO, logger="fanout"):
            summary = await fleet.run_all()

        assert summary.succeeded == 1
        assert (tmp_path / "cmd_0-attempt0.log").read_text() == "job on A\n"
        assert "final output in" in caplog.text

    @pytest.mark.asyncio
    async def test_concurrent_commands_disjoint_artifacts(self, make_executor, tmp_path):
        hosts = ["A", "B", "C", "D"]
        commands = [f"job {i}" for i in range(20)]
        executor = make_executor(failing={"A", "B", "C"}, delay=0.001)
        fleet = make_fleet(commands, hosts, executor, tmp_path, seed=5)

        summary = await fleet.run_all()

        assert summary.succeeded == summary.total == 20
        # All commands ran at once, but never two attempts for one command
        assert executor.max_total_in_flight > 1
        assert all(n == 1 for n in executor.max_in_flight.values())

        seen_paths = set()
        for cmd_id, state in fleet.states.items():
            tried = executor.hosts_for(commands[cmd_id])
            assert len(tried) == len(set(tried))
            assert [a.sequence for a in state.attempts] == list(range(len(tried)))
            paths = {a.path for a in state.attempts}
            assert not paths & seen_paths
            seen_paths |= paths

        finals = [n for n in artifact_names(tmp_path) if n.endswith("-final.log")]
        assert len(finals) == 20

    @pytest.mark.asyncio
    async def test_summary_arithmetic(self, make_executor, tmp_path):
        commands = [f"job {i}" for i in range(7)]
        executor = make_executor(failing={"A"})
        fleet = make_fleet(commands, ["A"], executor, tmp_path)

        summary = await fleet.run_all()

        assert summary.succeeded + summary.failed == summary.total == len(commands)
        assert sorted(summary.failed_ids) == list(range(7))

    @pytest.mark.asyncio
    async def test_worker_pool_limits_concurrency(self, make_executor, tmp_path):
        commands = [f"job {i}" for i in range(10)]
        executor = make_executor(delay=0.001)
        fleet = make_fleet(commands, ["A", "B"], executor, tmp_path, max_workers=3)

        summary = await fleet.run_all()

        assert summary.succeeded == 10
        assert executor.max_total_in_flight <= 3

    @pytest.mark.asyncio
    async def test_seeded_runs_repeat_host_order(self, make_executor, tmp_path):
        hosts = ["A", "B", "C", "D", "E"]
        commands = ["x", "y", "z"]
        orders = []
        for run in range(2):
            out = tmp_path / str(run)
            executor = make_executor(failing=set(hosts))
            fleet = make_fleet(commands, hosts, executor, out, seed=123)
            await fleet.run_all()
            orders.append([executor.hosts_for(c) for c in commands])

        assert orders[0] == orders[1]

    @pytest.mark.asyncio
    async def test_artifact_failure_aborts_run(self, make_executor, tmp_path, caplog):
        class BrokenRecorder(AttemptRecorder):
            def begin_attempt(self, command_id, sequence, host):
                if command_id == 0:
                    raise ArtifactError(28, "No space left on device")
                return super().begin_attempt(command_id, sequence, host)

        commands = ["job 0", "job 1", "job 2"]
        executor = make_executor()
        fleet = Fleet(
            commands,
            ["A"],
            Settings(output_dir=tmp_path, max_workers=1),
            executor=executor,
            recorder=BrokenRecorder(tmp_path),
        )

        with caplog.at_level(logging.INFO, logger="fanout"):
            with pytest.raises(FleetAborted) as excinfo:
                await fleet.run_all()

        aborted = excinfo.value
        assert isinstance(aborted.cause, ArtifactError)
        assert aborted.summary.total == 3
        assert 0 in aborted.summary.failed_ids
        assert fleet.states[0].status == CommandStatus.ABORTED
        # Nothing new starts once the abort is seen
        assert fleet.states[2].status == CommandStatus.ABORTED
        assert "job 2" not in [cmd for cmd, _ in executor.calls]
        assert re.search(r"FINISHED=\d FAILED=\d TOTAL=3", caplog.text)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("callback", ["on_status", "on_output"])
    async def test_raising_callback_still_completes(self, make_executor, tmp_path, callback):
        def broken(cmd_id, value):
            raise BrokenPipeError("display went away")

        fleet = Fleet(
            ["job"],
            ["A"],
            Settings(output_dir=tmp_path),
            executor=make_executor(),
            **{callback: broken},
        )

        with pytest.raises(FleetAborted) as excinfo:
            await asyncio.wait_for(fleet.run_all(), timeout=2)

        assert isinstance(excinfo.value.cause, BrokenPipeError)
        assert excinfo.value.summary.total == 1
        assert fleet.states[0].status == CommandStatus.ABORTED
        with pytest.raises(ValueError):
            fleet.states[0].attempts[0].write(b"late")

    @pytest.mark.asyncio
    async def test_rerun_after_abort(self, make_executor, tmp_path):
        class FailOnceRecorder(AttemptRecorder):
            failed = False

            def begin_attempt(self, command_id, sequence, host):
                if not self.failed:
                    self.failed = True
                    raise ArtifactError(28, "No space left on device")
                return super().begin_attempt(command_id, sequence, host)

        commands = ["job 0", "job 1", "job 2"]
        fleet = Fleet(
            commands,
            ["A"],
            Settings(output_dir=tmp_path),
            executor=make_executor(),
            recorder=FailOnceRecorder(tmp_path),
        )

        with pytest.raises(FleetAborted):
            await fleet.run_all()
        summary = await fleet.run_all()

        assert (summary.succeeded, summary.total) == (3, 3)
        assert all(s.status == CommandStatus.SUCCEEDED for s in fleet.states.values())
