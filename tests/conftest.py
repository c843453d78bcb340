"""Shared fixtures for fanout tests."""

import asyncio
from collections import defaultdict

import pytest

from fanout.recorder import AttemptRecorder
from fanout.transport import Outcome


class FakeExecutor:
    """Stands in for SSHExecutor: hosts in ``failing`` always fail, as do
    commands in ``failing_commands`` on every host."""

    def __init__(self, failing=(), delay: float = 0, chunks=None, failing_commands=()):
        self.failing = set(failing)
        self.failing_commands = set(failing_commands)
        self.chunks = chunks
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.in_flight: dict[str, int] = defaultdict(int)
        self.max_in_flight: dict[str, int] = defaultdict(int)
        self.total_in_flight = 0
        self.max_total_in_flight = 0

    async def execute(self, command, host, sink):
        self.calls.append((command, host))
        self.in_flight[command] += 1
        self.total_in_flight += 1
        self.max_in_flight[command] = max(self.max_in_flight[command], self.in_flight[command])
        self.max_total_in_flight = max(self.max_total_in_flight, self.total_in_flight)
        try:
            for chunk in self.chunks or [f"{command} on {host}\n".encode()]:
                sink(chunk)
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight[command] -= 1
            self.total_in_flight -= 1

        if host in self.failing or command in self.failing_commands:
            return Outcome(success=False, exit_status=255, error=f"{host} is down")
        return Outcome(success=True, exit_status=0)

    def hosts_for(self, command):
        return [host for cmd, host in self.calls if cmd == command]


@pytest.fixture
def make_executor():
    """Factory for fake executors."""
    return FakeExecutor


@pytest.fixture
def recorder(tmp_path):
    """Attempt recorder writing into a temporary directory."""
    return AttemptRecorder(tmp_path)
