"""fanout: Run each command on one of several SSH hosts, retrying elsewhere on failure."""

from .config import Settings, SSHSettings, load_settings, read_lines
from .dispatch import CommandState, CommandStatus, DispatchEngine
from .fleet import CompletionResult, Fleet, FleetAborted, RunSummary
from .hosts import HostShuffler, HostTarget, permutation
from .recorder import ArtifactError, Attempt, AttemptOutcome, AttemptRecorder
from .transport import Outcome, RemoteExecutor, SSHExecutor

__all__ = [
    "Settings",
    "SSHSettings",
    "load_settings",
    "read_lines",
    "CommandState",
    "CommandStatus",
    "DispatchEngine",
    "CompletionResult",
    "Fleet",
    "FleetAborted",
    "RunSummary",
    "HostShuffler",
    "HostTarget",
    "permutation",
    "ArtifactError",
    "Attempt",
    "AttemptOutcome",
    "AttemptRecorder",
    "Outcome",
    "RemoteExecutor",
    "SSHExecutor",
]
