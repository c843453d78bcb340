"""Attempt artifacts: one log file per attempt, promoted on success."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO


class ArtifactError(OSError):
    """An attempt artifact could not be created. Fatal for the whole run."""


class AttemptOutcome(Enum):
    """Outcome of an attempt once the executor has returned."""

    UNKNOWN = "unknown"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class Attempt:
    """One execution of a command against one host."""

    command_id: int
    sequence: int
    host: str
    path: Path
    outcome: AttemptOutcome = AttemptOutcome.UNKNOWN
    error: str = ""
    _file: BinaryIO | None = field(default=None, repr=False, compare=False)

    def write(self, data: bytes) -> None:
        """Append raw output to the artifact, unchanged."""
        if self._file is None:
            raise ValueError(f"Attempt artifact {self.path} is closed")
        self._file.write(data)
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


def attempt_name(command_id: int, sequence: int) -> str:
    return f"cmd_{command_id}-attempt{sequence}.log"


def final_name(command_id: int) -> str:
    return f"cmd_{command_id}-final.log"


class AttemptRecorder:
    """Creates attempt artifacts under ``output_dir`` and promotes them.

    Names are unique per (command_id, sequence), so concurrent commands never
    share a file and no locking is needed.
    """

    def __init__(self, output_dir: str | Path = "."):
        self.output_dir = Path(output_dir)

    def begin_attempt(self, command_id: int, sequence: int, host: str) -> Attempt:
        """Create a new attempt artifact opened for writing.

        Raises ArtifactError if the file cannot be created.
        """
        path = self.output_dir / attempt_name(command_id, sequence)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            f = open(path, "wb")
        except OSError as e:
            raise ArtifactError(
                e.errno, f"Could not create attempt artifact {path}: {e.strerror or e}"
            ) from e
        return Attempt(
            command_id=command_id,
            sequence=sequence,
            host=host,
            path=path,
            _file=f,
        )

    def final_path(self, command_id: int) -> Path:
        return self.output_dir / final_name(command_id)

    def promote(self, attempt: Attempt) -> Path:
        """Atomically rename the attempt artifact to the command's final name.

        Raises OSError if the rename fails; the artifact then stays under its
        attempt name.
        """
        attempt.close()
        final = self.final_path(attempt.command_id)
        os.rename(attempt.path, final)
        return final
