"""Run options handed to the runtime by the caller."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from ..config import DEFAULT_SHUTDOWN_TIMEOUT

__all__ = ["RunOptions"]


def _console_stdout() -> BinaryIO:
    return sys.stdout.buffer


def _console_stderr() -> BinaryIO:
    return sys.stderr.buffer


@dataclass(frozen=True)
class RunOptions:
    """Everything needed to supervise one worker run.

    Attributes:
        binary_path: Path to the worker executable
        run_dir: Per-run scratch directory (pid file, logs, side-channel)
        args: Extra arguments passed to the worker after the binary path
        stdout: Console writer for the worker's stdout and runtime status lines
        stderr: Console writer for the worker's stderr
        keep_run_dir: Leave the run directory in place instead of archiving it
        shutdown_timeout: Graceful shutdown ceiling in seconds
    """

    binary_path: Path
    run_dir: Path
    args: tuple[str, ...] = ()
    stdout: BinaryIO = field(default_factory=_console_stdout)
    stderr: BinaryIO = field(default_factory=_console_stderr)
    keep_run_dir: bool = False
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT

    def __post_init__(self) -> None:
        # Accept str paths and lists from callers while staying immutable
        object.__setattr__(self, "binary_path", Path(self.binary_path))
        object.__setattr__(self, "run_dir", Path(self.run_dir))
        object.__setattr__(self, "args", tuple(self.args))

    @property
    def worker_name(self) -> str:
        """Short worker name used in error messages (``envoy``, ``worker``)."""
        name = self.binary_path.name
        if name.lower().endswith(".exe"):
            return name[:-4]
        return name
