"""Exceptions raised by the supervisor runtime.

proxy-supervisor errors v0.1.0

Only launch failures, nonzero worker exits and forced kills escape
``WorkerRuntime.run``. Admin address and archive failures are reported as
warnings by the runtime and never replace the worker's exit outcome.
"""

from __future__ import annotations

__all__ = [
    "SupervisorError",
    "LaunchError",
    "WorkerExitError",
    "ShutdownTimeoutError",
    "AdminAddressError",
    "ArchiveError",
]


class SupervisorError(Exception):
    """Base class for supervisor errors."""
    pass


class LaunchError(SupervisorError):
    """The worker could not be started (no child process exists)."""
    pass


class WorkerExitError(SupervisorError):
    """The worker exited on its own with a nonzero status.

    Attributes:
        worker: Short name of the worker binary
        returncode: Exit status reported by the operating system
            (negative N on POSIX means terminated by signal N)
    """

    def __init__(self, worker: str, returncode: int) -> None:
        self.worker = worker
        self.returncode = returncode
        super().__init__(f"{worker} exited with status: {returncode}")


class ShutdownTimeoutError(SupervisorError):
    """Graceful shutdown did not finish in time and the worker was killed.

    Attributes:
        worker: Short name of the worker binary
        timeout: Shutdown ceiling in seconds
        returncode: Exit status observed after the kill (None if unknown)
    """

    def __init__(self, worker: str, timeout: float, returncode: int | None) -> None:
        self.worker = worker
        self.timeout = timeout
        self.returncode = returncode
        super().__init__(
            f"{worker} did not exit within {timeout:g}s of shutdown and was killed"
        )


class AdminAddressError(SupervisorError):
    """The admin address side-channel file is missing or malformed."""
    pass


class ArchiveError(SupervisorError):
    """The run directory could not be archived or removed."""
    pass
