"""Worker process launcher.

Key design points:
- The worker runs in the host's working directory, never the run directory
- POSIX: start_new_session=True so a terminal Ctrl+C reaches the supervisor
  only, which then runs shutdown hooks before signaling the worker
- Windows: CREATE_NEW_PROCESS_GROUP for the same isolation
- stdout/stderr are pumped through StreamTee into console writers and logs
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import LaunchError
from .admin import ensure_admin_address_path
from .options import RunOptions
from .tee import StreamTee, open_log_tees, pump

__all__ = [
    "IS_WINDOWS",
    "PID_FILE",
    "ProcessHandle",
    "ProcessLauncher",
    "interrupt_process",
    "kill_process",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

PID_FILE = "envoy.pid"


@dataclass
class ProcessHandle:
    """The one running worker of a run.

    Attributes:
        pid: Operating system process id
        argv: Resolved argument vector
        process: The asyncio subprocess
        returncode: Exit status once observed, None while running
        forced_kill: True when the worker had to be killed
    """

    pid: int
    argv: list[str]
    process: asyncio.subprocess.Process = field(repr=False)
    returncode: int | None = None
    forced_kill: bool = False

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    async def wait(self) -> int:
        """Wait for the worker to exit and record its status."""
        self.returncode = await self.process.wait()
        return self.returncode


class ProcessLauncher:
    """Build the worker's argument vector and start it.

    Example:
        launcher = ProcessLauncher(options)
        handle = await launcher.start()
        await handle.wait()
        await launcher.close_streams()
    """

    def __init__(self, options: RunOptions) -> None:
        self.options = options
        self.admin_address_path: Path | None = None
        self.pid_path = options.run_dir / PID_FILE
        self._tees: tuple[StreamTee, StreamTee] | None = None
        self._pumps: list[asyncio.Task[int]] = []

    def build_argv(self) -> list[str]:
        """Return [binary, *args] with the admin address flag ensured.

        Raises:
            LaunchError: If the admin address flag has no value
        """
        argv = [str(self.options.binary_path), *self.options.args]
        argv, self.admin_address_path = ensure_admin_address_path(
            argv, self.options.run_dir
        )
        return argv

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True
        return kwargs

    async def start(self, argv: list[str] | None = None) -> ProcessHandle:
        """Start the worker and begin teeing its output.

        Args:
            argv: Pre-built argument vector (defaults to build_argv())

        Returns:
            Handle of the running worker

        Raises:
            LaunchError: If the worker could not be started
        """
        if argv is None:
            argv = self.build_argv()

        try:
            self.options.run_dir.mkdir(parents=True, exist_ok=True)
            self._tees = open_log_tees(
                self.options.run_dir, self.options.stdout, self.options.stderr
            )
        except OSError as e:
            raise LaunchError(f"unable to create log files in {self.options.run_dir}: {e}") from e

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **self._build_subprocess_kwargs(),
            )
        except OSError as e:
            for tee in self._tees:
                tee.close()
            self._tees = None
            raise LaunchError(f"unable to start {argv[0]}: {e}") from e

        logger.debug(f"Started worker pid={process.pid} argv={argv}")

        out_tee, err_tee = self._tees
        self._pumps = [
            asyncio.create_task(pump(process.stdout, out_tee), name="tee-stdout"),
            asyncio.create_task(pump(process.stderr, err_tee), name="tee-stderr"),
        ]

        handle = ProcessHandle(pid=process.pid, argv=argv, process=process)
        self._write_pid_file(handle.pid)
        return handle

    def _write_pid_file(self, pid: int) -> None:
        try:
            self.pid_path.write_text(str(pid), encoding="utf-8")
        except OSError as e:
            # The worker is already running; losing the pid file is not fatal
            logger.warning(f"Unable to write {self.pid_path}: {e}")

    async def close_streams(self) -> None:
        """Drain the output pumps, then flush and close both log files."""
        if self._pumps:
            results = await asyncio.gather(*self._pumps, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.warning(f"Error copying worker output: {result}")
            self._pumps = []

        if self._tees is not None:
            for tee in self._tees:
                tee.close()
            self._tees = None


def interrupt_process(process: asyncio.subprocess.Process) -> None:
    """Request graceful termination of the worker.

    POSIX: SIGINT to the worker's process group (Envoy drains on SIGINT).
    Windows: CTRL_BREAK_EVENT, which works due to CREATE_NEW_PROCESS_GROUP.
    """
    if IS_WINDOWS:
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()
        return

    try:
        pgid = os.getpgid(process.pid)
        os.killpg(pgid, signal.SIGINT)
        logger.debug(f"Sent SIGINT to process group pgid={pgid}")
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.debug(f"killpg failed, falling back to send_signal: {e}")
        process.send_signal(signal.SIGINT)


def kill_process(process: asyncio.subprocess.Process) -> None:
    """Forcefully kill the worker (and its process group on POSIX)."""
    if IS_WINDOWS:
        try:
            process.kill()
            logger.debug(f"Called kill() on pid={process.pid}")
        except ProcessLookupError:
            pass
        return

    try:
        pgid = os.getpgid(process.pid)
        os.killpg(pgid, signal.SIGKILL)
        logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.debug(f"killpg failed, falling back to kill: {e}")
        process.kill()
