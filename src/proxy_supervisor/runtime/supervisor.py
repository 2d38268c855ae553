"""Supervise one worker run from launch to archived run directory.

Example:
    options = RunOptions(binary_path=Path("envoy"), run_dir=Path("runs/1"),
                         args=("-c", "envoy.yaml"))
    runtime = WorkerRuntime(options)
    runtime.register_shutdown_hook(collect_stats)

    cancel = asyncio.Event()
    await runtime.run(cancel)   # set cancel from a signal handler to stop
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..errors import AdminAddressError, ArchiveError, ShutdownTimeoutError, WorkerExitError
from .admin import AdminEndpointResolver
from .archive import RunArchiver
from .launcher import ProcessHandle, ProcessLauncher, kill_process
from .options import RunOptions
from .shutdown import DEFAULT_KILL_TIMEOUT, ShutdownCoordinator, ShutdownHook

__all__ = ["Runner", "WorkerRuntime"]

logger = logging.getLogger(__name__)


@runtime_checkable
class Runner(Protocol):
    """Something that runs until done or cancelled and can describe itself."""

    async def run(self, cancel_event: asyncio.Event) -> None:
        ...

    def __str__(self) -> str:
        ...


class WorkerRuntime:
    """Manage one worker lifecycle.

    One instance supervises exactly one worker; concurrent runs need
    distinct instances and distinct run directories.

    Attributes:
        options: The run options
        launcher: Starts the worker and tees its output
        coordinator: Shutdown hooks and the graceful shutdown protocol
        archiver: Finalizes the run directory
        handle: The worker handle once started
    """

    def __init__(
        self,
        options: RunOptions,
        *,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ) -> None:
        self.options = options
        self.launcher = ProcessLauncher(options)
        self.coordinator = ShutdownCoordinator(
            options.shutdown_timeout,
            kill_timeout=kill_timeout,
            warn=self._warn,
        )
        self.archiver = RunArchiver(options.run_dir, options.keep_run_dir)
        self.handle: ProcessHandle | None = None
        self._admin: AdminEndpointResolver | None = None
        self._started = False

    @property
    def run_dir(self) -> Path:
        """Run-specific directory hooks may write files to."""
        return self.options.run_dir

    @property
    def pid_path(self) -> Path:
        return self.launcher.pid_path

    @property
    def argv(self) -> list[str] | None:
        return self.handle.argv if self.handle else None

    def register_shutdown_hook(self, hook: ShutdownHook) -> None:
        """Register a hook run before the worker is signaled on shutdown.

        Hooks are skipped when the worker exits on its own.
        """
        self.coordinator.register_hook(hook)

    def get_admin_address(self) -> str:
        """Return the worker's admin address in host:port form.

        Raises:
            AdminAddressError: If the worker has not published it (yet)
        """
        if self._admin is None:
            raise AdminAddressError("admin address path is not known until the worker starts")
        return self._admin.resolve()

    def _status(self, message: str) -> None:
        """Write a runtime status line to the stdout console only."""
        out = self.options.stdout
        try:
            out.write(f"{message}\n".encode("utf-8"))
            out.flush()
        except (OSError, ValueError) as e:
            logger.debug(f"Unable to write status line to console: {e}")

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self._status(f"warning: {message}")

    async def run(self, cancel_event: asyncio.Event) -> None:
        """Run the worker until it exits or cancel_event is set.

        Args:
            cancel_event: Set to request graceful shutdown

        Raises:
            LaunchError: If the worker could not be started
            WorkerExitError: If the worker exited on its own with nonzero status
            ShutdownTimeoutError: If the worker had to be killed
            RuntimeError: If this runtime already ran
        """
        if self._started:
            raise RuntimeError("a WorkerRuntime supervises a single run")
        self._started = True

        argv = self.launcher.build_argv()
        self._admin = AdminEndpointResolver(self.launcher.admin_address_path)

        self._status(f"starting: {' '.join(argv)}")
        self.handle = await self.launcher.start(argv)
        logger.info(f"Worker started pid={self.handle.pid} run_dir={self.run_dir}")

        exit_task = asyncio.create_task(self.handle.wait(), name="worker-exit")
        cancel_task = asyncio.create_task(cancel_event.wait(), name="worker-cancel")
        cancelled = False

        try:
            done, _ = await asyncio.wait(
                {exit_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if exit_task in done:
                self.coordinator.natural_exit()
            else:
                cancelled = True
                logger.info(f"Shutdown requested, stopping worker pid={self.handle.pid}")
                await self.coordinator.shutdown(self.handle, exit_task)
        finally:
            if not cancel_task.done():
                cancel_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cancel_task
            await self._safe_cleanup(exit_task)

        self._raise_for_outcome(cancelled)

    async def _safe_cleanup(self, exit_task: asyncio.Task[int]) -> None:
        """Finish the run even if the caller is cancelled mid-way."""
        cleanup = asyncio.ensure_future(self._do_cleanup(exit_task))
        try:
            await asyncio.shield(cleanup)
        except asyncio.CancelledError:
            self.coordinator.cancel_hooks()
            await cleanup
            raise

    async def _do_cleanup(self, exit_task: asyncio.Task[int]) -> None:
        handle = self.handle
        if handle is not None and not exit_task.done():
            # Only reached when run() itself was cancelled
            logger.warning(f"Supervisor cancelled, killing worker pid={handle.pid}")
            handle.forced_kill = True
            self.coordinator.cancel_hooks()
            with contextlib.suppress(ProcessLookupError):
                kill_process(handle.process)
            await exit_task

        await self.launcher.close_streams()

        # Hooks may still be writing into the run directory
        await self.coordinator.wait_hooks()

        try:
            archive = await self.archiver.finalize()
        except ArchiveError as e:
            self._warn(str(e))
        else:
            if archive is not None:
                logger.info(f"Run directory archived to {archive}")

    def _raise_for_outcome(self, cancelled: bool) -> None:
        handle = self.handle
        assert handle is not None
        name = self.options.worker_name

        if handle.forced_kill:
            raise ShutdownTimeoutError(name, self.options.shutdown_timeout, handle.returncode)
        if cancelled:
            logger.info(f"Worker stopped gracefully pid={handle.pid} returncode={handle.returncode}")
            return
        if handle.returncode:
            raise WorkerExitError(name, handle.returncode)
        logger.info(f"Worker exited pid={handle.pid}")

    def __str__(self) -> str:
        exit_status = -1
        if self.handle is not None and self.handle.returncode is not None:
            exit_status = self.handle.returncode
        return f"{{exit_status: {exit_status}, shutdown: {self.coordinator}}}"
