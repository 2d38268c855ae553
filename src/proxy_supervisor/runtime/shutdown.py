"""Graceful shutdown protocol for the worker.

State machine:

    IDLE -> HOOKS_RUNNING -> SIGNAL_SENT -> WAITING_EXIT -> DONE
    IDLE -> WAITING_EXIT -> DONE              (worker exited on its own)

Hooks only run when shutdown is triggered externally. The whole sequence,
hooks included, is bounded by one ceiling measured from the moment shutdown
begins. Past the ceiling the worker is killed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from ..config import DEFAULT_SHUTDOWN_TIMEOUT
from .launcher import ProcessHandle, interrupt_process, kill_process

__all__ = [
    "DEFAULT_KILL_TIMEOUT",
    "ShutdownCoordinator",
    "ShutdownHook",
    "ShutdownState",
]

logger = logging.getLogger(__name__)

# Seconds to wait for the exit status after SIGKILL
DEFAULT_KILL_TIMEOUT = 1.0

ShutdownHook = Callable[[], Awaitable[None]]
ProcessSignaler = Callable[[asyncio.subprocess.Process], None]


class ShutdownState(Enum):
    """Shutdown coordinator states."""

    IDLE = "idle"
    HOOKS_RUNNING = "hooks_running"
    SIGNAL_SENT = "signal_sent"
    WAITING_EXIT = "waiting_exit"
    DONE = "done"


class ShutdownCoordinator:
    """Owns shutdown hooks and drives the graceful shutdown of one worker.

    Attributes:
        timeout: Shutdown ceiling in seconds, hooks included
        kill_timeout: Seconds to wait for the exit status after a kill
        state: Current ShutdownState
    """

    def __init__(
        self,
        timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        *,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        warn: Callable[[str], None] | None = None,
        interrupt: ProcessSignaler = interrupt_process,
        kill: ProcessSignaler = kill_process,
    ) -> None:
        self.timeout = timeout
        self.kill_timeout = kill_timeout
        self.state = ShutdownState.IDLE
        self._warn = warn or (lambda message: logger.warning(message))
        self._interrupt = interrupt
        self._kill = kill
        self._hooks: list[ShutdownHook] = []
        self._started = False
        self._signal_sent = False
        self._hooks_task: asyncio.Task[None] | None = None

    @property
    def hooks(self) -> tuple[ShutdownHook, ...]:
        return tuple(self._hooks)

    @property
    def signal_sent(self) -> bool:
        """Whether the graceful signal was sent (at most once per run)."""
        return self._signal_sent

    @property
    def shutdown_started(self) -> bool:
        return self._started

    def register_hook(self, hook: ShutdownHook) -> None:
        """Append a hook. Hooks run in registration order.

        Raises:
            RuntimeError: If shutdown has already begun
        """
        if self._started or self.state is not ShutdownState.IDLE:
            raise RuntimeError("cannot register a shutdown hook after shutdown began")
        self._hooks.append(hook)

    def natural_exit(self) -> None:
        """Record that the worker exited before any external shutdown."""
        if self.state is ShutdownState.IDLE:
            self.state = ShutdownState.WAITING_EXIT
        self.state = ShutdownState.DONE

    async def shutdown(
        self,
        handle: ProcessHandle,
        exit_task: asyncio.Future[int],
    ) -> None:
        """Run hooks, signal the worker once, then wait or kill.

        Calls after the first are ignored. The caller observes the outcome
        through ``handle.returncode`` and ``handle.forced_kill``.

        Args:
            handle: The running worker
            exit_task: Future completing with the worker's exit status
        """
        if self._started:
            logger.debug("Shutdown already in progress, ignoring")
            return
        self._started = True

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        self.state = ShutdownState.HOOKS_RUNNING
        if self._hooks:
            self._hooks_task = asyncio.create_task(self._run_hooks(), name="shutdown-hooks")
            done, _ = await asyncio.wait(
                {self._hooks_task}, timeout=max(0.0, deadline - loop.time())
            )
            if self._hooks_task not in done:
                # Left running; cleanup waits for it before archiving
                self._warn(
                    f"shutdown hooks did not complete within {self.timeout:g}s"
                )
                await self._force_kill(handle, exit_task)
                return

        if not exit_task.done():
            self._send_signal_once(handle)

        self.state = ShutdownState.WAITING_EXIT
        done, _ = await asyncio.wait(
            {exit_task}, timeout=max(0.0, deadline - loop.time())
        )
        if exit_task not in done:
            logger.warning(
                f"Worker pid={handle.pid} still running {self.timeout:g}s after "
                f"shutdown began, killing it"
            )
            await self._force_kill(handle, exit_task)
            return

        self.state = ShutdownState.DONE
        logger.debug(f"Worker pid={handle.pid} exited gracefully")

    @property
    def hooks_running(self) -> bool:
        return self._hooks_task is not None and not self._hooks_task.done()

    async def wait_hooks(self) -> None:
        """Wait for hooks left running past the deadline."""
        if self._hooks_task is None or self._hooks_task.done():
            return
        logger.info("Waiting for shutdown hooks to finish before archiving")
        await asyncio.wait({self._hooks_task})

    def cancel_hooks(self) -> None:
        if self.hooks_running:
            logger.warning("Cancelling shutdown hooks")
            self._hooks_task.cancel()

    async def _run_hooks(self) -> None:
        for index, hook in enumerate(self._hooks):
            name = getattr(hook, "__name__", repr(hook))
            logger.debug(f"Running shutdown hook {index}: {name}")
            try:
                await hook()
            except Exception as e:
                self._warn(str(e) or type(e).__name__)

    def _send_signal_once(self, handle: ProcessHandle) -> None:
        if self._signal_sent:
            return
        self._signal_sent = True
        try:
            self._interrupt(handle.process)
        except ProcessLookupError:
            logger.debug(f"Worker pid={handle.pid} already exited before signal")
        self.state = ShutdownState.SIGNAL_SENT

    async def _force_kill(
        self,
        handle: ProcessHandle,
        exit_task: asyncio.Future[int],
    ) -> None:
        if exit_task.done():
            self.state = ShutdownState.DONE
            return

        handle.forced_kill = True
        try:
            self._kill(handle.process)
        except ProcessLookupError:
            logger.debug(f"Worker pid={handle.pid} already exited before kill")

        self.state = ShutdownState.WAITING_EXIT
        done, _ = await asyncio.wait({exit_task}, timeout=self.kill_timeout)
        if exit_task not in done:
            logger.warning(f"Worker did not exit after kill pid={handle.pid}")
        self.state = ShutdownState.DONE

    def __str__(self) -> str:
        return (
            f"{{state: {self.state.value}, hooks: {len(self._hooks)}, "
            f"signal_sent: {self._signal_sent}}}"
        )
