"""Bridge OS signals to a run's cancel event.

- SIGINT / SIGTERM: set the cancel event, starting graceful shutdown
- Second SIGINT within the double-tap window: force exit

The supervisor process never forwards terminal signals to the worker
directly (the worker lives in its own session); shutdown hooks run first.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import get_config

__all__ = ["SignalManager"]

logger = logging.getLogger(__name__)


class SignalManager:
    """Translate SIGINT/SIGTERM into cancellation of one supervised run.

    Example:
        ```python
        cancel = asyncio.Event()
        signal_manager = SignalManager(cancel)

        async def main():
            await signal_manager.start()
            try:
                await runtime.run(cancel)
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        cancel_event: Event set on the first signal
        double_tap_window: Double Ctrl+C window in seconds
    """

    def __init__(
        self,
        cancel_event: asyncio.Event,
        double_tap_window: Optional[float] = None,
        on_force_exit: Optional[Callable[[], None]] = None,
    ) -> None:
        self.cancel_event = cancel_event
        self.double_tap_window = (
            double_tap_window
            if double_tap_window is not None
            else get_config().sigint_double_tap_window
        )
        self._on_force_exit = on_force_exit

        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._original_sigint_handler = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """Whether a double SIGINT asked for an immediate exit."""
        return self._force_exit

    async def start(self) -> None:
        """Install signal handlers. Must be called from the running loop."""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (double_tap_window={self.double_tap_window}s)"
            )
        else:
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint),
            )
            logger.debug("SIGINT handler installed on Windows")

    async def stop(self) -> None:
        """Restore the original signal handlers."""
        if not self._running:
            return
        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except (ValueError, RuntimeError) as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            signal.signal(signal.SIGINT, self._original_sigint_handler)

        logger.debug("Signal handlers removed")

    def _handle_sigint(self) -> None:
        current_time = time.time()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if self._shutdown_requested and time_since_last < self.double_tap_window:
            logger.warning("Double SIGINT detected, forcing exit")
            self._force_shutdown()
            return

        if self._shutdown_requested:
            # Shutdown already in progress: repeated signals are ignored
            logger.info("SIGINT received, shutdown already in progress")
            return

        logger.info("SIGINT received, requesting graceful shutdown")
        self._request_shutdown()

    def _handle_sigterm(self) -> None:
        if self._shutdown_requested:
            logger.info("SIGTERM received, shutdown already in progress")
            return
        logger.info("SIGTERM received, requesting graceful shutdown")
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True
        self.cancel_event.set()

    def _force_shutdown(self) -> None:
        self._force_exit = True
        self._shutdown_requested = True
        self.cancel_event.set()
        if self._on_force_exit:
            try:
                self._on_force_exit()
            except Exception as e:
                logger.warning(f"Error in force exit callback: {e}")
