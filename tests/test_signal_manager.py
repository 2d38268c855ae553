"""SignalManager tests.

- SIGINT/SIGTERM set the run's cancel event
- Repeated signals during shutdown are ignored
- Double SIGINT forces exit
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from unittest import mock

import pytest

from proxy_supervisor.signal_manager import SignalManager


class TestSignalHandling:
    """Handlers called directly."""

    def test_sigint_sets_cancel_event(self):
        cancel = asyncio.Event()
        manager = SignalManager(cancel, double_tap_window=1.0)

        manager._handle_sigint()

        assert cancel.is_set()
        assert manager.is_shutdown_requested is True
        assert manager.is_force_exit is False

    def test_sigterm_sets_cancel_event(self):
        cancel = asyncio.Event()
        manager = SignalManager(cancel, double_tap_window=1.0)

        manager._handle_sigterm()

        assert cancel.is_set()
        assert manager.is_force_exit is False

    def test_double_sigint_forces_exit(self):
        cancel = asyncio.Event()
        on_force_exit = mock.MagicMock()
        manager = SignalManager(cancel, double_tap_window=5.0, on_force_exit=on_force_exit)

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True
        on_force_exit.assert_called_once()

    def test_sigint_outside_window_is_ignored(self):
        cancel = asyncio.Event()
        on_force_exit = mock.MagicMock()
        manager = SignalManager(cancel, double_tap_window=0.1, on_force_exit=on_force_exit)

        with mock.patch("proxy_supervisor.signal_manager.time.time", side_effect=[100.0, 200.0]):
            manager._handle_sigint()
            manager._handle_sigint()

        assert manager.is_force_exit is False
        on_force_exit.assert_not_called()

    def test_repeated_sigterm_is_ignored(self):
        cancel = asyncio.Event()
        manager = SignalManager(cancel, double_tap_window=1.0)

        manager._handle_sigterm()
        manager._handle_sigterm()

        assert manager.is_force_exit is False

    def test_force_exit_callback_error_is_logged(self):
        cancel = asyncio.Event()
        manager = SignalManager(
            cancel,
            double_tap_window=5.0,
            on_force_exit=mock.MagicMock(side_effect=RuntimeError("boom")),
        )

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX-specific test")
class TestInstalledHandlers:
    """Real signals delivered to this process."""

    @pytest.mark.asyncio
    async def test_sigterm_delivered(self):
        cancel = asyncio.Event()
        manager = SignalManager(cancel, double_tap_window=1.0)

        await manager.start()
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(cancel.wait(), timeout=2.0)
        finally:
            await manager.stop()

        assert manager.is_shutdown_requested is True

    @pytest.mark.asyncio
    async def test_start_stop_idempotent(self):
        manager = SignalManager(asyncio.Event(), double_tap_window=1.0)

        await manager.start()
        await manager.start()
        await manager.stop()
        await manager.stop()
