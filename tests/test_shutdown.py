"""ShutdownCoordinator unit tests.

The worker is replaced by a future standing in for its exit status and by
interrupt/kill callables that resolve it, so no process is needed.
"""

from __future__ import annotations

import asyncio
from unittest import mock

import pytest

from proxy_supervisor.runtime.launcher import ProcessHandle
from proxy_supervisor.runtime.shutdown import ShutdownCoordinator, ShutdownState


def make_handle() -> ProcessHandle:
    return ProcessHandle(pid=4242, argv=["worker"], process=mock.MagicMock())


class FakeWorker:
    """Exit future plus signal recorders."""

    def __init__(self, exits_on_interrupt: bool = True) -> None:
        self.exit = asyncio.get_running_loop().create_future()
        self.exits_on_interrupt = exits_on_interrupt
        self.events: list[str] = []

    def interrupt(self, process) -> None:
        self.events.append("interrupt")
        if self.exits_on_interrupt and not self.exit.done():
            self.exit.set_result(0)

    def kill(self, process) -> None:
        self.events.append("kill")
        if not self.exit.done():
            self.exit.set_result(-9)


def make_coordinator(worker: FakeWorker, timeout: float = 1.0, **kwargs) -> ShutdownCoordinator:
    return ShutdownCoordinator(
        timeout,
        kill_timeout=0.2,
        interrupt=worker.interrupt,
        kill=worker.kill,
        **kwargs,
    )


class TestHooks:
    """Hook ordering and failure isolation."""

    @pytest.mark.asyncio
    async def test_hooks_run_in_order_before_signal(self):
        worker = FakeWorker()
        coordinator = make_coordinator(worker)

        for name in ("a", "b", "c"):
            async def hook(name: str = name) -> None:
                worker.events.append(name)
            coordinator.register_hook(hook)

        handle = make_handle()
        await coordinator.shutdown(handle, worker.exit)

        assert worker.events == ["a", "b", "c", "interrupt"]
        assert coordinator.state is ShutdownState.DONE
        assert coordinator.signal_sent is True
        assert handle.forced_kill is False

    @pytest.mark.asyncio
    async def test_hook_failure_does_not_abort(self):
        worker = FakeWorker()
        warnings: list[str] = []
        coordinator = make_coordinator(worker, warn=warnings.append)

        async def broken() -> None:
            raise RuntimeError("admin not ready")

        async def after() -> None:
            worker.events.append("after")

        coordinator.register_hook(broken)
        coordinator.register_hook(after)

        await coordinator.shutdown(make_handle(), worker.exit)

        assert warnings == ["admin not ready"]
        assert worker.events == ["after", "interrupt"]

    @pytest.mark.asyncio
    async def test_second_shutdown_is_ignored(self):
        worker = FakeWorker()
        coordinator = make_coordinator(worker)
        calls = 0

        async def hook() -> None:
            nonlocal calls
            calls += 1

        coordinator.register_hook(hook)
        handle = make_handle()

        await coordinator.shutdown(handle, worker.exit)
        await coordinator.shutdown(handle, worker.exit)

        assert calls == 1
        assert worker.events.count("interrupt") == 1

    @pytest.mark.asyncio
    async def test_register_after_shutdown_fails(self):
        worker = FakeWorker()
        coordinator = make_coordinator(worker)
        await coordinator.shutdown(make_handle(), worker.exit)

        async def late() -> None:
            pass

        with pytest.raises(RuntimeError):
            coordinator.register_hook(late)

    @pytest.mark.asyncio
    async def test_no_signal_when_worker_exits_during_hooks(self):
        worker = FakeWorker()
        coordinator = make_coordinator(worker)

        async def hook() -> None:
            worker.exit.set_result(0)

        coordinator.register_hook(hook)
        await coordinator.shutdown(make_handle(), worker.exit)

        assert worker.events == []
        assert coordinator.signal_sent is False
        assert coordinator.state is ShutdownState.DONE


class TestDeadline:
    """Shutdown ceiling and forced kill."""

    @pytest.mark.asyncio
    async def test_kill_after_timeout(self):
        worker = FakeWorker(exits_on_interrupt=False)
        coordinator = make_coordinator(worker, timeout=0.05)
        handle = make_handle()

        loop = asyncio.get_running_loop()
        started = loop.time()
        await coordinator.shutdown(handle, worker.exit)
        elapsed = loop.time() - started

        assert worker.events == ["interrupt", "kill"]
        assert handle.forced_kill is True
        assert coordinator.state is ShutdownState.DONE
        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_fast_exit_does_not_wait_for_timeout(self):
        worker = FakeWorker()
        coordinator = make_coordinator(worker, timeout=5.0)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await coordinator.shutdown(make_handle(), worker.exit)

        assert loop.time() - started < 1.0

    @pytest.mark.asyncio
    async def test_hook_time_counts_against_budget(self):
        worker = FakeWorker(exits_on_interrupt=False)
        coordinator = make_coordinator(worker, timeout=0.5)

        async def slow_hook() -> None:
            await asyncio.sleep(0.3)

        coordinator.register_hook(slow_hook)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await coordinator.shutdown(make_handle(), worker.exit)
        elapsed = loop.time() - started

        # Measured from shutdown start: ~0.5s, not 0.3 + 0.5
        assert worker.events == ["interrupt", "kill"]
        assert elapsed < 0.7

    @pytest.mark.asyncio
    async def test_blocking_hook_leads_to_kill(self):
        worker = FakeWorker()
        warnings: list[str] = []
        coordinator = make_coordinator(worker, timeout=0.05, warn=warnings.append)
        release = asyncio.Event()
        finished = False

        async def blocking_hook() -> None:
            nonlocal finished
            await release.wait()
            finished = True

        coordinator.register_hook(blocking_hook)
        handle = make_handle()
        await coordinator.shutdown(handle, worker.exit)

        assert worker.events == ["kill"]
        assert coordinator.signal_sent is False
        assert handle.forced_kill is True
        assert warnings and "did not complete" in warnings[0]

        # The hook was not interrupted
        assert coordinator.hooks_running is True
        release.set()
        await asyncio.wait_for(coordinator.wait_hooks(), 1.0)
        assert finished is True
        assert coordinator.hooks_running is False

    @pytest.mark.asyncio
    async def test_cancel_hooks_left_running(self):
        worker = FakeWorker()
        coordinator = make_coordinator(worker, timeout=0.05, warn=lambda message: None)

        async def blocking_hook() -> None:
            await asyncio.Event().wait()

        coordinator.register_hook(blocking_hook)
        await coordinator.shutdown(make_handle(), worker.exit)

        coordinator.cancel_hooks()
        await asyncio.wait_for(coordinator.wait_hooks(), 1.0)
        assert coordinator.hooks_running is False

    @pytest.mark.asyncio
    async def test_wait_hooks_without_shutdown(self):
        coordinator = ShutdownCoordinator(1.0)
        await coordinator.wait_hooks()
        coordinator.cancel_hooks()
        assert coordinator.hooks_running is False


class TestNaturalExit:
    """Worker exits before any external shutdown."""

    def test_natural_exit_skips_hooks(self):
        coordinator = ShutdownCoordinator(1.0)
        coordinator.natural_exit()

        assert coordinator.state is ShutdownState.DONE
        assert coordinator.signal_sent is False
        assert coordinator.shutdown_started is False

    def test_str(self):
        coordinator = ShutdownCoordinator(1.0)
        assert "state: idle" in str(coordinator)
