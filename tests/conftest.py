"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import io
import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the path (development checkout)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_WORKER_PATH = FIXTURES_DIR / "fake_worker.py"

IS_WINDOWS = sys.platform == "win32"

READY_LINE = b"starting main dispatch loop"


@pytest.fixture
def runs_dir(tmp_path: Path) -> Path:
    """Base directory holding run directories."""
    path = tmp_path / "runs"
    path.mkdir()
    return path


@pytest.fixture
def run_dir(runs_dir: Path) -> Path:
    """A fresh run directory, runs/1."""
    path = runs_dir / "1"
    path.mkdir()
    return path


@pytest.fixture
def fake_worker(tmp_path: Path) -> Path:
    """Executable named ``worker`` that runs tests/fixtures/fake_worker.py."""
    if IS_WINDOWS:
        pytest.skip("fake worker wrapper is a POSIX shell script")
    path = tmp_path / "bin" / "worker"
    path.parent.mkdir()
    path.write_text(
        f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_WORKER_PATH}" "$@"\n',
        encoding="utf-8",
    )
    os.chmod(path, 0o755)
    return path


@pytest.fixture
def run_until_ready():
    """Run a runner, set its cancel event once the worker is ready.

    Returns an async function ``(runner, stderr, *, cancel=True, timeout)``
    whose result is whatever ``runner.run`` returns (exceptions propagate).
    """

    async def _run(
        runner,
        stderr: io.BytesIO,
        *,
        cancel: bool = True,
        timeout: float = 10.0,
    ):
        loop = asyncio.get_running_loop()
        cancel_event = asyncio.Event()
        task = asyncio.create_task(runner.run(cancel_event))

        if cancel:
            deadline = loop.time() + timeout
            while READY_LINE not in stderr.getvalue() and not task.done():
                if loop.time() > deadline:
                    task.cancel()
                    raise AssertionError(f"worker never became ready: {runner}")
                await asyncio.sleep(0.01)
            cancel_event.set()

        return await asyncio.wait_for(task, timeout)

    return _run
