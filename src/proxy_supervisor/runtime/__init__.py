"""Runtime module for supervising a single worker process.

This module launches the worker, tees its output into the run directory,
coordinates graceful shutdown with hooks, and archives the run directory.
"""

from __future__ import annotations

from .admin import AdminEndpointResolver, ensure_admin_address_path, split_host_port
from .archive import RunArchiver
from .launcher import ProcessHandle, ProcessLauncher
from .options import RunOptions
from .shutdown import ShutdownCoordinator, ShutdownHook, ShutdownState
from .supervisor import Runner, WorkerRuntime
from .tee import StreamTee

__all__ = [
    "AdminEndpointResolver",
    "ProcessHandle",
    "ProcessLauncher",
    "RunArchiver",
    "RunOptions",
    "Runner",
    "ShutdownCoordinator",
    "ShutdownHook",
    "ShutdownState",
    "StreamTee",
    "WorkerRuntime",
    "ensure_admin_address_path",
    "split_host_port",
]
