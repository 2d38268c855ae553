"""Built-in shutdown hooks that snapshot the worker before it is stopped.

- Admin data: fetched from the worker's admin endpoint into <rundir>/admin/
- Node data: worker process table and host facts into <rundir>/node/

Both run only on external shutdown, so the data ends up in the run archive.
"""

from __future__ import annotations

import asyncio
import json
import logging
import platform
import time
from pathlib import Path
from typing import Any

import aiohttp
import anyio
import psutil

from .runtime import WorkerRuntime

__all__ = [
    "ADMIN_ENDPOINTS",
    "enable_admin_data_collection",
    "enable_node_collection",
]

logger = logging.getLogger(__name__)

# file name -> admin endpoint path
ADMIN_ENDPOINTS: dict[str, str] = {
    "config_dump.json": "config_dump",
    "stats.json": "stats?format=json",
    "clusters.json": "clusters?format=json",
    "listeners.json": "listeners?format=json",
    "certs.json": "certs",
    "server_info.json": "server_info",
    "runtime.json": "runtime",
    "memory.json": "memory",
    "ready.log": "ready",
}

ADMIN_REQUEST_TIMEOUT = 0.5

_PROCESS_ATTRS = [
    "pid",
    "ppid",
    "name",
    "exe",
    "cmdline",
    "status",
    "create_time",
    "num_threads",
    "memory_info",
    "cpu_times",
]


def enable_admin_data_collection(
    runtime: WorkerRuntime,
    *,
    request_timeout: float = ADMIN_REQUEST_TIMEOUT,
) -> None:
    """Register a hook saving admin endpoint responses into the run directory.

    A missing admin address fails the hook as a whole. A failing endpoint is
    logged and the remaining endpoints are still fetched.
    """

    async def collect_admin_data() -> None:
        address = runtime.get_admin_address()
        out_dir = runtime.run_dir / "admin"
        out_dir.mkdir(parents=True, exist_ok=True)

        timeout = aiohttp.ClientTimeout(total=request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for filename, path in ADMIN_ENDPOINTS.items():
                url = f"http://{address}/{path}"
                try:
                    await _save_response(session, url, out_dir / filename)
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    logger.warning(f"Unable to collect {url}: {e}")

    runtime.register_shutdown_hook(collect_admin_data)


async def _save_response(
    session: aiohttp.ClientSession,
    url: str,
    dest: Path,
) -> None:
    async with session.get(url) as response:
        body = await response.read()
    dest.write_bytes(body)
    logger.debug(f"Saved {url} -> {dest} (status={response.status}, {len(body)} bytes)")


def enable_node_collection(runtime: WorkerRuntime) -> None:
    """Register a hook saving the worker's process tree and host facts."""

    async def collect_node_info() -> None:
        handle = runtime.handle
        if handle is None:
            raise RuntimeError("worker not started, no node info to collect")
        out_dir = runtime.run_dir / "node"
        out_dir.mkdir(parents=True, exist_ok=True)

        processes = await anyio.to_thread.run_sync(_process_snapshot, handle.pid)
        _write_json(out_dir / "ps.json", processes)
        _write_json(out_dir / "host.json", _host_snapshot())

    runtime.register_shutdown_hook(collect_node_info)


def _plain(value: Any) -> Any:
    """Convert psutil named tuples into dicts for JSON output."""
    if hasattr(value, "_asdict"):
        return value._asdict()
    return value


def _process_snapshot(pid: int) -> list[dict[str, Any]]:
    try:
        root = psutil.Process(pid)
        procs = [root, *root.children(recursive=True)]
    except psutil.NoSuchProcess as e:
        raise RuntimeError(f"worker process {pid} not found: {e}") from e

    snapshot = []
    for proc in procs:
        try:
            info = proc.as_dict(attrs=_PROCESS_ATTRS)
        except psutil.NoSuchProcess:
            continue
        snapshot.append({key: _plain(value) for key, value in info.items()})
    return snapshot


def _host_snapshot() -> dict[str, Any]:
    return {
        "platform": platform.platform(),
        "python": platform.python_version(),
        "cpu_count_logical": psutil.cpu_count(logical=True),
        "cpu_count_physical": psutil.cpu_count(logical=False),
        "virtual_memory": psutil.virtual_memory()._asdict(),
        "boot_time": psutil.boot_time(),
        "collected_at": time.time(),
    }


def _write_json(path: Path, data: Any) -> None:
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
