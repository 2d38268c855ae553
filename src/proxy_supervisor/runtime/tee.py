"""Duplicate worker output to the console and to per-stream log files.

The log files only ever receive bytes the worker wrote, so they stay a
faithful transcript. Runtime status lines go to the console writers only.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import BinaryIO

__all__ = [
    "STDOUT_LOG",
    "STDERR_LOG",
    "READ_CHUNK_SIZE",
    "StreamTee",
    "open_log_tees",
    "pump",
]

logger = logging.getLogger(__name__)

STDOUT_LOG = "stdout.log"
STDERR_LOG = "stderr.log"
READ_CHUNK_SIZE = 4096


class StreamTee:
    """Write every chunk to a console writer and an append-only log file.

    Attributes:
        console: Console destination (shared with runtime status lines)
        log_path: Path of the log file dedicated to this stream
    """

    def __init__(self, console: BinaryIO, log_path: Path) -> None:
        self.console = console
        self.log_path = log_path
        self._log: BinaryIO | None = open(log_path, "ab")
        self._console_broken = False

    @property
    def closed(self) -> bool:
        return self._log is None

    @property
    def console_broken(self) -> bool:
        """Whether console writes were abandoned after a failure."""
        return self._console_broken

    def write(self, chunk: bytes) -> None:
        """Forward a chunk verbatim to both destinations.

        The log file is written first. A failing console (closed or broken
        pipe) is dropped for the rest of the run so the worker's pipe keeps
        being drained and the log stays complete.
        """
        if not chunk:
            return
        if self._log is not None:
            try:
                self._log.write(chunk)
                self._log.flush()
            except OSError as e:
                logger.warning(f"Unable to write {self.log_path}, closing it: {e}")
                log, self._log = self._log, None
                with contextlib.suppress(OSError):
                    log.close()
        if self._console_broken:
            return
        try:
            self.console.write(chunk)
            self.console.flush()
        except (OSError, ValueError) as e:
            self._console_broken = True
            logger.warning(
                f"Console write failed, further output only goes to {self.log_path.name}: {e}"
            )

    def close(self) -> None:
        """Flush and close the log file. The console writer is not owned."""
        if self._log is not None:
            log, self._log = self._log, None
            log.close()


def open_log_tees(
    run_dir: Path,
    stdout: BinaryIO,
    stderr: BinaryIO,
) -> tuple[StreamTee, StreamTee]:
    """Create the stdout/stderr tees and their log files in run_dir."""
    out_tee = StreamTee(stdout, run_dir / STDOUT_LOG)
    try:
        err_tee = StreamTee(stderr, run_dir / STDERR_LOG)
    except OSError:
        out_tee.close()
        raise
    return out_tee, err_tee


async def pump(reader: asyncio.StreamReader | None, tee: StreamTee) -> int:
    """Copy a child stream into a tee until EOF.

    Args:
        reader: The child's stdout or stderr pipe
        tee: Destination tee

    Returns:
        Number of bytes forwarded
    """
    total = 0
    if reader is None:
        return total

    while True:
        chunk = await reader.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        tee.write(chunk)
        total += len(chunk)

    logger.debug(f"Stream drained to {tee.log_path.name} ({total} bytes)")
    return total
