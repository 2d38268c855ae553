"""Archive and remove the run directory once the worker has exited."""

from __future__ import annotations

import logging
import shutil
import tarfile
from pathlib import Path

import anyio

from ..errors import ArchiveError

__all__ = ["ARCHIVE_SUFFIX", "RunArchiver"]

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"


class RunArchiver:
    """Pack a quiescent run directory into ``<rundir>.tar.gz`` and delete it.

    Must only be used after the worker has exited and the log files are
    closed, so the archive sees the final state of the directory.

    Attributes:
        run_dir: The run directory
        keep_run_dir: Leave the directory untouched and write no archive
    """

    def __init__(self, run_dir: Path, keep_run_dir: bool = False) -> None:
        self.run_dir = Path(run_dir)
        self.keep_run_dir = keep_run_dir

    @property
    def archive_path(self) -> Path:
        return self.run_dir.with_name(self.run_dir.name + ARCHIVE_SUFFIX)

    async def finalize(self) -> Path | None:
        """Archive and remove the run directory unless opted out.

        The tar and delete run in a worker thread.

        Returns:
            The archive path, or None when the directory was kept

        Raises:
            ArchiveError: If the archive could not be written or the
                directory could not be removed
        """
        if self.keep_run_dir:
            logger.debug(f"Keeping run directory {self.run_dir}")
            return None
        return await anyio.to_thread.run_sync(self._archive_and_remove)

    def _archive_and_remove(self) -> Path:
        if not self.run_dir.is_dir():
            raise ArchiveError(f"run directory {self.run_dir} does not exist")

        archive_path = self.archive_path
        try:
            with tarfile.open(archive_path, "w:gz") as tar:
                tar.add(self.run_dir, arcname=self.run_dir.name)
        except (OSError, tarfile.TarError) as e:
            archive_path.unlink(missing_ok=True)
            raise ArchiveError(f"unable to archive run directory {self.run_dir}: {e}") from e

        try:
            shutil.rmtree(self.run_dir)
        except OSError as e:
            raise ArchiveError(f"unable to remove run directory {self.run_dir}: {e}") from e

        logger.debug(f"Archived {self.run_dir} to {archive_path}")
        return archive_path
