"""Admin address side-channel.

The worker writes its bound admin address (``host:port``) to the file named
by ``--admin-address-path`` once its listener is up. This lets the worker
use an ephemeral admin port while the supervisor can still reach it from
shutdown hooks.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from ..errors import AdminAddressError, LaunchError

__all__ = [
    "ADMIN_ADDRESS_FLAG",
    "ADMIN_ADDRESS_FILE",
    "AdminEndpointResolver",
    "ensure_admin_address_path",
    "split_host_port",
]

logger = logging.getLogger(__name__)

ADMIN_ADDRESS_FLAG = "--admin-address-path"
ADMIN_ADDRESS_FILE = "admin-address.txt"


def ensure_admin_address_path(
    argv: Sequence[str],
    run_dir: Path,
) -> tuple[list[str], Path]:
    """Make sure argv asks the worker to publish its admin address.

    An existing flag is never overwritten. Otherwise the flag is appended,
    pointing at a file in the run directory (the working directory may be a
    source tree, so it is not used).

    Args:
        argv: Argument vector, binary path first
        run_dir: The run directory

    Returns:
        Tuple of (possibly extended argv, side-channel file path)

    Raises:
        LaunchError: If the flag is present without a value
    """
    args = list(argv)
    for i, arg in enumerate(args):
        if arg == ADMIN_ADDRESS_FLAG:
            if i + 1 == len(args) or args[i + 1] == "":
                raise LaunchError(f'missing value to argument "{ADMIN_ADDRESS_FLAG}"')
            return args, Path(args[i + 1])

    path = run_dir / ADMIN_ADDRESS_FILE
    args.extend([ADMIN_ADDRESS_FLAG, str(path)])
    return args, path


def split_host_port(value: str) -> tuple[str, str]:
    """Split ``host:port`` or ``[ipv6]:port``.

    Raises:
        ValueError: If value is not a host:port pair with a numeric port
    """
    if value.startswith("["):
        end = value.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {value!r}")
        host, rest = value[1:end], value[end + 1:]
        if not rest.startswith(":"):
            raise ValueError(f"missing port in address {value!r}")
        port = rest[1:]
    else:
        host, sep, port = value.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {value!r}")
        if ":" in host:
            raise ValueError(f"too many colons in address {value!r}")
        if "[" in host or "]" in host:
            raise ValueError(f"unexpected bracket in address {value!r}")

    if not (port.isascii() and port.isdigit()) or int(port) > 65535:
        raise ValueError(f"invalid port {port!r} in address {value!r}")
    return host, port


class AdminEndpointResolver:
    """Point check for the worker's admin address.

    ``resolve`` never waits or retries: callers that need to wait for the
    address poll at their own cadence. The first valid address is cached
    for the rest of the run since the worker never rebinds.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._address: str | None = None

    @property
    def cached(self) -> str | None:
        return self._address

    def resolve(self) -> str:
        """Return the admin address in host:port form.

        Raises:
            AdminAddressError: If the file is missing, unreadable or invalid
        """
        if self._address is not None:
            return self._address

        try:
            content = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise AdminAddressError(f"unable to read {self.path}: {e}") from e

        try:
            split_host_port(content)
        except ValueError as e:
            raise AdminAddressError(f"invalid admin address in {self.path}: {e}") from e

        self._address = content
        logger.debug(f"Admin address resolved: {content} (from {self.path})")
        return content
