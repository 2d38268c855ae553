"""Environment configuration.

Environment variables:
    PSV_SHUTDOWN_TIMEOUT: Graceful shutdown ceiling in seconds
        - default 5.0, clamped to 0.05-300
        - hook execution time counts against this budget

    PSV_KEEP_RUN_DIR: Leave the run directory in place after the run
        - true/1/yes = keep it, no archive is written
        - false/0/no = archive to <rundir>.tar.gz and delete (default)

    PSV_RUNS_DIR: Base directory for generated run directories
        - default ~/.proxy-supervisor/runs

    PSV_COLLECT_ADMIN: Collect admin endpoint data before shutdown
        - true (default) / false

    PSV_COLLECT_NODE: Collect process and host info before shutdown
        - true (default) / false

    PSV_LOG_DEBUG: Debug logging
        - true/1/yes = DEBUG logs to a temporary file
        - false/0/no = INFO logs to stderr (default)

    PSV_SIGINT_DOUBLE_TAP_WINDOW: Double Ctrl+C window in seconds
        - default 1.0
        - a second Ctrl+C inside the window after shutdown began forces exit
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = [
    "Config",
    "DEFAULT_SHUTDOWN_TIMEOUT",
    "load_config",
    "get_config",
    "reload_config",
]

DEFAULT_SHUTDOWN_TIMEOUT = 5.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(
    value: str | None,
    default: float,
    lower: float,
    upper: float,
) -> float:
    """Parse a float environment variable and clamp it to [lower, upper]."""
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return max(lower, min(parsed, upper))


def _default_runs_dir() -> Path:
    return Path.home() / ".proxy-supervisor" / "runs"


@dataclass
class Config:
    """Supervisor configuration.

    Attributes:
        shutdown_timeout: Graceful shutdown ceiling in seconds
        keep_run_dir: Skip archiving and leave the run directory in place
        runs_dir: Base directory for generated run directories
        collect_admin: Register the admin data collection hook
        collect_node: Register the node info collection hook
        log_debug: Debug logging to a temporary file
        log_file: Log file path (set when log_debug is on)
        sigint_double_tap_window: Double Ctrl+C window in seconds
    """

    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    keep_run_dir: bool = False
    runs_dir: Path = Path(".")
    collect_admin: bool = True
    collect_node: bool = True
    log_debug: bool = False
    log_file: str | None = None
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        return (
            f"Config(shutdown_timeout={self.shutdown_timeout}, "
            f"keep_run_dir={self.keep_run_dir}, "
            f"runs_dir={self.runs_dir}, "
            f"collect_admin={self.collect_admin}, "
            f"collect_node={self.collect_node}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """Return a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "proxy-supervisor"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"psv_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("PSV_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    runs_dir = os.environ.get("PSV_RUNS_DIR")

    return Config(
        shutdown_timeout=_parse_float(
            os.environ.get("PSV_SHUTDOWN_TIMEOUT"),
            DEFAULT_SHUTDOWN_TIMEOUT,
            0.05,
            300.0,
        ),
        keep_run_dir=_parse_bool(os.environ.get("PSV_KEEP_RUN_DIR"), default=False),
        runs_dir=Path(runs_dir).expanduser() if runs_dir else _default_runs_dir(),
        collect_admin=_parse_bool(os.environ.get("PSV_COLLECT_ADMIN"), default=True),
        collect_node=_parse_bool(os.environ.get("PSV_COLLECT_NODE"), default=True),
        log_debug=log_debug,
        log_file=log_file,
        sigint_double_tap_window=_parse_float(
            os.environ.get("PSV_SIGINT_DOUBLE_TAP_WINDOW"),
            1.0,
            0.1,
            10.0,
        ),
    )


# Lazily loaded global instance
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
