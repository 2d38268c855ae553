"""proxy-supervisor - run a proxy binary and finalize its run directory.

Environment variables:
    PSV_SHUTDOWN_TIMEOUT: graceful shutdown ceiling in seconds (default 5)
    PSV_KEEP_RUN_DIR: keep the run directory instead of archiving it
    PSV_RUNS_DIR: base directory for generated run directories

Usage:
    python -m proxy_supervisor run /path/to/envoy -c envoy.yaml
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
