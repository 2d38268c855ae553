"""proxy-supervisor entry point.

Wires configuration, logging and signal handling around WorkerRuntime.
Resolving which binary to run is the caller's job: the binary path is
passed directly on the command line.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

from .config import Config, get_config
from .errors import SupervisorError
from .hooks import enable_admin_data_collection, enable_node_collection
from .runtime import RunOptions, WorkerRuntime
from .signal_manager import SignalManager

__all__ = ["build_parser", "main", "run_worker"]

logger = logging.getLogger(__name__)

# 128 + SIGINT
FORCE_EXIT_CODE = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proxy-supervisor",
        description="Run a proxy binary and archive its run directory when it stops.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the worker until it exits or Ctrl+C")
    run.add_argument("--run-dir", type=Path, default=None,
                     help="Run directory (default: a new directory under PSV_RUNS_DIR)")
    run.add_argument("--keep-run-dir", action="store_true", default=None,
                     help="Do not archive and delete the run directory")
    run.add_argument("--shutdown-timeout", type=float, default=None,
                     help="Seconds to wait for graceful shutdown before killing")
    run.add_argument("binary", type=Path, help="Path to the worker binary")
    run.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to the worker")
    return parser


def _new_run_dir(config: Config) -> Path:
    run_dir = config.runs_dir / str(time.time_ns())
    run_dir.mkdir(parents=True, exist_ok=False)
    return run_dir


def _options_from_args(args: argparse.Namespace, config: Config) -> RunOptions:
    run_dir = args.run_dir
    if run_dir is None:
        run_dir = _new_run_dir(config)
    else:
        run_dir.mkdir(parents=True, exist_ok=True)

    worker_args = list(args.args)
    if worker_args and worker_args[0] == "--":
        worker_args = worker_args[1:]

    return RunOptions(
        binary_path=args.binary,
        run_dir=run_dir,
        args=tuple(worker_args),
        keep_run_dir=config.keep_run_dir if args.keep_run_dir is None else args.keep_run_dir,
        shutdown_timeout=(
            config.shutdown_timeout if args.shutdown_timeout is None else args.shutdown_timeout
        ),
    )


async def run_worker(options: RunOptions, config: Config | None = None) -> int:
    """Run one worker with signal handling and the configured hooks.

    Returns:
        Process exit code for the supervisor
    """
    config = config or get_config()
    runtime = WorkerRuntime(options)
    if config.collect_admin:
        enable_admin_data_collection(runtime)
    if config.collect_node:
        enable_node_collection(runtime)

    cancel = asyncio.Event()
    run_task = asyncio.create_task(runtime.run(cancel), name="worker-runtime")
    signal_manager = SignalManager(cancel, on_force_exit=run_task.cancel)

    await signal_manager.start()
    try:
        await run_task
    except asyncio.CancelledError:
        if not signal_manager.is_force_exit:
            raise
        logger.warning("Force exit requested, worker killed")
        return FORCE_EXIT_CODE
    except SupervisorError as e:
        logger.error(f"Run failed: {e}")
        sys.stderr.write(f"error: {e}\n")
        return 1
    finally:
        await signal_manager.stop()

    return 0


def _configure_logging(config: Config) -> None:
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Third-party libraries stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("proxy_supervisor").setLevel(log_level)


def main(argv: list[str] | None = None) -> int:
    """Command line entry point."""
    config = get_config()
    _configure_logging(config)

    args = build_parser().parse_args(argv)
    logger.debug(f"Starting proxy-supervisor: {config}")

    options = _options_from_args(args, config)
    return asyncio.run(run_worker(options, config))


if __name__ == "__main__":
    sys.exit(main())
