"""
Entrypoint for running the mirror controller.

Two modes:
- Service mode (default): drain the run queue in the database forever,
  executing queued runs one at a time.
- One-shot mode (--once): run the pipeline for the push described by the
  CI runner's event file, the way a push-triggered workflow job does.

Usage:
    python -m mirror_controller [OPTIONS]
    mirror-controller [OPTIONS]  (after pip install)

Environment Variables:
    MIRROR_DB_PATH: Database path (default: mirror_runs.db)
    MIRROR_POLL_INTERVAL: Seconds between queue checks (default: 2.0)
    GITHUB_EVENT_PATH: Push event payload for --once
    See mirror_common.config for the pipeline settings.
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from mirror_common.config import MirrorConfig, parse_interval
from mirror_common.models import PushEvent
from mirror_persistence.sqlite_repository import SQLiteRunRepository

from .controller import RunController
from .pipeline import MirrorPipeline

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Mirror Controller - push git subrepos to their discrete repositories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  MIRROR_DB_PATH          Database path (default: mirror_runs.db)
  MIRROR_POLL_INTERVAL    Seconds between queue checks (default: 2.0)
  MIRROR_BRANCH           Branch whose pushes are mirrored (default: mi_dev)
  MIRROR_INTEGRAL_REPO    Integral repository URL
  MIRROR_WORK_DIR         Directory the integral repository is cloned into
  SSH_KEY                 Private key for authenticated clones and pushes
  GITHUB_EVENT_PATH       Push event payload (used by --once)
  GITHUB_ENV              File recorded variables are exported to

Note: Command-line arguments override environment variables.

Examples:
  # Serve the queue with default settings
  mirror-controller

  # Mirror the push that triggered the current CI job
  mirror-controller --once

  # Use a custom database and poll interval
  mirror-controller --db-path /tmp/mirror_runs.db --interval 5.0
        """,
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run the pipeline for a single push event and exit",
    )
    parser.add_argument(
        "--event-path",
        type=str,
        default=None,
        help="Push event JSON for --once (default: GITHUB_EVENT_PATH env)",
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="Path to SQLite database file (default: MIRROR_DB_PATH env or mirror_runs.db)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between queue checks (default: MIRROR_POLL_INTERVAL env or 2.0)",
    )
    parser.add_argument(
        "--branch",
        type=str,
        default=None,
        help="Branch whose pushes are mirrored (default: MIRROR_BRANCH env or mi_dev)",
    )
    parser.add_argument(
        "--work-dir",
        type=str,
        default=None,
        help="Directory the integral repository is cloned into (default: MIRROR_WORK_DIR env or cwd)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> MirrorConfig:
    """
    Build the configuration from the environment and CLI overrides.

    Args:
        args: Parsed command-line arguments

    Returns:
        Effective configuration
    """
    config = MirrorConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.db_path:
        overrides["db_path"] = args.db_path
    if args.interval is not None:
        overrides["poll_interval"] = parse_interval(args.interval)
    if args.branch:
        overrides["branch"] = args.branch
    if args.work_dir:
        overrides["work_dir"] = Path(args.work_dir)
    return replace(config, **overrides)


def load_push_event(args: argparse.Namespace) -> PushEvent:
    """
    Load the push event for --once mode.

    Args:
        args: Parsed command-line arguments

    Returns:
        The push event to mirror

    Raises:
        ValueError: If no event file is available or it is not a push payload
    """
    event_path = args.event_path or os.environ.get("GITHUB_EVENT_PATH")
    if not event_path:
        raise ValueError("No push event: pass --event-path or set GITHUB_EVENT_PATH")

    with open(event_path, encoding="utf-8") as f:
        payload = json.load(f)
    return PushEvent.from_github_payload(payload)


async def run_once(config: MirrorConfig, event: PushEvent) -> bool:
    """
    Run the pipeline for one push, printing its log to stdout.

    Returns:
        True if the run succeeded or was skipped
    """
    pipeline = MirrorPipeline(config)
    async for run_event in pipeline.run(event):
        if run_event.type == "step":
            print(f"==> {run_event.data}", flush=True)
        elif run_event.type == "log":
            print(run_event.data, end="", flush=True)
    return pipeline.result.success


async def run_controller(config: MirrorConfig) -> None:
    """
    Initialize and run the run controller.

    Runs until interrupted by SIGINT or SIGTERM.
    """
    logger.info("Starting Mirror Controller")
    logger.info(f"  Database: {config.db_path}")
    logger.info(f"  Branch: {config.branch}")
    logger.info(f"  Integral repository: {config.integral_repo}")
    logger.info(f"  Poll interval: {config.poll_interval}s")

    # Initialize repository (the controller owns the schema)
    repository = SQLiteRunRepository(config.db_path)
    await repository.initialize()
    logger.info("Database initialized")

    controller = RunController(
        repository=repository,
        pipeline_factory=lambda: MirrorPipeline(config),
        poll_interval=config.poll_interval,
    )

    # Set up signal handlers for graceful shutdown
    shutdown_event = asyncio.Event()

    def signal_handler(sig: Any, _frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {sig}, initiating graceful shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await controller.start()
        logger.info("Controller started successfully")

        await shutdown_event.wait()

    except Exception as e:
        logger.error(f"Controller error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Stopping controller...")
        await controller.stop()
        logger.info("Closing database connections...")
        await repository.close()
        logger.info("Controller stopped cleanly")


def main(argv: list[str] | None = None) -> int:
    """
    Main entrypoint for the controller.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = build_config(args)

    if args.once:
        try:
            event = load_push_event(args)
            success = asyncio.run(run_once(config, event))
        except (OSError, ValueError) as e:
            logger.error(f"Cannot run pipeline: {e}")
            return 1
        return 0 if success else 1

    try:
        asyncio.run(run_controller(config))
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
