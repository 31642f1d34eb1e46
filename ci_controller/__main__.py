"""
Standalone entrypoint for running the build reconciler without the web server.

Useful when the dashboard pages are served by another process reading the
same builds directory.

Usage:
    python -m ci_controller [OPTIONS]
    ci-controller [OPTIONS]  (after pip install)

Environment Variables:
    CI_BUILDS_DIR: Builds root directory (default: builds)
    CI_INTERVAL: Minutes between reconciliation passes (default: 5)
    CI_LEDGER_PATH: Build ledger file (default: meta.json)
    CI_MAX_BUILDS: Builds kept per branch (default: 50)
    CI_GITHUB_REPO: Repository as owner/name (default: wavesplatform/WavesGUI)
    CI_GITHUB_TOKEN: Optional GitHub API token
    CI_INSTALL_COMMAND: Package install command (default: npm install)
    CI_BUILD_COMMAND: Build task command (default: npx gulp all)
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any

from ci_common.config import add_settings_arguments, settings_from_args
from ci_controller.reconciler import Reconciler, ReconcileError

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="CI Controller - periodic build reconciliation for GitHub branches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Note: Command-line arguments override environment variables.

Examples:
  # Run with default settings
  ci-controller

  # Custom builds directory, rebuild check every minute
  ci-controller --builds /srv/builds --interval 1

  # Enable debug logging
  ci-controller --log-level DEBUG
        """,
    )
    add_settings_arguments(parser, include_server=False)
    return parser.parse_args()


async def run_controller(args: argparse.Namespace) -> None:
    """
    Initialize and run the reconciler.

    Runs until interrupted by SIGINT or SIGTERM, or until a reconciliation
    pass fails.

    Raises:
        ReconcileError: If a reconciliation pass failed
    """
    settings = settings_from_args(args)

    logger.info("Starting CI Controller")
    logger.info(f"  Repository: {settings.repository}")
    logger.info(f"  Builds: {settings.builds_dir}")
    logger.info(f"  Ledger: {settings.ledger_path}")
    logger.info(f"  Reconcile interval: {settings.interval_minutes} min")
    logger.info(f"  Builds kept per branch: {settings.max_builds}")

    reconciler = Reconciler.from_settings(settings)

    # Set up signal handlers for graceful shutdown
    shutdown_event = asyncio.Event()

    def signal_handler(sig: Any, _frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {sig}, initiating graceful shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await reconciler.start()
    shutdown = asyncio.create_task(shutdown_event.wait())
    finished = asyncio.create_task(reconciler.wait())
    try:
        await asyncio.wait({shutdown, finished}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        shutdown.cancel()
        logger.info("Stopping controller (a running build is allowed to finish)...")
        await reconciler.stop()

    # Re-raises the ReconcileError of a failed pass
    await finished
    logger.info("Controller stopped cleanly")


def main() -> int:
    """
    Main entrypoint for the controller.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        asyncio.run(run_controller(args))
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except ReconcileError as e:
        logger.error(f"Build reconciliation failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
