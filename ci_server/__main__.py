"""
Entrypoint for the dashboard: HTTP server and build reconciler in one process.

Usage:
    python -m ci_server [OPTIONS]
    ci-dashboard [OPTIONS]  (after pip install)

Accepts every ci-controller option plus:
    --port / CI_PORT: HTTP port (default: 8080)
    --hostname / CI_HOSTNAME: Apex host name for build links (default: learned)
    --cert-dir / CI_CERT_DIR: Directory with key.pem and cert.pem to serve TLS
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import Any

import uvicorn

from ci_common.config import add_settings_arguments, settings_from_args
from ci_controller.reconciler import Reconciler, ReconcileError

from .app import create_app, create_dispatcher

logger = logging.getLogger(__name__)


class DashboardServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to run_dashboard."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="CI Dashboard - builds every GitHub branch and serves the results",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Builds are served per host name:
  http://<branch>.<commit|latest>.<mainnet|testnet>.<dev|normal|min>.<apex>:<port>

Examples:
  ci-dashboard --builds /srv/builds --port 8080 --hostname example.com
  ci-dashboard --cert-dir /etc/ci-dashboard/tls --port 443
        """,
    )
    add_settings_arguments(parser, include_server=True)
    return parser.parse_args()


async def run_dashboard(args: argparse.Namespace) -> None:
    """
    Run the HTTP server and the reconciler until a signal or a failed pass.

    Raises:
        ReconcileError: If a reconciliation pass failed
    """
    settings = settings_from_args(args)
    reconciler = Reconciler.from_settings(settings)
    dispatcher = create_dispatcher(
        settings, reconciler.github, reconciler.artifacts, reconciler
    )
    app = create_app(dispatcher)

    ssl_files = settings.ssl_files
    keyfile, certfile = ssl_files if ssl_files else (None, None)
    server = DashboardServer(
        uvicorn.Config(
            app,
            host="0.0.0.0",
            port=settings.port,
            ssl_keyfile=keyfile,
            ssl_certfile=certfile,
            log_level=args.log_level.lower(),
        )
    )

    logger.info("Starting CI Dashboard")
    logger.info(f"  Repository: {settings.repository}")
    logger.info(f"  Builds: {settings.builds_dir}")
    logger.info(f"  Port: {settings.port} ({'https' if ssl_files else 'http'})")
    logger.info(f"  Apex host: {settings.hostname or '(learned from requests)'}")
    logger.info(f"  Reconcile interval: {settings.interval_minutes} min")

    shutdown_event = asyncio.Event()

    def signal_handler(sig: Any, _frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {sig}, initiating graceful shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await reconciler.start()
    serving = asyncio.create_task(server.serve())
    shutdown = asyncio.create_task(shutdown_event.wait())
    finished = asyncio.create_task(reconciler.wait())
    try:
        await asyncio.wait(
            {serving, shutdown, finished}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        shutdown.cancel()
        server.should_exit = True
        logger.info("Stopping reconciler (a running build is allowed to finish)...")
        await reconciler.stop()
        await asyncio.wait([serving])

    await finished
    # Surfaces a server startup failure such as a busy port
    await serving
    logger.info("Dashboard stopped cleanly")


def main() -> int:
    """
    Main entrypoint for the dashboard.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        asyncio.run(run_dashboard(args))
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except ReconcileError as e:
        logger.error(f"Build reconciliation failed: {e}")
        return 1
    except SystemExit as e:
        # uvicorn exits when it cannot bind or load TLS files
        return e.code if isinstance(e.code, int) else 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
