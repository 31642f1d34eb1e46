"""
Runtime configuration shared by the dashboard, the controller and the admin CLI.

Every setting is resolved in priority order:
1. Command line argument
2. Environment variable
3. Built-in default

Environment Variables:
    CI_BUILDS_DIR: Builds root directory (default: builds)
    CI_PORT: HTTP port (default: 8080)
    CI_INTERVAL: Minutes between reconciliation passes (default: 5)
    CI_HOSTNAME: Apex host name used in build links (default: learned from requests)
    CI_CERT_DIR: Directory holding key.pem and cert.pem for TLS (default: plain HTTP)
    CI_LEDGER_PATH: Build ledger JSON file (default: meta.json)
    CI_MAX_BUILDS: Builds kept per branch (default: 50)
    CI_GITHUB_REPO: Repository as "owner/name" (default: wavesplatform/WavesGUI)
    CI_GITHUB_TOKEN: Optional GitHub API token
    CI_INSTALL_COMMAND: Package install command (default: npm install)
    CI_BUILD_COMMAND: Build task command (default: npx gulp all)
"""

import argparse
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_BUILDS_DIR = "builds"
DEFAULT_PORT = 8080
DEFAULT_INTERVAL_MINUTES = 5.0
DEFAULT_LEDGER_PATH = "meta.json"
DEFAULT_MAX_BUILDS = 50
DEFAULT_REPOSITORY = "wavesplatform/WavesGUI"
DEFAULT_INSTALL_COMMAND = "npm install"
DEFAULT_BUILD_COMMAND = "npx gulp all"

KEY_FILE = "key.pem"
CERT_FILE = "cert.pem"


@dataclass
class Settings:
    """Resolved configuration of a dashboard process."""

    builds_dir: Path = Path(DEFAULT_BUILDS_DIR)
    port: int = DEFAULT_PORT
    interval_minutes: float = DEFAULT_INTERVAL_MINUTES
    hostname: str | None = None
    cert_dir: Path | None = None
    ledger_path: Path = Path(DEFAULT_LEDGER_PATH)
    max_builds: int = DEFAULT_MAX_BUILDS
    repository: str = DEFAULT_REPOSITORY
    github_token: str | None = None
    install_command: list[str] = field(
        default_factory=lambda: shlex.split(DEFAULT_INSTALL_COMMAND)
    )
    build_command: list[str] = field(
        default_factory=lambda: shlex.split(DEFAULT_BUILD_COMMAND)
    )

    @property
    def project_name(self) -> str:
        """Repository name without the owner."""
        return self.repository.rsplit("/", 1)[-1]

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60

    @property
    def ssl_files(self) -> tuple[str, str] | None:
        """(keyfile, certfile) when TLS is configured, None otherwise."""
        if self.cert_dir is None:
            return None
        return str(self.cert_dir / KEY_FILE), str(self.cert_dir / CERT_FILE)


def add_settings_arguments(
    parser: argparse.ArgumentParser, include_server: bool = True
) -> None:
    """
    Register the command-line flags understood by settings_from_args.

    Args:
        parser: Parser to extend
        include_server: Also register HTTP server flags (port, hostname, TLS)
    """
    parser.add_argument(
        "--builds",
        type=str,
        default=None,
        help=f"Builds root directory (default: CI_BUILDS_DIR env or {DEFAULT_BUILDS_DIR})",
    )
    parser.add_argument(
        "--interval",
        type=str,
        default=None,
        help="Minutes between reconciliation passes (default: CI_INTERVAL env or 5)",
    )
    parser.add_argument(
        "--ledger",
        type=str,
        default=None,
        help=f"Build ledger file (default: CI_LEDGER_PATH env or {DEFAULT_LEDGER_PATH})",
    )
    parser.add_argument(
        "--max-builds",
        type=str,
        default=None,
        help="Builds kept per branch (default: CI_MAX_BUILDS env or 50)",
    )
    parser.add_argument(
        "--repository",
        type=str,
        default=None,
        help=f"GitHub repository owner/name (default: CI_GITHUB_REPO env or {DEFAULT_REPOSITORY})",
    )
    parser.add_argument(
        "--install-command",
        type=str,
        default=None,
        help=f"Package install command (default: CI_INSTALL_COMMAND env or '{DEFAULT_INSTALL_COMMAND}')",
    )
    parser.add_argument(
        "--build-command",
        type=str,
        default=None,
        help=f"Build task command (default: CI_BUILD_COMMAND env or '{DEFAULT_BUILD_COMMAND}')",
    )
    if include_server:
        parser.add_argument(
            "--port",
            type=str,
            default=None,
            help=f"HTTP port (default: CI_PORT env or {DEFAULT_PORT})",
        )
        parser.add_argument(
            "--hostname",
            type=str,
            default=None,
            help="Apex host name for build links (default: CI_HOSTNAME env or learned)",
        )
        parser.add_argument(
            "--cert-dir",
            type=str,
            default=None,
            help="Directory with key.pem/cert.pem to serve TLS (default: CI_CERT_DIR env)",
        )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )


def _pick(cli_value: str | None, env_name: str) -> str | None:
    if cli_value is not None:
        return cli_value
    return os.environ.get(env_name)


def _positive_float(raw: str | None, name: str, default: float) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Invalid {name}={value}, using default {default}")
        return default
    return value


def _bounded_int(raw: str | None, name: str, default: int, low: int, high: int) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw}, using default {default}")
        return default
    if not low <= value <= high:
        logger.warning(f"Invalid {name}={value}, using default {default}")
        return default
    return value


def _command(raw: str | None, default: str) -> list[str]:
    parts = shlex.split(raw) if raw else []
    return parts or shlex.split(default)


def settings_from_args(args: argparse.Namespace | None = None) -> Settings:
    """
    Resolve settings from parsed arguments, environment and defaults.

    Args:
        args: Parsed command-line arguments; None uses environment and defaults only

    Returns:
        Resolved settings
    """
    args = args or argparse.Namespace()

    def arg(name: str) -> str | None:
        return getattr(args, name, None)

    builds = _pick(arg("builds"), "CI_BUILDS_DIR") or DEFAULT_BUILDS_DIR
    ledger = _pick(arg("ledger"), "CI_LEDGER_PATH") or DEFAULT_LEDGER_PATH
    hostname = _pick(arg("hostname"), "CI_HOSTNAME") or None
    cert_dir = _pick(arg("cert_dir"), "CI_CERT_DIR") or None

    return Settings(
        builds_dir=Path(builds),
        port=_bounded_int(_pick(arg("port"), "CI_PORT"), "port", DEFAULT_PORT, 1, 65535),
        interval_minutes=_positive_float(
            _pick(arg("interval"), "CI_INTERVAL"), "interval", DEFAULT_INTERVAL_MINUTES
        ),
        hostname=hostname,
        cert_dir=Path(cert_dir) if cert_dir else None,
        ledger_path=Path(ledger),
        max_builds=_bounded_int(
            _pick(arg("max_builds"), "CI_MAX_BUILDS"),
            "max_builds",
            DEFAULT_MAX_BUILDS,
            1,
            1_000_000,
        ),
        repository=_pick(arg("repository"), "CI_GITHUB_REPO") or DEFAULT_REPOSITORY,
        github_token=os.environ.get("CI_GITHUB_TOKEN") or None,
        install_command=_command(
            _pick(arg("install_command"), "CI_INSTALL_COMMAND"), DEFAULT_INSTALL_COMMAND
        ),
        build_command=_command(
            _pick(arg("build_command"), "CI_BUILD_COMMAND"), DEFAULT_BUILD_COMMAND
        ),
    )
