"""
Admin CLI for inspecting the build ledger and running reconciliation by hand.
"""

import asyncio
import json
import logging
import sys

import click

from ci_common.config import settings_from_args
from ci_common.repository import LedgerCorruptedError
from ci_controller.reconciler import Reconciler, ReconcileError
from ci_persistence.json_repository import JSONLedgerRepository


def get_repository() -> JSONLedgerRepository:
    """Get the ledger repository configured by the environment."""
    return JSONLedgerRepository(settings_from_args().ledger_path)


def load_ledger():
    try:
        return get_repository().load()
    except (LedgerCorruptedError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


@click.group()
def cli():
    """CI Admin - Inspect builds and drive the build reconciler."""
    pass


@cli.group()
def ledger():
    """Inspect the build ledger."""
    pass


# ============================================================================
# Ledger Commands
# ============================================================================


@ledger.command("list")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def ledger_list(json_output: bool):
    """List branches with their build counts and newest build."""
    build_ledger = load_ledger()

    rows = []
    for branch in build_ledger.branches():
        records = build_ledger.records(branch)
        newest = records[-1] if records else None
        rows.append(
            {
                "branch": branch,
                "builds": len(records),
                "latest_sha": newest.sha if newest else None,
                "latest_success": newest.success if newest else None,
            }
        )

    if json_output:
        click.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        click.echo("No builds recorded.")
        return

    click.echo(f"\n{'Branch':<40} {'Builds':<8} {'Latest':<42} {'Status':<8}")
    click.echo("-" * 100)
    for row in rows:
        status = "OK" if row["latest_success"] else "FAILED"
        click.echo(
            f"{row['branch']:<40} {row['builds']:<8} {row['latest_sha'] or '-':<42} {status:<8}"
        )
    click.echo()


@ledger.command("show")
@click.argument("branch")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def ledger_show(branch: str, json_output: bool):
    """Show every build recorded for BRANCH, oldest first."""
    build_ledger = load_ledger()

    if branch not in build_ledger.branches():
        click.echo(f"Error: No builds recorded for branch: {branch}", err=True)
        sys.exit(1)

    records = build_ledger.records(branch)
    if json_output:
        click.echo(json.dumps([record.to_dict() for record in records], indent=2))
        return

    click.echo(f"\nBuilds of {branch}:")
    for record in records:
        mark = "✓" if record.success else "✗"
        click.echo(f"  {mark} {record.sha}")
    click.echo()


# ============================================================================
# Reconciliation Commands
# ============================================================================


@cli.command("reconcile")
def reconcile():
    """Run a single reconciliation pass and exit."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    reconciler = Reconciler.from_settings(settings_from_args())

    try:
        run_async(reconciler.reconcile_once())
    except ReconcileError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo("✓ Reconciliation pass complete")
    click.echo(f"  Branches tracked: {len(reconciler.ledger.branches())}")


if __name__ == "__main__":
    cli()
