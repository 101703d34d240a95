# Overview: Flask CLI command groups for bootstrap, inspection, and reconciliation.

# backend/rrfc/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to rrfc (PowerShell: $env:FLASK_APP="rrfc").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent; existing data is kept).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with roles and disabled status.
# - python -m flask users create --email manager@rrfc.local --role manager
#   Create a user (prompts if options are omitted).
#
# Ledger inspection:
# - python -m flask ledger current-mac [--item-id ITEM-001]
#   Show the latest valuation snapshot for one item, or for every item.
# - python -m flask ledger verify [--item-id ITEM-001]
#   Replay the ledger and compare with the latest snapshot (exit 1 on drift).

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .errors import LedgerError
from .models import AppUser, Item, Role
from .services.catalog_service import create_user
from .services import valuation_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    click.echo("BUILD  Creating missing tables...")
    db.create_all()
    click.echo("PASS Database ready")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the append-only ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with roles and disabled status."""
    users = db.session.query(AppUser).order_by(AppUser.email).all()
    if not users:
        click.echo("No users found. Create one with 'python -m flask users create'.")
        return

    for user in users:
        status = "DISABLED" if user.disabled else "active"
        click.echo(f"{user.id}  {user.email:<32} {user.role:<8} {status}")


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--display-name', default=None, help='Display name')
@click.option('--role', type=click.Choice([r.value for r in Role]), prompt=True, help='Role')
@with_appcontext
def create_user_cli(email, display_name, role):
    """Create a new application user."""
    try:
        user = create_user(email=email, role=role, display_name=display_name)
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


# =============================================================================
# LEDGER INSPECTION COMMANDS
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Valuation inspection and reconciliation commands."""


def _format_snapshot(snap) -> str:
    return (
        f"{snap.item_id:<20} qty={snap.quantity_on_hand} mac={snap.mac} "
        f"value={snap.total_value} as_of={snap.snapshot_date.isoformat()}"
    )


@ledger_group.command('current-mac')
@click.option('--item-id', default=None, help='Item ID (all items when omitted)')
@with_appcontext
def current_mac_cli(item_id):
    """Show the latest valuation snapshot."""
    if item_id:
        try:
            snap = valuation_service.current_mac(item_id)
        except LedgerError as e:
            click.echo(f"FAIL {e.message}")
            raise SystemExit(1)
        click.echo(_format_snapshot(snap))
        return

    snaps = valuation_service.list_current_mac()
    if not snaps:
        click.echo("No valuation snapshots yet.")
        return
    for snap in snaps:
        click.echo(_format_snapshot(snap))


@ledger_group.command('verify')
@click.option('--item-id', default=None, help='Item ID (all items when omitted)')
@with_appcontext
def verify_cli(item_id):
    """
    Replay each item's ledger and compare with its latest snapshot.

    Exits with status 1 when any item has drifted.
    """
    if item_id:
        item_ids = [item_id]
    else:
        item_ids = [row.item_id for row in db.session.query(Item.item_id).order_by(Item.item_id).all()]

    drifted = 0
    for iid in item_ids:
        try:
            report = valuation_service.verify_item(iid)
        except LedgerError as e:
            click.echo(f"FAIL {e.message}")
            drifted += 1
            continue
        except Exception:
            current_app.logger.exception("verification failed for item %s", iid)
            click.echo(f"FAIL {iid}: verification error (see log)")
            drifted += 1
            continue

        if report["consistent"]:
            click.echo(f"PASS {iid} qty={report['snapshot_quantity']} mac={report['snapshot_mac']}")
        else:
            drifted += 1
            click.echo(
                f"FAIL {iid} snapshot qty={report['snapshot_quantity']} mac={report['snapshot_mac']} | "
                f"ledger qty={report['ledger_quantity']} | "
                f"replay qty={report['replay_quantity']} mac={report['replay_mac']}"
            )

    if drifted:
        click.echo(f"\nWARN {drifted} item(s) failed verification")
        raise SystemExit(1)
    click.echo(f"\nPASS {len(item_ids)} item(s) verified")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
