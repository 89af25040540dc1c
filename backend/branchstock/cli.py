# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/branchstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to branchstock (PowerShell: $env:FLASK_APP="branchstock").
# - Use: python -m flask <group> <command> [options]
#
# Database bootstrap:
# - python -m flask db-tools init
#   Create all tables that do not exist yet (idempotent).
# - python -m flask db-tools reset --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock inspection:
# - python -m flask stock check [--branch-id 1]
#   Compare cached stock with the ledger; exits 1 when discrepancies exist.
# - python -m flask stock replay --product-id 7
#   Recompute one product's stock from its movements.
#
# Sales:
# - python -m flask sales next-id --date 2026-10-19
#   Allocate the next sale id for a day (consumes the number).

from datetime import datetime

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import InventoryError
from .services import analytics_service
from .services.sequence_service import SequenceError, next_sale_id
from .services.stock_service import get_product, replay_stock


@click.group('db-tools')
def db_tools_group():
    """Database bootstrap commands."""


@db_tools_group.command('init')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left untouched)."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("PASS Tables created.")


@db_tools_group.command('reset')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the stock ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('stock')
def stock_group():
    """Stock and ledger consistency commands."""


@stock_group.command('check')
@click.option('--branch-id', type=int, default=None, help='Limit the scan to one branch')
@with_appcontext
@click.pass_context
def check_stock(ctx, branch_id):
    """Report products whose current stock disagrees with the ledger."""
    rows = analytics_service.detect_discrepancies(branch_id=branch_id)
    if not rows:
        click.echo("PASS No discrepancies found.")
        return

    click.echo(f"FAIL {len(rows)} discrepancies found:")
    for row in rows:
        click.echo(
            f"  product {row['product_id']} ({row['code']}) branch {row['branch_id']}: "
            f"current={row['current_stock']} ledger={row['ledger_stock']} "
            f"difference={row['difference']}"
        )
    ctx.exit(1)


@stock_group.command('replay')
@click.option('--product-id', type=int, required=True)
@with_appcontext
@click.pass_context
def replay_product(ctx, product_id):
    """Recompute stock from movements and compare with current_stock."""
    try:
        product = get_product(product_id, require_active=False)
    except InventoryError as e:
        click.echo(f"ERROR {e.message}")
        ctx.exit(2)

    replayed = replay_stock(product.id)
    click.echo(f"Product {product.id} ({product.code}): current={product.current_stock} replayed={replayed}")
    if replayed != product.current_stock:
        click.echo("FAIL Ledger replay does not match current stock.")
        ctx.exit(1)
    click.echo("PASS Ledger replay matches current stock.")


@click.group('sales')
def sales_group():
    """Sale id commands."""


@sales_group.command('next-id')
@click.option('--date', 'day', default=None, help='Business date (YYYY-MM-DD); defaults to today (UTC)')
@click.option('--prefix', default=None, help='Override SALE_ID_PREFIX')
@with_appcontext
def next_id(day, prefix):
    """Allocate and print the next sale id for a day."""
    business_day = None
    if day:
        try:
            business_day = datetime.strptime(day, "%Y-%m-%d").date()
        except ValueError:
            raise click.BadParameter("expected YYYY-MM-DD", param_hint="--date")

    try:
        click.echo(next_sale_id(business_day, prefix=prefix))
    except (SequenceError, InventoryError) as e:
        raise click.ClickException(str(e))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(db_tools_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(sales_group)
