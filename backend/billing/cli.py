# Overview: Flask CLI command groups for bootstrap and ledger maintenance.

# backend/billing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--company "Name"] [--state "Karnataka"]
#   Idempotent bootstrap: creates tables, seeds payment methods and the company profile.
#
# Ledger maintenance:
# - python -m flask ledger verify
#   Compare every product's cached stock with its movement log. Exits 1 on mismatch.
# - python -m flask ledger rebuild --product-id 12
#   Manual repair: re-project one product's cached stock from its movements.
#
# Receivables:
# - python -m flask invoices refresh-overdue [--as-of 2024-01-31]
#   Mark unpaid/partial invoices past their due date as overdue.

import click
from flask.cli import with_appcontext

from .errors import BillingError
from .extensions import db
from .services import company_service, inventory_service, invoice_service
from .time_utils import parse_iso_date


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--company', 'company_name', default='My Restaurant', help='Company name')
@click.option('--state', default=None, help='Seller state (drives CGST/SGST vs IGST)')
@with_appcontext
def init_system(company_name, state):
    """
    Initialize the billing database.

    Creates:
    - All tables (use `flask db upgrade` for managed deployments)
    - Payment methods: Cash, Bank Transfer, UPI, Card, Cheque
    - Company profile with tax defaults from config
    """
    click.echo("START Initializing billing system...")

    db.create_all()
    click.echo("PASS Tables created")

    created = company_service.seed_payment_methods()
    if created:
        click.echo(f"PASS Payment methods created: {', '.join(m.name for m in created)}")
    else:
        click.echo("PASS Payment methods already present")

    profile = company_service.ensure_company_profile(company_name)
    if state and not profile.state:
        profile.state = state
    db.session.commit()

    click.echo(
        f"PASS Company profile: {profile.company_name} "
        f"(state={profile.state or '-'}, tax={profile.tax_name} {profile.default_tax_rate_bps} bps, "
        f"enabled={profile.enable_tax})"
    )
    click.echo("DONE Billing system initialized")


@click.group('ledger')
def ledger_group():
    """Inventory ledger inspection and repair."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger():
    """Report products whose cached stock disagrees with the movement log."""
    mismatches = inventory_service.verify_all_stock()
    if not mismatches:
        click.echo("PASS All product stock matches the movement log")
        return

    for row in mismatches:
        click.echo(
            f"FAIL Product {row['product_id']} ({row['name']}): "
            f"cached={row['cached']} ledger={row['ledger']}"
        )
    click.echo(f"\n{len(mismatches)} product(s) need reconciliation. Run `flask ledger rebuild --product-id <id>`.")
    raise SystemExit(1)


@ledger_group.command('rebuild')
@click.option('--product-id', type=int, required=True, help='Product to repair')
@with_appcontext
def rebuild_ledger(product_id):
    """Re-project one product's cached stock from its movements."""
    try:
        result = inventory_service.rebuild_stock(product_id)
    except BillingError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Product {result['product_id']}: {result['before']} -> {result['after']}")


@click.group('invoices')
def invoices_group():
    """Invoice receivables maintenance."""


@invoices_group.command('refresh-overdue')
@click.option('--as-of', 'as_of', default=None, help='Reference date (YYYY-MM-DD), default today')
@with_appcontext
def refresh_overdue(as_of):
    """Mark unpaid/partial invoices past their due date as overdue."""
    try:
        as_of_date = parse_iso_date(as_of)
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--as-of")
    count = invoice_service.refresh_overdue(as_of_date)
    click.echo(f"PASS {count} invoice(s) marked overdue")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(invoices_group)
