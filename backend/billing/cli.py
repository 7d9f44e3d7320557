# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/billing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock ledger:
# - python -m flask inventory low-stock
#   List products at or below their low-stock threshold.
# - python -m flask inventory history 12 --limit 20
#   Show recent stock movements for a product.
# - python -m flask inventory adjust 12 -3 --reason "damaged"
#   Manual stock correction (writes a StockHistory row).
# - python -m flask inventory verify 12
#   Check a product's history chain against its stock counter.
#
# Invoices:
# - python -m flask invoices show INV-000042
#   Print an invoice with its lines and tax split.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Invoice
from .money import money_str
from .services import stock_service
from .services.stock_service import StockError
from .validation import ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including issued invoices!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('inventory')
def inventory_group():
    """Stock ledger inspection and corrections."""


@inventory_group.command('low-stock')
@with_appcontext
def low_stock_cli():
    suggestions = stock_service.get_reorder_suggestions()
    if not suggestions:
        click.echo("PASS No products at or below threshold.")
        return

    click.echo(f"{'ID':<6} {'Product':<32} {'Stock':>7} {'Threshold':>10} {'Reorder':>8}")
    click.echo("-" * 67)
    for row in suggestions:
        click.echo(
            f"{row['product_id']:<6} {row['product_name'][:32]:<32} "
            f"{row['current_stock']:>7} {row['threshold']:>10} {row['suggested_reorder_qty']:>8}"
        )


@inventory_group.command('history')
@click.argument('product_id', type=int)
@click.option('--limit', default=50, show_default=True, help='Number of movements to show')
@with_appcontext
def history_cli(product_id, limit):
    try:
        rows = stock_service.get_stock_history(product_id, limit=limit)
    except StockError as e:
        raise click.ClickException(str(e))

    if not rows:
        click.echo("No stock movements recorded.")
        return

    for row in rows:
        reference = f"{row.reference_type or '-'}:{row.reference_id or '-'}"
        click.echo(
            f"{row.id:>6}  {row.created_at}  {row.change_type:<10} "
            f"{row.quantity_change:>+6}  -> {row.balance_after:>6}  {reference}  {row.notes or ''}"
        )


@inventory_group.command('adjust', context_settings={'ignore_unknown_options': True})
@click.argument('product_id', type=int)
@click.argument('delta', type=int)
@click.option('--reason', required=True, help='Why the stock is being corrected')
@with_appcontext
def adjust_cli(product_id, delta, reason):
    try:
        entry = stock_service.adjust_stock(product_id, delta, reason)
    except (StockError, ValidationError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Stock adjusted by {entry.quantity_change:+d}; balance now {entry.balance_after}.")


@inventory_group.command('verify')
@click.argument('product_id', type=int)
@with_appcontext
def verify_cli(product_id):
    try:
        problems = stock_service.verify_history(product_id)
    except StockError as e:
        raise click.ClickException(str(e))

    if not problems:
        click.echo("PASS Stock history is consistent.")
        return
    for problem in problems:
        click.echo(f"FAIL {problem}")
    raise SystemExit(1)


@click.group('invoices')
def invoices_group():
    """Invoice inspection."""


@invoices_group.command('show')
@click.argument('invoice_number')
@with_appcontext
def show_invoice_cli(invoice_number):
    invoice = db.session.query(Invoice).filter_by(invoice_number=invoice_number).first()
    if invoice is None:
        raise click.ClickException(f"Invoice {invoice_number} not found")

    customer = invoice.customer.name if invoice.customer else "-"
    click.echo(f"{invoice.invoice_number}  [{invoice.status}]  {invoice.invoice_type.upper()}  customer: {customer}")
    click.echo("-" * 72)
    for item in invoice.items:
        click.echo(
            f"{item.product_name[:30]:<30} {item.quantity:>5} x {money_str(item.price):>10} "
            f"@ {money_str(item.gst_rate):>5}% = {money_str(item.total_amount):>12}"
        )
    click.echo("-" * 72)
    click.echo(f"{'Subtotal':<50}{money_str(invoice.subtotal):>22}")
    if invoice.gst_type == "igst":
        click.echo(f"{'IGST':<50}{money_str(invoice.igst_amount):>22}")
    else:
        click.echo(f"{'CGST':<50}{money_str(invoice.cgst_amount):>22}")
        click.echo(f"{'SGST':<50}{money_str(invoice.sgst_amount):>22}")
    click.echo(f"{'Total':<50}{money_str(invoice.total_amount):>22}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(invoices_group)
