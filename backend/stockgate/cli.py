# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/stockgate/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Stock bootstrap/inspection:
# - python -m flask stock init-db
#   Create all tables (dev only; use `flask db upgrade` elsewhere).
# - python -m flask stock seed-demo [--account-id 1]
#   Create a demo product: 5kg loose, 2 boxes, 10kg per box.
# - python -m flask stock pending [--account-id 1]
#   Count requests and sale audits waiting for approval.
# - python -m flask stock summary 1
#   Show current stock and movement totals for a product.

from decimal import Decimal

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import InventoryError
from .models import Product
from .services import inventory_service


@click.group('stock')
def stock_group():
    """Stock bootstrap and inspection commands."""


@stock_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for the configured database."""
    db.create_all()
    click.echo("PASS Tables created")


@stock_group.command('seed-demo')
@click.option('--account-id', default=1, type=int, help='Owning account id')
@with_appcontext
def seed_demo(account_id):
    """Create a demo product if the account has none."""
    existing = db.session.query(Product).filter_by(account_id=account_id).first()
    if existing:
        click.echo(f"PASS Using existing product: {existing.name} (ID: {existing.id})")
        return

    product = Product(
        account_id=account_id,
        name="Tilapia",
        category="fresh",
        loose_kg=Decimal("5"),
        boxes=2,
        box_to_kg_ratio=Decimal("10"),
        cost_per_box=Decimal("40"),
        cost_per_kg=Decimal("4"),
        price_per_box=Decimal("50"),
        price_per_kg=Decimal("5.50"),
        boxed_low_stock_threshold=1,
    )
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product: {product.name} (ID: {product.id}, Account: {account_id})")


@stock_group.command('pending')
@click.option('--account-id', default=None, type=int, help='Limit to one account')
@with_appcontext
def pending(account_id):
    """Summarize everything waiting for an approver."""
    summary = inventory_service.list_pending_approvals(account_id=account_id)
    click.echo(f"Pending approvals: {summary['total']}")
    for kind, count in sorted(summary["mutation_requests"].items()):
        click.echo(f"  movement  {kind:<22} {count}")
    for audit_type, count in sorted(summary["sale_audits"].items()):
        click.echo(f"  sale      {audit_type:<22} {count}")


@stock_group.command('summary')
@click.argument('product_id', type=int)
@with_appcontext
def summary(product_id):
    """Print the stock summary of a product."""
    try:
        data = inventory_service.get_stock_summary(product_id)
    except InventoryError as e:
        raise click.ClickException(e.message)

    stock = data["current_stock"]
    totals = data["totals"]
    click.echo(f"{data['name']} (ID: {data['product_id']})")
    click.echo(f"  boxes:      {stock['boxes']} x {stock['box_to_kg_ratio']}kg")
    click.echo(f"  loose kg:   {stock['loose_kg']}")
    click.echo(f"  total kg:   {stock['total_kg']}")
    click.echo(f"  low stock:  {'yes' if data['is_low_stock'] else 'no'} (threshold {data['low_stock_threshold']})")
    click.echo(f"  restocked:  {totals['boxes_in']} box(es), {totals['kg_in']}kg")
    click.echo(f"  damaged:    {totals['boxes_damaged']} box(es), {totals['kg_damaged']}kg (loss {totals['damage_loss_value']})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
