# Overview: Flask CLI command groups for bootstrap, ledger reconciliation, and stock inspection.

# backend/billing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (prefer `flask db upgrade` once migrations are in use).
# - python -m flask system seed-demo
#   Idempotent demo data: a few products with opening stock and two customers.
#
# Ledger reconciliation:
# - python -m flask ledger reconcile [--product-id 1] [--customer-id 1]
#   Compare cached stock/balances with their ledgers. Reports only, never
#   rewrites; exits 1 when any divergence is found.
#
# Stock inspection:
# - python -m flask products low-stock [--threshold 10]
#   Active products at or below the threshold.

import sys
from decimal import Decimal

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Customer
from .services.customers_service import create_customer
from .services.inventory_service import get_low_stock_products
from .services.products_service import create_product
from .services.reconciliation_service import reconcile_all


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Database tables created")


DEMO_PRODUCTS = [
    {"name": "Paracetamol 500mg", "hsn_code": "3004", "rate": Decimal("120.00"), "mrp": Decimal("150.00"), "gst_percentage": 12, "opening": 100},
    {"name": "Cough Syrup 100ml", "hsn_code": "3004", "rate": Decimal("85.50"), "mrp": Decimal("99.00"), "gst_percentage": 12, "opening": 40},
    {"name": "Bandage Roll", "hsn_code": "3005", "rate": Decimal("25.00"), "mrp": Decimal("30.00"), "gst_percentage": 5, "opening": 8},
]

DEMO_CUSTOMERS = [
    {"name": "City Medical Store", "phone": "9800000001", "payment_type": "CREDIT"},
    {"name": "Walk-in Customer", "phone": "9800000002", "payment_type": "CASH"},
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo products and customers (skips any that already exist)."""
    for row in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(name=row["name"]).first():
            click.echo(f"WARN  Product '{row['name']}' already exists, skipping...")
            continue
        patch = {k: v for k, v in row.items() if k != "opening"}
        product = create_product(patch=patch, opening_stock_qty=row["opening"], actor="seed")
        click.echo(f"PASS Created product: {product.name} (ID: {product.id}, stock {product.current_stock_qty})")

    for row in DEMO_CUSTOMERS:
        if db.session.query(Customer).filter_by(phone=row["phone"]).first():
            click.echo(f"WARN  Customer '{row['name']}' already exists, skipping...")
            continue
        customer = create_customer(patch=dict(row), actor="seed")
        click.echo(f"PASS Created customer: {customer.name} (ID: {customer.id})")


@click.group('ledger')
def ledger_group():
    """Stock and balance ledger commands."""


@ledger_group.command('reconcile')
@click.option('--product-id', type=int, default=None, help='Only check this product')
@click.option('--customer-id', type=int, default=None, help='Only check this customer')
@with_appcontext
def reconcile(product_id, customer_id):
    """Report products/customers whose cached value differs from the ledger sum."""
    divergences = reconcile_all(product_id=product_id, customer_id=customer_id)

    if not divergences:
        click.echo("PASS Ledgers are consistent")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'Type':<10} {'ID':<6} {'Cached':<20} {'Ledger'}")
    click.echo("="*70)
    for d in divergences:
        click.echo(f"{d['entity_type']:<10} {d['entity_id']:<6} {str(d['cached']):<20} {d['ledger']}")
    click.echo("="*70)
    click.echo(f"FAIL {len(divergences)} divergence(s) found; reconcile manually, nothing was changed")
    sys.exit(1)


@click.group('products')
def products_group():
    """Product and stock inspection commands."""


@products_group.command('low-stock')
@click.option('--threshold', type=int, default=None, help='Defaults to LOW_STOCK_THRESHOLD')
@with_appcontext
def low_stock(threshold):
    """List active products at or below the low-stock threshold."""
    products = get_low_stock_products(threshold)
    if not products:
        click.echo("No products are low on stock.")
        return

    click.echo(f"{'ID':<6} {'Name':<35} {'Stock'}")
    for p in products:
        click.echo(f"{p.id:<6} {p.name:<35} {p.current_stock_qty}")


def register_commands(app):
    """Register all CLI command groups with the app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(products_group)
