# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/pos_core/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to pos_core (PowerShell: $env:FLASK_APP="pos_core").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog reference data:
# - python -m flask catalog seed-demo
#   Create a tax configuration, demo products and a demo discount.
# - python -m flask catalog set-tax --name "Sales Tax" --rate-bps 825
#   Create and activate a tax configuration (deactivates the others).
#
# Inventory inspection:
# - python -m flask inventory audit-ledger [--product-id 1]
#   Check stock_quantity against the movement ledger; exits 1 on divergence.
# - python -m flask inventory low-stock
#   List active products at or below their low-stock threshold.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import OrderCoreError
from .models import Discount, Product
from .services import catalog_service, inventory_service


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

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed-demo' for demo data.")


@click.group('catalog')
def catalog_group():
    """Catalog reference data commands."""


DEMO_PRODUCTS = [
    {"sku": "PHN-001", "name": "Smartphone X", "price_cents": 49999, "cost_price_cents": 35000,
     "stock_quantity": 20, "low_stock_threshold": 5, "warranty_months": 12},
    {"sku": "CHG-001", "name": "USB-C Charger", "price_cents": 1999, "cost_price_cents": 800,
     "stock_quantity": 100, "low_stock_threshold": 10, "warranty_months": 6},
    {"sku": "CBL-001", "name": "USB-C Cable 1m", "price_cents": 999, "cost_price_cents": 250,
     "stock_quantity": 150, "low_stock_threshold": 20, "warranty_months": 0},
    {"sku": "CSE-001", "name": "Phone Case", "price_cents": 1499, "cost_price_cents": 400,
     "stock_quantity": 3, "low_stock_threshold": 5, "warranty_months": 0},
]


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create a tax configuration, demo products and a demo discount (idempotent)."""
    if catalog_service.get_active_tax_config() is None:
        catalog_service.set_tax_config("Sales Tax", 825)
        click.echo("  Created tax configuration: Sales Tax (825 bps)")

    for data in DEMO_PRODUCTS:
        if db.session.query(Product.id).filter_by(sku=data["sku"]).first():
            click.echo(f"  SKIP product {data['sku']} (exists)")
            continue
        product = catalog_service.create_product(**data)
        click.echo(f"  Created product {product.sku}: {product.name} (stock {product.stock_quantity})")

    if not db.session.query(Discount.id).filter_by(code="WELCOME10").first():
        catalog_service.create_discount(
            code="WELCOME10",
            name="Welcome 10%",
            discount_type=catalog_service.DISCOUNT_PERCENTAGE,
            value=1000,
            max_discount_cents=5000,
        )
        click.echo("  Created discount WELCOME10 (10%, max 50.00)")

    click.echo("PASS Demo catalog ready.")


@catalog_group.command('set-tax')
@click.option('--name', required=True, help='Tax configuration name')
@click.option('--rate-bps', type=int, required=True, help='Rate in basis points (825 = 8.25%)')
@with_appcontext
def set_tax(name, rate_bps):
    """Create and activate a tax configuration."""
    try:
        config = catalog_service.set_tax_config(name, rate_bps)
    except OrderCoreError as exc:
        click.echo(f"ERROR {exc.message}")
        raise SystemExit(1)
    click.echo(f"PASS Active tax configuration: {config.name} ({config.rate_bps} bps)")


@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('audit-ledger')
@click.option('--product-id', type=int, default=None, help='Only check this product')
@with_appcontext
def audit_ledger(product_id):
    """Verify stock_quantity == opening_quantity + SUM(signed movements)."""
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = [row.id for row in db.session.query(Product.id).order_by(Product.id).all()]

    diverged = 0
    for pid in product_ids:
        try:
            result = inventory_service.verify_stock_ledger(pid)
        except OrderCoreError as exc:
            click.echo(f"ERROR {exc.message}")
            raise SystemExit(1)

        if result["consistent"]:
            click.echo(f"  OK   product {pid}: stock {result['stock_quantity']}")
        else:
            diverged += 1
            click.echo(
                f"  FAIL product {pid}: stock {result['stock_quantity']}, "
                f"ledger expects {result['expected_quantity']}"
            )

    if diverged:
        click.echo(f"FAIL {diverged} of {len(product_ids)} products diverged from the ledger.")
        raise SystemExit(1)
    click.echo(f"PASS {len(product_ids)} products consistent with the ledger.")


@inventory_group.command('low-stock')
@with_appcontext
def low_stock():
    """List active products at or below their low-stock threshold."""
    products = inventory_service.list_low_stock_products()
    if not products:
        click.echo("No products at or below their low-stock threshold.")
        return

    click.echo("\n" + "=" * 70)
    click.echo(f"{'ID':<5} {'SKU':<15} {'Name':<30} {'Stock':<8} {'Threshold'}")
    click.echo("-" * 70)
    for product in products:
        click.echo(
            f"{product.id:<5} {product.sku:<15} {product.name:<30} "
            f"{product.stock_quantity:<8} {product.low_stock_threshold}"
        )
    click.echo("=" * 70 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(inventory_group)
