# Overview: Flask CLI command groups for bootstrap, catalog setup, and inventory maintenance.

# backend/saleflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username ana --name "Ana Lopez" --role manager
#
# Products:
# - python -m flask products create --sku COF-001 --name "Coffee" --price-cents 450 --stock 20
#
# Inventory:
# - python -m flask inventory adjust --product-id 1 --delta -2 --note "Broken in transit"
# - python -m flask inventory reconcile [--sale-id 12] --user-id 1
#   Apply pending stock movements for one sale, or every pending sale.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import USER_ROLES
from .services import inventory_service, sales_service
from .services.inventory_service import InventoryError
from .services.sales_service import SaleError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Database schema ready")


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
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Name':<25} {'Role':<10} {'Active'}")
    click.echo("="*70)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.name:<25} {user.role:<10} {active_str}")
    click.echo("="*70 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--name', prompt=True, help='Display name')
@click.option('--role', type=click.Choice(list(USER_ROLES)), default='operator', show_default=True)
@with_appcontext
def create_user_cli(username, name, role):
    """Create a new user."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User {username} already exists")
        return

    user = User(username=username, name=name, role=role)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.username} (id={user.id}, role={user.role})")


@click.group('products')
def products_group():
    """Catalog setup commands."""


@products_group.command('create')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True)
@click.option('--sale-price-cents', type=int, default=None)
@click.option('--tax-rate-bps', type=int, default=None)
@click.option('--stock', type=int, default=0, show_default=True, help='Opening stock')
@click.option('--untracked', is_flag=True, help='Do not track inventory for this product')
@click.option('--allow-backorder', is_flag=True)
@with_appcontext
def create_product_cli(sku, name, price_cents, sale_price_cents, tax_rate_bps, stock, untracked, allow_backorder):
    """Create a product with optional opening stock."""
    try:
        product = inventory_service.create_product(
            sku=sku,
            name=name,
            price_cents=price_cents,
            sale_price_cents=sale_price_cents,
            tax_rate_bps=tax_rate_bps,
            initial_stock=stock,
            track_inventory=not untracked,
            allow_backorder=allow_backorder,
        )
    except InventoryError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created product {product.sku} (id={product.id}, stock={product.current_stock})")


@click.group('inventory')
def inventory_group():
    """Stock maintenance commands."""


@inventory_group.command('adjust')
@click.option('--product-id', type=int, required=True)
@click.option('--delta', type=int, required=True, help='Signed quantity change')
@click.option('--user-id', type=int, default=None, help='Acting user')
@click.option('--note', default=None)
@with_appcontext
def adjust_stock_cli(product_id, delta, user_id, note):
    """Apply a manual stock correction."""
    try:
        movement = inventory_service.adjust_stock(product_id, delta, actor_user_id=user_id, note=note)
    except InventoryError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Stock {movement.stock_before} -> {movement.stock_after}")


@inventory_group.command('reconcile')
@click.option('--sale-id', type=int, default=None, help='Only this sale (default: every pending sale)')
@click.option('--user-id', type=int, required=True, help='Acting user')
@with_appcontext
def reconcile_cli(sale_id, user_id):
    """Apply stock movements that sales still owe."""
    if sale_id is not None:
        sale_ids = [sale_id]
    else:
        sale_ids = [sale.id for sale in sales_service.list_pending_inventory_sales(limit=10_000)]

    if not sale_ids:
        click.echo("No sales pending reconciliation.")
        return

    failures = 0
    for current_id in sale_ids:
        try:
            sale = sales_service.reconcile_inventory(current_id, user_id)
        except (SaleError, InventoryError) as e:
            failures += 1
            click.echo(f"FAIL sale {current_id}: {e}")
            continue
        click.echo(f"PASS {sale.receipt_number}: {sale.inventory_status}")

    click.echo(f"Done: {len(sale_ids) - failures} reconciled, {failures} failed")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(inventory_group)
