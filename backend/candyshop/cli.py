# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/candyshop/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to candyshop (PowerShell: $env:FLASK_APP="candyshop").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog seed-demo
#   Create a small demo catalog (gummies with tiers, chocolates with a fixed discount).
# - python -m flask catalog list
#   List variants with price, stock and active discounts.
#
# Stock:
# - python -m flask stock low [--limit 50]
#   List low-stock and out-of-stock variants.
# - python -m flask stock adjust --variant-id 3 --quantity 24 --type restock --reason "Supplier delivery"
#   Record a manual adjustment or restock.
#
# Orders:
# - python -m flask orders show QUE-20261019-001
#   Print an order with lines, stock movements and audit trail.
# - python -m flask orders recent [--status pending_whatsapp] [--limit 20]
#   List recent orders.
#
# Capabilities:
# - python -m flask perms list [--role operator]
#   Print the (role, action) capability table.

import click
from flask.cli import with_appcontext

from .errors import OrderError
from .extensions import db
from .models import Order, ProductParent, ProductVariant, ORDER_STATUSES
from .permissions import CAPABILITY_DEFINITIONS, ROLES, SYSTEM_ACTOR, can
from .services import audit_service, catalog_service, stock_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed-demo' for sample data.")


# =============================================================================
# CATALOG
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Catalog inspection and demo data."""


DEMO_CATALOG = [
    {
        "parent": {"name": "Gomitas Ositos", "description": "Ositos de goma surtidos", "promotional": True},
        "variants": [
            {
                "sku": "GOM-OSO-1KG", "name": "Ositos 1kg", "price": 1000, "stock": 120,
                "attributes": {"size": "1kg"},
                "tiered_discount": {
                    "active": True,
                    "badge": "Mayorista",
                    "tiers": [
                        {"minQuantity": 5, "maxQuantity": 9, "type": "unit_price", "value": 900},
                        {"minQuantity": 10, "type": "percentage", "value": 15},
                    ],
                },
            },
            {
                "sku": "GOM-OSO-250G", "name": "Ositos 250g", "price": 300, "stock": 8,
                "attributes": {"size": "250g"},
            },
        ],
    },
    {
        "parent": {"name": "Bombones de Chocolate", "description": "Caja de bombones"},
        "variants": [
            {
                "sku": "CHO-BOM-12U", "name": "Bombones x12", "price": 2500, "stock": 30,
                "attributes": {"size": "12u"},
                "fixed_discount": {"enabled": True, "type": "amount", "value": 200},
            },
        ],
    },
]


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create the demo catalog (idempotent by SKU)."""
    created = 0
    for entry in DEMO_CATALOG:
        parent = db.session.query(ProductParent).filter_by(name=entry["parent"]["name"]).first()
        if parent is None:
            parent = catalog_service.create_parent(entry["parent"], actor=SYSTEM_ACTOR)
        for item in entry["variants"]:
            if db.session.query(ProductVariant.id).filter_by(sku=item["sku"]).first():
                continue
            try:
                catalog_service.create_variant({**item, "parent_id": parent.id}, actor=SYSTEM_ACTOR)
            except OrderError as e:
                click.echo(f"FAIL {item['sku']}: {e}")
                continue
            created += 1
    click.echo(f"PASS Demo catalog ready ({created} variants created)")


@catalog_group.command('list')
@with_appcontext
def list_variants():
    """List variants with price, stock and discounts."""
    variants = catalog_service.list_variants(include_inactive=True)
    if not variants:
        click.echo("No variants found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'SKU':<16} {'Name':<24} {'Price':>8} {'Stock':>7} {'Active':<8} {'Discounts'}")
    click.echo("="*90)
    for v in variants:
        discounts = []
        if (v.tiered_discount or {}).get("active"):
            discounts.append(f"tiers:{len(v.tiered_discount.get('tiers') or [])}")
        if (v.fixed_discount or {}).get("enabled"):
            discounts.append(f"fixed:{v.fixed_discount.get('type')}")
        stock = str(v.stock) if v.track_stock else "-"
        active_str = "Yes" if v.active else "No"
        click.echo(
            f"{v.id:<5} {v.sku:<16} {v.name[:24]:<24} {v.price:>8} {stock:>7} {active_str:<8} {', '.join(discounts) or '-'}"
        )
    click.echo("="*90 + "\n")


# =============================================================================
# STOCK
# =============================================================================

@click.group('stock')
def stock_group():
    """Stock inspection and adjustments."""


@stock_group.command('low')
@click.option('--limit', type=int, default=50, help='Maximum rows per section')
@with_appcontext
def low_stock(limit):
    """List low-stock and out-of-stock variants."""
    low = stock_service.low_stock_variants(limit=limit)
    out = stock_service.out_of_stock_variants(limit=limit)

    click.echo(f"\nLOW STOCK ({len(low)})")
    for v in low:
        click.echo(f"  {v.sku:<16} stock={v.stock:<5} threshold={v.low_stock_threshold}")
    click.echo(f"\nOUT OF STOCK ({len(out)})")
    for v in out:
        click.echo(f"  {v.sku:<16} stock={v.stock}")
    click.echo("")


@stock_group.command('adjust')
@click.option('--variant-id', type=int, required=True)
@click.option('--quantity', type=int, required=True, help='Signed delta')
@click.option('--type', 'movement_type', type=click.Choice(['adjustment', 'restock']), default='adjustment')
@click.option('--reason', required=True)
@with_appcontext
def adjust_stock(variant_id, quantity, movement_type, reason):
    """Record a manual stock movement."""
    try:
        movement = stock_service.adjust(
            variant_id,
            quantity,
            reason=reason,
            actor_id=SYSTEM_ACTOR.id,
            movement_type=movement_type,
        )
    except OrderError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS {movement.type} {movement.quantity:+d}: {movement.previous_stock} -> {movement.new_stock}")


# =============================================================================
# ORDERS
# =============================================================================

@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('show')
@click.argument('order_number')
@with_appcontext
def show_order(order_number):
    """Print an order with its lines, stock movements and audit trail."""
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        click.echo(f"FAIL Order {order_number} not found")
        raise SystemExit(1)

    click.echo(f"\n{order.order_number}  [{order.status}]  v{order.version_id}")
    click.echo(f"Customer: {order.customer_name} <{order.customer_email}> {order.customer_phone}")
    click.echo(f"Delivery: {order.delivery_method}  Payment: {order.payment_method}")
    click.echo("-"*70)
    for line in order.lines:
        click.echo(
            f"  {line.sku:<16} x{line.quantity:<4} {line.unit_price:>8} -{line.discount:<6} = {line.line_total:>9}"
        )
    click.echo("-"*70)
    click.echo(f"  subtotal={order.subtotal} shipping={order.shipping_cost} total={order.total}")

    click.echo("\nStock movements:")
    for m in stock_service.movements_for_order(order.id):
        click.echo(f"  {m.type:<13} variant={m.variant_id:<5} {m.quantity:+d} ({m.previous_stock} -> {m.new_stock})")

    click.echo("\nAudit:")
    for entry in audit_service.entries_for("order", order.id):
        click.echo(f"  {entry.occurred_at}  {entry.action:<28} {entry.actor_role}/{entry.actor_id or '-'}")
    click.echo("")


@orders_group.command('recent')
@click.option('--status', type=click.Choice(ORDER_STATUSES), default=None)
@click.option('--limit', type=int, default=20)
@with_appcontext
def recent_orders(status, limit):
    """List recent orders."""
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == status)
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
    if not orders:
        click.echo("No orders found.")
        return
    for o in orders:
        click.echo(f"{o.order_number:<20} {o.status:<17} {o.total:>9}  {o.customer_name}")


# =============================================================================
# CAPABILITIES
# =============================================================================

@click.group('perms')
def perms_group():
    """Capability table inspection."""


@perms_group.command('list')
@click.option('--role', type=click.Choice(ROLES), default=None, help='Only show one role')
@with_appcontext
def list_perms(role):
    """Print the (role, action) capability table."""
    roles = (role,) if role else ROLES
    click.echo(f"{'Action':<28} " + " ".join(f"{r:<9}" for r in roles))
    for code, _name, _description, _category in CAPABILITY_DEFINITIONS:
        marks = " ".join(f"{'y' if can(r, code) else '-':<9}" for r in roles)
        click.echo(f"{code:<28} {marks}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(perms_group)
