# Overview: Flask CLI command groups for bootstrap, reconciliation, and inspection.

# backend/kasse/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app kasse <group> <command> [options]
#
# System bootstrap:
# - flask --app kasse system init [--tables 10] [--demo-products]
#   Idempotent bootstrap: tables, roles, default users, company settings,
#   a simulated TSE device and restaurant tables.
#
# Carts:
# - flask --app kasse carts expire
#   Flip every ACTIVE cart past its 24h expiry to EXPIRED.
#
# Invoices:
# - flask --app kasse invoices backfill
#   Create PAID invoices for payments that have none. Safe to re-run.
#
# Registers:
# - flask --app kasse registers list [--all]
#   List cash registers with status, operator and balance.
# - flask --app kasse registers close-period K001 [--type daily|monthly|yearly]
#   Sign and store the period closing (needs a connected TSE).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import CashRegister, CompanySettings, Product, RestaurantTable, TseDevice, User
from .models.catalog import TAX_STANDARD, TAX_REDUCED, TAX_SPECIAL
from .services.auth_service import (
    create_user, create_default_roles, PasswordValidationError,
    ROLE_ADMINISTRATOR, ROLE_MANAGER, ROLE_CASHIER, ROLE_ADMIN,
)
from .services.fiscal_device import EPSON_VENDOR_ID, EPSON_PRODUCT_ID
from .validation import ServiceError


DEFAULT_PASSWORD = "Password123"

DEFAULT_USERS = [
    ("admin", "admin@kasse.local", ROLE_ADMINISTRATOR),
    ("manager", "manager@kasse.local", ROLE_MANAGER),
    ("kassier", "kassier@kasse.local", ROLE_CASHIER),
    ("wartung", "wartung@kasse.local", ROLE_ADMIN),
]

DEMO_PRODUCTS = [
    ("WS-001", "Wiener Schnitzel", "Speisen", 1490, TAX_REDUCED),
    ("GU-001", "Gulaschsuppe", "Speisen", 690, TAX_REDUCED),
    ("BI-001", "Bier 0,5l", "Getränke", 450, TAX_STANDARD),
    ("WE-001", "Grüner Veltliner 1/8", "Getränke", 380, TAX_STANDARD),
    ("KA-001", "Melange", "Getränke", 390, TAX_STANDARD),
    ("BL-001", "Blumenstrauß", "Sonstiges", 1990, TAX_SPECIAL),
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--tables', 'table_count', default=10, show_default=True, help='Number of restaurant tables to create')
@click.option('--demo-products', is_flag=True, help='Seed a small demo menu')
@with_appcontext
def init_system(table_count, demo_products):
    """
    Initialize the Kasse database.

    Creates (skipping anything that already exists):
    - All tables
    - Roles: Administrator, Manager, Cashier, Admin
    - Users: admin, manager, kassier, wartung (password "Password123")
    - Company settings from COMPANY_* config
    - Simulated Epson TSE device (serial TSE-SIM-001)
    - Restaurant tables 1..N

    SECURITY: Change passwords immediately in production!
    """
    from flask import current_app

    click.echo("START Initializing Kasse...")
    db.create_all()

    created = create_default_roles()
    click.echo(f"PASS Roles ready ({created} created)")

    for username, email, role_name in DEFAULT_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username, email, DEFAULT_PASSWORD, roles=[role_name])
            click.echo(f"PASS Created user: {username} ({email}) with role '{role_name}'")
        except (PasswordValidationError, ServiceError) as e:
            click.echo(f"FAIL Failed to create user '{username}': {e.message}")

    cfg = current_app.config
    if not db.session.query(CompanySettings).first():
        db.session.add(CompanySettings(
            company_name=cfg["COMPANY_NAME"],
            company_tax_number=cfg["COMPANY_TAX_NUMBER"],
            company_address=cfg["COMPANY_ADDRESS"],
            company_phone=cfg["COMPANY_PHONE"] or None,
            company_email=cfg["COMPANY_EMAIL"] or None,
            finanzonline_api_url=cfg["FINANZONLINE_API_URL"],
        ))
        db.session.commit()
        click.echo(f"PASS Company settings created for {cfg['COMPANY_NAME']}")

    if not db.session.query(TseDevice).filter_by(serial_number="TSE-SIM-001").first():
        db.session.add(TseDevice(
            serial_number="TSE-SIM-001",
            kassen_id="KASSE-001",
            vendor_id=EPSON_VENDOR_ID,
            product_id=EPSON_PRODUCT_ID,
            finanzonline_enabled=True,
        ))
        db.session.commit()
        click.echo("PASS Simulated TSE device TSE-SIM-001 registered")

    existing_tables = {n for (n,) in db.session.query(RestaurantTable.table_number).all()}
    for number in range(1, table_count + 1):
        if number not in existing_tables:
            db.session.add(RestaurantTable(table_number=number))
    db.session.commit()
    click.echo(f"PASS Restaurant tables 1..{table_count} ready")

    if demo_products:
        for sku, name, category, price_cents, tax_type in DEMO_PRODUCTS:
            if not db.session.query(Product).filter_by(sku=sku).first():
                db.session.add(Product(sku=sku, name=name, category=category, price_cents=price_cents, tax_type=tax_type))
        db.session.commit()
        click.echo(f"PASS Demo products seeded ({len(DEMO_PRODUCTS)})")

    click.echo("\nDONE Kasse initialized")
    click.echo(f"Default password for all users: {DEFAULT_PASSWORD} (CHANGE IN PRODUCTION!)")


@click.group('carts')
def carts_group():
    """Cart maintenance commands."""


@carts_group.command('expire')
@with_appcontext
def expire_carts_cli():
    """Mark every ACTIVE cart past its expiry as EXPIRED."""
    from .services import cart_service

    count = cart_service.expire_carts()
    click.echo(f"PASS Expired {count} cart(s)")


@click.group('invoices')
def invoices_group():
    """Invoice reconciliation commands."""


@invoices_group.command('backfill')
@with_appcontext
def backfill_invoices_cli():
    """
    Create PAID invoices for receipted payments that have none.

    Idempotent: payments already linked through source_payment_id are skipped.
    """
    from .services import backfill_service

    result = backfill_service.backfill_from_payments()
    click.echo(f"PASS Backfill: inserted={result.inserted} skipped={result.skipped} failed={result.failed}")
    if result.failed:
        click.echo("WARN  Some payments failed to backfill; see the log for details")


@click.group('registers')
def registers_group():
    """Cash register inspection commands."""


@registers_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive registers too')
@with_appcontext
def list_registers_cli(show_all):
    """
    List cash registers.

    Example:
        flask --app kasse registers list
        flask --app kasse registers list --all
    """
    query = db.session.query(CashRegister)
    if not show_all:
        query = query.filter_by(is_active=True)

    registers = query.order_by(CashRegister.register_number).all()
    if not registers:
        click.echo("No registers found")
        return

    click.echo(f"{'Number':<8} {'Location':<20} {'Status':<8} {'Operator':<12} {'Balance':>12}")
    for register in registers:
        operator = register.current_user.username if register.current_user else "-"
        balance = f"{register.current_balance_cents / 100:.2f}"
        inactive = "" if register.is_active else " (inactive)"
        click.echo(
            f"{register.register_number:<8} {(register.location or '-'):<20} "
            f"{register.status:<8} {operator:<12} {balance:>12}{inactive}"
        )


@registers_group.command('close-period')
@click.argument('register_number')
@click.option('--type', 'closing_type', type=click.Choice(['daily', 'monthly', 'yearly']), default='daily',
              show_default=True, help='Period to close')
@with_appcontext
def close_period_cli(register_number, closing_type):
    """
    Sign and store the closing for the current period of a register.

    Example:
        flask --app kasse registers close-period K001 --type daily
    """
    from .services import register_service

    register = db.session.query(CashRegister).filter_by(register_number=register_number, is_active=True).first()
    if not register:
        click.echo(f"FAIL Register {register_number} not found")
        raise SystemExit(1)

    try:
        closing = register_service.perform_closing(register.id, None, closing_type.upper())
    except ServiceError as e:
        click.echo(f"FAIL Closing of {register_number} failed: {e.message}")
        raise SystemExit(1)

    click.echo(
        f"PASS {closing.closing_type} closing {register_number}: "
        f"{closing.transaction_count} invoice(s), total {closing.total_cents / 100:.2f}, "
        f"signature {closing.tse_signature}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(carts_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(registers_group)
