# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/salonerp/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Salons (tenants):
# - python -m flask salons create --name "Glow Studio" --code GLOW --timezone Asia/Kolkata
# - python -m flask salons list
#
# Staff and sessions:
# - python -m flask staff create --salon-id 1 --name "Asha" --email asha@glow.example --role salon_admin
#   Omit --salon-id together with --role super_admin for a platform operator.
# - python -m flask staff issue-token --staff-id 1
#   Print a bearer token for API calls.
#
# Stock ledger maintenance:
# - python -m flask stock verify [--salon-id 1]
#   Compare cached product stock with the movement ledger; exits 1 on drift.

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import Salon, Staff
from .models.auth import ROLE_SUPER_ADMIN, VALID_ROLES
from .services import session_service, stock_service
from .services.context import SalonContext
from .time_utils import salon_zone, to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables (idempotent)."""
    db.create_all()
    click.echo("PASS Database schema is up to date.")


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

    click.echo("PASS Database reset complete.")


@click.group('salons')
def salons_group():
    """Salon (tenant) management."""


@salons_group.command('create')
@click.option('--name', required=True, help='Salon display name')
@click.option('--code', required=True, help='Unique short code')
@click.option('--timezone', 'tz_name', default='UTC', show_default=True, help='IANA timezone')
@with_appcontext
def create_salon(name, code, tz_name):
    try:
        salon_zone(tz_name)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint='--timezone')

    salon = Salon(name=name, code=code.upper(), timezone=tz_name, is_active=True)
    db.session.add(salon)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"Salon code {code.upper()!r} already exists")
    click.echo(f"PASS Created salon: {salon.name} (ID: {salon.id}, Code: {salon.code}, TZ: {salon.timezone})")


@salons_group.command('list')
@with_appcontext
def list_salons():
    salons = db.session.query(Salon).order_by(Salon.id).all()
    if not salons:
        click.echo("No salons found.")
        return
    for salon in salons:
        status = "active" if salon.is_active else "inactive"
        click.echo(f"{salon.id:>4}  {salon.code or '-':<10} {salon.name:<30} {salon.timezone:<20} {status}")


@click.group('staff')
def staff_group():
    """Staff bootstrap and session issuing."""


@staff_group.command('create')
@click.option('--salon-id', type=int, default=None, help='Salon ID (omit for super_admin)')
@click.option('--name', required=True)
@click.option('--email', required=True)
@click.option('--role', type=click.Choice(VALID_ROLES), default='staff', show_default=True)
@with_appcontext
def create_staff(salon_id, name, email, role):
    if role == ROLE_SUPER_ADMIN:
        salon_id = None
    elif salon_id is None:
        raise click.BadParameter("required unless --role super_admin", param_hint='--salon-id')
    elif db.session.get(Salon, salon_id) is None:
        raise click.ClickException(f"Salon {salon_id} not found")

    staff = Staff(salon_id=salon_id, name=name, email=email.strip().lower(), role=role, is_active=True)
    db.session.add(staff)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"Staff with email {email!r} already exists in this salon")
    click.echo(f"PASS Created staff: {staff.name} (ID: {staff.id}, role: {staff.role}, salon: {staff.salon_id})")


@staff_group.command('issue-token')
@click.option('--staff-id', type=int, required=True)
@click.option('--ttl-hours', type=int, default=None, help='Defaults to SESSION_TTL_HOURS')
@with_appcontext
def issue_token(staff_id, ttl_hours):
    try:
        session, token = session_service.create_session(staff_id, ttl_hours=ttl_hours)
    except ValueError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Session {session.id} expires {to_utc_z(session.expires_at)}")
    click.echo(token)


@click.group('stock')
def stock_group():
    """Stock ledger maintenance."""


@stock_group.command('verify')
@click.option('--salon-id', type=int, default=None, help='Limit to one salon')
@with_appcontext
def verify_stock(salon_id):
    """Compare cached product stock against the movement ledger."""
    query = db.session.query(Salon).order_by(Salon.id)
    if salon_id is not None:
        query = query.filter(Salon.id == salon_id)
    salons = query.all()
    if not salons:
        raise click.ClickException("No salons to verify")

    drift = 0
    for salon in salons:
        mismatches = stock_service.verify_stock_consistency(SalonContext(salon_id=salon.id))
        if not mismatches:
            click.echo(f"PASS Salon {salon.id} ({salon.name}): stock matches ledger")
            continue
        drift += len(mismatches)
        for row in mismatches:
            click.echo(
                f"FAIL Salon {salon.id} product {row['product_id']} ({row['sku']}): "
                f"cached={row['cached_stock']} ledger={row['ledger_stock']} diff={row['difference']}"
            )

    if drift:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(salons_group)
    app.cli.add_command(staff_group)
    app.cli.add_command(stock_group)
