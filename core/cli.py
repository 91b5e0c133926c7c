"""
Command-line interface for the offer and payment engine
"""
import json

import click

from core.config import settings
from core.logging import get_logger

logger = get_logger(__name__)


def _session_factory(ctx: click.Context):
    """Session factory from the click context, defaulting to the configured database"""
    obj = ctx.obj or {}
    if "session_factory" in obj:
        return obj["session_factory"]
    from database.session import SessionLocal

    return SessionLocal


@click.group()
@click.version_option(version=settings.app_version)
@click.pass_context
def cli(ctx):
    """Marketplace offers CLI - offer lifecycle and payment settlement"""
    ctx.ensure_object(dict)


@cli.command()
@click.pass_context
def init_db(ctx):
    """Initialize database with tables"""
    from database.session import create_tables

    click.echo("Creating database tables...")
    bind = ctx.obj.get("engine") if ctx.obj else None
    create_tables(bind)
    click.echo("Database initialized successfully!")


@cli.command()
@click.option("--host", default="0.0.0.0", help="Host to bind to")
@click.option("--port", default=8000, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload")
def runserver(host: str, port: int, reload: bool):
    """Run the FastAPI development server"""
    import uvicorn

    click.echo(f"Starting {settings.app_name} server on {host}:{port}")
    click.echo(f"Environment: {settings.environment}")
    click.echo(f"Use stubs: {settings.use_stubs}")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@cli.command()
@click.option("--dry-run", is_flag=True, help="Report skew without repairing it")
@click.pass_context
def reconcile(ctx, dry_run: bool):
    """Bring offers in line with payments that settled ahead of them"""
    from d3_payments.reconciliation import Reconciler

    report = Reconciler(_session_factory(ctx)).repair(dry_run=dry_run)
    click.echo(json.dumps(report.to_dict(), indent=2))

    if dry_run:
        click.echo(f"Found {len(report.found)} skewed offers (dry run, nothing changed)")
    else:
        click.echo(f"Found {len(report.found)}, repaired {len(report.repaired)}, failed {len(report.failed)}")
    if report.needs_refund:
        click.echo(f"{len(report.needs_refund)} payments captured on closed offers need a manual refund")
    if report.failed or report.needs_refund:
        ctx.exit(1)


@cli.command()
@click.pass_context
def expired_offers(ctx):
    """List offers still awaiting the buyer past their expiry"""
    from d2_offers.models import OfferStatus
    from d2_offers.store import OfferStore

    with _session_factory(ctx)() as session:
        offers = OfferStore().list_expired(session)

    for offer in offers:
        click.echo(f"{offer.id}\t{offer.status.value}\t{offer.expires_at.isoformat()}\t{offer.title}")

    awaiting = sum(1 for offer in offers if offer.status == OfferStatus.SENT)
    click.echo(f"{len(offers)} expired offers ({awaiting} never answered)")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
