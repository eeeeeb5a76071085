"""CLI commands for PactLink API."""

import click

from pactlink_api.auth.api_key import generate_api_key
from pactlink_api.db.session import SessionLocal
from pactlink_api.tokens.sweep import ExpirySweeper


@click.group()
def cli():
    """PactLink API CLI."""
    pass


@cli.command("create-key")
@click.argument("actor_id")
@click.option("--label", default=None, help="Human-readable label for the key.")
def create_key(actor_id: str, label: str):
    """Mint an internal API key for ACTOR_ID."""
    db = SessionLocal()
    try:
        api_key, raw_key = generate_api_key(db, actor_id, label=label)
        click.echo(f"✓ Created key {api_key.prefix}... for {actor_id}")
        click.echo("Store it now, it will not be shown again:")
        click.echo(raw_key)
    finally:
        db.close()


@cli.command()
def sweep():
    """Run the expiry sweep once."""
    db = SessionLocal()
    try:
        result = ExpirySweeper(db).run()
        click.echo(
            f"✓ Marked {result.tokens} tokens, {result.challenges} challenges, "
            f"{result.signatures} signatures as expired."
        )
    except Exception as e:
        click.echo(f"✗ Sweep failed: {e}", err=True)
        db.rollback()
        raise SystemExit(1)
    finally:
        db.close()


if __name__ == "__main__":
    cli()
