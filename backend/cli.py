"""Admin CLI for the marketplace service."""

from __future__ import annotations

import asyncio
import json
import os
import sys

import click

# Ensure shared package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "shared"))


def run_async(coro):
    """Run an async function in a new event loop."""
    return asyncio.run(coro)


def _services():
    from modules.marketplace.services import MarketplaceServices
    from modules.marketplace.store import build_store
    from shared.config import get_settings

    settings = get_settings()
    return MarketplaceServices.build(build_store(settings), settings)


@click.group()
def cli():
    """Task marketplace administration CLI."""
    pass


# --- Setup ---


@cli.command()
def setup():
    """Run database migrations."""
    click.echo("Running database migrations...")
    _run_migrations()
    click.echo("Setup complete.")


def _run_migrations():
    """Run Alembic migrations using the Python API."""
    from alembic import command
    from alembic.config import Config

    # Look for alembic.ini in /app (Docker) or alongside this script (local)
    for candidate in ["/app/alembic.ini", os.path.join(os.path.dirname(__file__), "alembic.ini")]:
        if os.path.exists(candidate):
            alembic_cfg = Config(candidate)
            script_dir = os.path.join(os.path.dirname(candidate), "alembic")
            if os.path.isdir(script_dir):
                alembic_cfg.set_main_option("script_location", script_dir)
            db_url = os.environ.get("DATABASE_URL")
            if db_url:
                alembic_cfg.set_main_option("sqlalchemy.url", db_url)
            command.upgrade(alembic_cfg, "head")
            return

    click.echo("  Warning: alembic.ini not found, skipping migrations.")


# --- Tasks ---


@cli.group()
def tasks():
    """Task maintenance."""
    pass


@tasks.command("expire")
def expire_tasks():
    """Expire open tasks whose expiry date has passed."""
    expired = run_async(_services().lifecycle.expire_overdue())
    click.echo(f"Expired {len(expired)} task(s).")
    for task in expired:
        click.echo(f"  {task.id}  {task.title}")


@tasks.command("show")
@click.argument("task_id")
def show_task(task_id):
    """Print a task as JSON."""
    from shared.errors import NotFound

    try:
        task = run_async(_services().lifecycle.get_task(task_id, count_view=False))
    except NotFound:
        click.echo(f"Task {task_id} not found.")
        sys.exit(1)
    click.echo(json.dumps(task.model_dump(mode="json"), indent=2))


@tasks.command("candidates")
@click.argument("task_id")
@click.option("--radius-km", type=float, default=None, help="Search radius")
@click.option("--limit", type=int, default=None, help="Maximum candidates")
def show_candidates(task_id, radius_km, limit):
    """Print ranked tasker candidates for a task."""
    from shared.errors import NotFound

    try:
        candidates = run_async(
            _services().matches.candidates_for_task(task_id, radius_km=radius_km, limit=limit)
        )
    except NotFound:
        click.echo(f"Task {task_id} not found.")
        sys.exit(1)
    if not candidates:
        click.echo("No candidates.")
        return
    for c in candidates:
        distance = f"{c.distance_km:.1f} km" if c.distance_km is not None else "n/a"
        click.echo(
            f"  {c.uid}  score={c.score:.1f}  skills={c.skill_overlap}  distance={distance}"
        )


# --- Auth ---


@cli.command("issue-token")
@click.option("--uid", required=True, help="User id to put in the sub claim")
@click.option("--ttl-minutes", type=int, default=None, help="Token lifetime")
def issue_token_cmd(uid, ttl_minutes):
    """Sign a development bearer token."""
    from shared.auth import issue_token

    click.echo(issue_token(uid, ttl_minutes))


if __name__ == "__main__":
    cli()
