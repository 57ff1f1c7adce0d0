"""CLI commands for inspecting and rewinding the poll cursor."""

import asyncio
from typing import Annotated

import typer

from domain_watch.apps.domain_monitor.cli._helpers import (
    build_client,
    load_config,
    open_repository,
)
from domain_watch.clients.doma import DomaAPIError, DomaClient


def cursor(
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
) -> None:
    """Show the last acknowledged event id and the stored event count."""
    config = load_config(db_url=db_url)
    asyncio.run(_cursor(config.db_url))


async def _cursor(db_url: str) -> None:
    """Read and print the cursor and event count.

    Args:
        db_url: SQLAlchemy async connection string.

    """
    async with open_repository(db_url) as repo:
        value = await repo.get_cursor()
        count = await repo.get_event_count()
    typer.echo(f"Cursor: {value if value is not None else 'none'}")
    typer.echo(f"Stored events: {count}")


def reset_cursor(
    event_id: Annotated[int, typer.Argument(help="Event id to resume after")],
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
) -> None:
    """Rewind the upstream cursor and the stored cursor to EVENT_ID.

    Events after EVENT_ID are delivered again on the next poll; stored
    events are overwritten, not duplicated.
    """
    config = load_config(db_url=db_url)
    client = build_client()
    asyncio.run(_reset_cursor(client, config.db_url, event_id))


async def _reset_cursor(client: DomaClient, db_url: str, event_id: int) -> None:
    """Reset upstream first so a failure leaves the stored cursor untouched."""
    async with client as doma, open_repository(db_url) as repo:
        try:
            await doma.reset(event_id)
        except DomaAPIError as exc:
            typer.echo(f"Error: upstream reset failed: {exc}", err=True)
            raise typer.Exit(code=1) from exc
        await repo.reset_cursor(event_id)
    typer.echo(f"Cursor reset to {event_id}")
