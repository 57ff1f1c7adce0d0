"""CLI command for running the domain monitor service.

Launch the async poller and analytics loops against the configured database.
Options override the ``monitor`` section of the settings files.
"""

import asyncio
from typing import Annotated

import typer

from domain_watch.apps.domain_monitor.cli._helpers import (
    build_client,
    configure_logging,
    load_config,
)
from domain_watch.apps.domain_monitor.service import DomainMonitorService


def run(
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
    poll_interval: Annotated[
        float | None, typer.Option(help="Seconds between poll cycles once caught up")
    ] = None,
    page_size: Annotated[int | None, typer.Option(help="Events requested per poll")] = None,
    event_types: Annotated[
        str | None, typer.Option(help="Comma-separated event types to request (default: all)")
    ] = None,
    analytics_interval: Annotated[
        float | None, typer.Option(help="Seconds between analytics batches")
    ] = None,
    verbose: Annotated[  # noqa: FBT002
        bool, typer.Option("--verbose", "-v", help="Enable debug logging")
    ] = False,
) -> None:
    """Run the domain monitor until interrupted.

    Poll the Doma event API, store and dispatch every event, and keep the
    per-domain analytics current. Stop with Ctrl-C; the in-flight page is
    finished before exit.
    """
    configure_logging(verbose=verbose)
    config = load_config(
        db_url=db_url,
        poll_interval_seconds=poll_interval,
        page_size=page_size,
        event_types=(
            tuple(t.strip() for t in event_types.split(",") if t.strip())
            if event_types is not None
            else None
        ),
        analytics_interval_seconds=analytics_interval,
    )
    client = build_client()

    typer.echo(f"Starting domain monitor (db: {config.db_url})")
    if config.event_types:
        typer.echo(f"Event types: {', '.join(config.event_types)}")

    service = DomainMonitorService(config, client)
    asyncio.run(service.run())
