"""CLI commands for domain analytics, trending domains and opportunities."""

import asyncio
from typing import Annotated

import typer

from domain_watch.apps.domain_monitor.analytics import (
    TIMEFRAME_HOURS,
    AnalyticsAggregator,
    timeframe_cutoff_ms,
)
from domain_watch.apps.domain_monitor.cli._helpers import (
    configure_logging,
    format_price,
    load_config,
    open_repository,
)
from domain_watch.apps.domain_monitor.opportunities import OpportunityScorer
from domain_watch.core.timestamps import MS_PER_SECOND, SECONDS_PER_HOUR, ms_to_iso, now_ms

_DEFAULT_LIMIT = 10
_DEFAULT_TIMEFRAME = "24h"
_DEFAULT_WINDOW_HOURS = 24


def analytics(
    domain: Annotated[str, typer.Argument(help="Domain name, e.g. crypto.com")],
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
) -> None:
    """Show the running analytics and traits for one domain."""
    config = load_config(db_url=db_url)
    asyncio.run(_analytics(config.db_url, domain))


async def _analytics(db_url: str, domain: str) -> None:
    """Fetch and display one domain's analytics row and traits.

    Args:
        db_url: SQLAlchemy async connection string.
        domain: Domain name.

    """
    async with open_repository(db_url) as repo:
        row = await repo.get_analytics(domain)
        traits = await repo.get_traits(domain)

    if row is None:
        typer.echo(f"No analytics for {domain}")
        raise typer.Exit(code=1)

    last_at = ms_to_iso(row.last_event_at) if row.last_event_at is not None else "-"
    typer.echo(f"Domain:          {row.domain_name}")
    typer.echo(f"Token id:        {row.token_id or '-'}")
    typer.echo(f"Total events:    {row.total_events}")
    typer.echo(f"Last event:      {row.last_event_type or '-'} at {last_at}")
    typer.echo(f"Total volume:    {format_price(row.total_volume)}")
    typer.echo(f"Highest price:   {format_price(row.highest_price)}")
    typer.echo(f"Lowest price:    {format_price(row.lowest_price)}")
    typer.echo(f"Trades / offers: {row.trade_count} / {row.offer_count}")
    typer.echo(f"Fractionalized:  {'yes' if row.is_fractionalized else 'no'}")
    if row.expires_at is not None:
        typer.echo(f"Expires at:      {ms_to_iso(row.expires_at)}")
    if traits is not None:
        typer.echo(
            f"Traits:          length={traits.length} ext={traits.extension} "
            f"words={traits.word_count} pronounceable={traits.is_pronounceable} "
            f"palindrome={traits.is_palindrome}"
        )


def trending(
    timeframe: Annotated[
        str, typer.Option(help=f"Window: {', '.join(TIMEFRAME_HOURS)}")
    ] = _DEFAULT_TIMEFRAME,
    limit: Annotated[int, typer.Option(help="Maximum number of domains")] = _DEFAULT_LIMIT,
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
) -> None:
    """List the most active domains within a timeframe."""
    if timeframe not in TIMEFRAME_HOURS:
        typer.echo(
            f"Error: unknown timeframe {timeframe!r}; use one of {', '.join(TIMEFRAME_HOURS)}",
            err=True,
        )
        raise typer.Exit(code=1)
    config = load_config(db_url=db_url)
    asyncio.run(_trending(config.db_url, timeframe, limit))


async def _trending(db_url: str, timeframe: str, limit: int) -> None:
    """Fetch and display trending domains.

    Args:
        db_url: SQLAlchemy async connection string.
        timeframe: Timeframe key.
        limit: Maximum number of domains.

    """
    async with open_repository(db_url) as repo:
        rows = await repo.get_trending_domains(timeframe_cutoff_ms(timeframe, now_ms()), limit)

    if not rows:
        typer.echo(f"No domain activity in the last {timeframe}")
        return

    typer.echo(f"\n{'Domain':<32} {'Events':>7} {'Volume':>14} {'Last event':<28}")
    typer.echo("-" * 84)
    for row in rows:
        typer.echo(
            f"{row.domain_name:<32} {row.total_events:>7} "
            f"{format_price(row.total_volume):>14} {row.last_event_type or '-':<28}"
        )


def opportunities(
    hours: Annotated[
        int, typer.Option(help="Look-back window in hours")
    ] = _DEFAULT_WINDOW_HOURS,
    limit: Annotated[int, typer.Option(help="Maximum number of opportunities")] = _DEFAULT_LIMIT,
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
) -> None:
    """Rank expired, sale, trending and listing opportunities from recent events."""
    config = load_config(db_url=db_url)
    asyncio.run(_opportunities(config.db_url, hours, limit))


async def _opportunities(db_url: str, hours: int, limit: int) -> None:
    """Score recent events and display the top opportunities.

    Args:
        db_url: SQLAlchemy async connection string.
        hours: Look-back window in hours.
        limit: Maximum number of opportunities.

    """
    now = now_ms()
    async with open_repository(db_url) as repo:
        events = await repo.get_events_since(now - hours * SECONDS_PER_HOUR * MS_PER_SECOND)

    found = OpportunityScorer().find_opportunities(events, now, limit=limit)
    if not found:
        typer.echo(f"No opportunities in the last {hours}h")
        return

    typer.echo(f"\n{'Priority':>8} {'Category':<20} {'Domain':<32} {'Value':>14}")
    typer.echo("-" * 78)
    for opp in found:
        typer.echo(
            f"{opp.priority:>8} {opp.category.value:<20} {opp.domain:<32} "
            f"{format_price(opp.value):>14}"
        )


def process_analytics(
    batch_size: Annotated[
        int | None, typer.Option(help="Maximum events aggregated in this batch")
    ] = None,
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
    verbose: Annotated[  # noqa: FBT002
        bool, typer.Option("--verbose", "-v", help="Enable debug logging")
    ] = False,
) -> None:
    """Aggregate one batch of unprocessed events and exit."""
    configure_logging(verbose=verbose)
    config = load_config(db_url=db_url, analytics_batch_size=batch_size)
    processed = asyncio.run(_process_analytics(config.db_url, config.analytics_batch_size))
    typer.echo(f"Processed {processed} events")


async def _process_analytics(db_url: str, batch_size: int) -> int:
    """Run a single aggregation batch.

    Args:
        db_url: SQLAlchemy async connection string.
        batch_size: Maximum events in the batch.

    Returns:
        Number of events marked processed.

    """
    async with open_repository(db_url) as repo:
        return await AnalyticsAggregator(repo, batch_size=batch_size).process_batch()
