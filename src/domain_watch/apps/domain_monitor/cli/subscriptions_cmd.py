"""CLI commands for managing webhook subscriptions.

Create subscriptions (individually or from the standard templates), list
them with per-user delivery statistics, toggle them and delete them.
"""

import asyncio
import json
from typing import Annotated, Any

import typer

from domain_watch.apps.domain_monitor.cli._helpers import load_config, open_repository
from domain_watch.apps.domain_monitor.subscriptions import (
    InvalidSubscriptionError,
    SubscriptionManager,
    SubscriptionNotFoundError,
)

_MAX_URL_LEN = 40


def _parse_filters(raw: str | None) -> dict[str, Any]:
    """Parse the ``--filters`` JSON object, exiting on malformed input."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        typer.echo(f"Error: --filters is not valid JSON: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if not isinstance(parsed, dict):
        typer.echo("Error: --filters must be a JSON object", err=True)
        raise typer.Exit(code=1)
    return parsed


def subscribe(
    user_id: Annotated[str, typer.Argument(help="Owning user id")],
    webhook_url: Annotated[str, typer.Argument(help="http(s) URL receiving events")],
    event_type: Annotated[
        str | None, typer.Option(help="Event type to subscribe to (e.g. NAME_TOKEN_SOLD)")
    ] = None,
    filters: Annotated[
        str | None,
        typer.Option(help='JSON filter object, e.g. \'{"minPrice": 500, "extensions": ["com"]}\''),
    ] = None,
    defaults: Annotated[  # noqa: FBT002
        bool, typer.Option("--defaults", help="Create the standard template subscriptions")
    ] = False,
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
) -> None:
    """Create a webhook subscription for USER_ID delivering to WEBHOOK_URL."""
    if not defaults and not event_type:
        typer.echo("Error: specify --event-type or --defaults", err=True)
        raise typer.Exit(code=1)
    config = load_config(db_url=db_url)
    asyncio.run(
        _subscribe(
            config.db_url,
            user_id=user_id,
            webhook_url=webhook_url,
            event_type=event_type,
            filters=_parse_filters(filters),
            defaults=defaults,
        )
    )


async def _subscribe(  # noqa: PLR0913
    db_url: str,
    *,
    user_id: str,
    webhook_url: str,
    event_type: str | None,
    filters: dict[str, Any],
    defaults: bool,
) -> None:
    """Create the requested subscriptions and print their ids."""
    async with open_repository(db_url) as repo:
        manager = SubscriptionManager(repo)
        try:
            if defaults:
                created = await manager.create_default_subscriptions(user_id, webhook_url)
            else:
                created = [
                    await manager.create_subscription(
                        user_id, event_type or "", webhook_url, filters
                    )
                ]
        except InvalidSubscriptionError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc

    for subscription in created:
        typer.echo(f"Created subscription {subscription.id} for {subscription.event_type}")


def subscriptions(
    user_id: Annotated[str | None, typer.Option(help="Only show this user's subscriptions")] = None,
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
) -> None:
    """List subscriptions, with 24h delivery statistics when --user-id is given."""
    config = load_config(db_url=db_url)
    asyncio.run(_subscriptions(config.db_url, user_id))


async def _subscriptions(db_url: str, user_id: str | None) -> None:
    """Fetch and display subscriptions.

    Args:
        db_url: SQLAlchemy async connection string.
        user_id: Optional user filter.

    """
    async with open_repository(db_url) as repo:
        manager = SubscriptionManager(repo)
        rows = await manager.list_subscriptions(user_id)
        stats = await manager.get_stats(user_id) if user_id else None

    if not rows:
        typer.echo("No subscriptions found")
        return

    typer.echo(f"\n{'ID':>5} {'User':<12} {'Event type':<28} {'Active':<7} {'Webhook':<40} Filters")
    typer.echo("-" * 110)
    for row in rows:
        url = row.webhook_url[:_MAX_URL_LEN]
        active = "yes" if row.is_active else "no"
        typer.echo(
            f"{row.id:>5} {row.user_id:<12} {row.event_type:<28} {active:<7} {url:<40} "
            f"{json.dumps(row.filters or {})}"
        )

    if stats is not None:
        typer.echo(
            f"\nActive {stats.active_subscriptions}/{stats.total_subscriptions}, "
            f"webhooks (24h): {stats.webhooks_sent_24h} sent, "
            f"{stats.webhooks_failed_24h} failed"
        )


def set_active(
    subscription_id: Annotated[int, typer.Argument(help="Subscription id")],
    active: Annotated[  # noqa: FBT002
        bool, typer.Option("--active/--inactive", help="New state")
    ] = True,
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
) -> None:
    """Activate or deactivate a subscription."""
    config = load_config(db_url=db_url)
    asyncio.run(_set_active(config.db_url, subscription_id, is_active=active))


async def _set_active(db_url: str, subscription_id: int, *, is_active: bool) -> None:
    """Toggle one subscription, exiting when it does not exist."""
    async with open_repository(db_url) as repo:
        try:
            await SubscriptionManager(repo).set_active(subscription_id, is_active=is_active)
        except SubscriptionNotFoundError as exc:
            typer.echo(f"Error: subscription {subscription_id} not found", err=True)
            raise typer.Exit(code=1) from exc
    state = "activated" if is_active else "deactivated"
    typer.echo(f"Subscription {subscription_id} {state}")


def unsubscribe(
    subscription_id: Annotated[int, typer.Argument(help="Subscription id")],
    db_url: Annotated[str | None, typer.Option(help="SQLAlchemy async DB URL")] = None,
) -> None:
    """Delete a subscription; its delivery history is kept."""
    config = load_config(db_url=db_url)
    asyncio.run(_unsubscribe(config.db_url, subscription_id))


async def _unsubscribe(db_url: str, subscription_id: int) -> None:
    """Delete one subscription, exiting when it does not exist."""
    async with open_repository(db_url) as repo:
        try:
            await SubscriptionManager(repo).delete_subscription(subscription_id)
        except SubscriptionNotFoundError as exc:
            typer.echo(f"Error: subscription {subscription_id} not found", err=True)
            raise typer.Exit(code=1) from exc
    typer.echo(f"Subscription {subscription_id} deleted")
