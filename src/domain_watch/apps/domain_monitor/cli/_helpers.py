"""Shared helpers for domain monitor CLI commands.

Centralise logging setup, configuration resolution, client construction and
repository lifecycle so every command opens and closes resources the same
way.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import typer

from domain_watch.apps.domain_monitor.config import MonitorConfig
from domain_watch.apps.domain_monitor.repository import MonitorRepository
from domain_watch.clients.doma import DomaClient
from domain_watch.core.config import ConfigError


def configure_logging(*, verbose: bool) -> None:
    """Configure root logging once for a CLI invocation.

    Args:
        verbose: Enable DEBUG instead of INFO.

    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_config(**overrides: object) -> MonitorConfig:
    """Resolve the monitor configuration, exiting on invalid settings.

    Args:
        **overrides: CLI option values; ``None`` keeps the configured value.

    Returns:
        The resolved ``MonitorConfig``.

    """
    try:
        return MonitorConfig.from_loader(**overrides)
    except ConfigError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def build_client() -> DomaClient:
    """Build a Doma client from configuration, exiting when no key is set.

    Returns:
        Configured ``DomaClient``.

    """
    try:
        return DomaClient.from_config()
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@asynccontextmanager
async def open_repository(db_url: str) -> AsyncIterator[MonitorRepository]:
    """Open a repository with its schema created, disposing it on exit.

    Args:
        db_url: SQLAlchemy async connection string.

    Yields:
        The initialised ``MonitorRepository``.

    """
    repo = MonitorRepository(db_url)
    try:
        await repo.init_db()
        yield repo
    finally:
        await repo.close()


def format_price(value: float | None) -> str:
    """Format an optional price for tabular output."""
    return "-" if value is None else f"{value:,.2f}"
