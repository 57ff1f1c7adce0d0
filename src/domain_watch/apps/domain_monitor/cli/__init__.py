"""CLI subpackage for the domain monitor app.

Create the Typer application and register all command modules.
"""

import typer

from domain_watch.apps.domain_monitor.cli.analytics_cmd import (
    analytics,
    opportunities,
    process_analytics,
    trending,
)
from domain_watch.apps.domain_monitor.cli.cursor_cmd import cursor, reset_cursor
from domain_watch.apps.domain_monitor.cli.run_cmd import run
from domain_watch.apps.domain_monitor.cli.subscriptions_cmd import (
    set_active,
    subscribe,
    subscriptions,
    unsubscribe,
)

app = typer.Typer(help="Doma domain event monitor")

app.command()(run)
app.command()(cursor)
app.command(name="reset-cursor")(reset_cursor)
app.command()(subscribe)
app.command()(subscriptions)
app.command(name="set-active")(set_active)
app.command()(unsubscribe)
app.command()(analytics)
app.command()(trending)
app.command()(opportunities)
app.command(name="process-analytics")(process_analytics)

__all__ = ["app"]
