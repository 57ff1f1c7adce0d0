"""Tests for the domain monitor CLI commands."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from domain_watch.apps.domain_monitor.cli import app
from domain_watch.apps.domain_monitor.normalizer import normalize_event
from domain_watch.apps.domain_monitor.repository import MonitorRepository
from domain_watch.clients.doma import DomaAPIError, DomaClient
from domain_watch.core.timestamps import now_ms

_HOOK = "https://hooks.example.com/domains"
_BUILD_CLIENT = "domain_watch.apps.domain_monitor.cli.cursor_cmd.build_client"


@pytest.fixture
def runner() -> CliRunner:
    """Create a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """Return a file-backed SQLite URL shared across CLI invocations."""
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"


async def _seed(db_url: str) -> None:
    """Store two sales for a.com and one listing for b.io."""
    repo = MonitorRepository(db_url)
    await repo.init_db()
    records = [
        {"id": 1, "type": "NAME_TOKEN_SOLD", "name": "a.com", "eventData": {"price": 1000}},
        {"id": 2, "type": "NAME_TOKEN_SOLD", "name": "a.com", "eventData": {"price": 150000}},
        {"id": 3, "type": "NAME_TOKEN_LISTED", "name": "b.io", "eventData": {}},
    ]
    await repo.upsert_events([normalize_event(r) for r in records], now_ms())
    await repo.close()


class TestSubscriptionCommands:
    """Tests for subscribe, subscriptions, set-active and unsubscribe."""

    def test_subscription_lifecycle(self, runner: CliRunner, db_url: str) -> None:
        """Create, list, deactivate and delete a subscription."""
        result = runner.invoke(
            app,
            [
                "subscribe",
                "u1",
                _HOOK,
                "--event-type",
                "NAME_TOKEN_SOLD",
                "--filters",
                '{"minPrice": 500, "extensions": ["com"]}',
                "--db-url",
                db_url,
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Created subscription 1 for NAME_TOKEN_SOLD" in result.output

        result = runner.invoke(app, ["subscriptions", "--user-id", "u1", "--db-url", db_url])
        assert result.exit_code == 0, result.output
        assert "NAME_TOKEN_SOLD" in result.output
        assert '"minPrice": 500' in result.output
        assert "Active 1/1" in result.output

        result = runner.invoke(app, ["set-active", "1", "--inactive", "--db-url", db_url])
        assert result.exit_code == 0, result.output
        assert "Subscription 1 deactivated" in result.output

        result = runner.invoke(app, ["unsubscribe", "1", "--db-url", db_url])
        assert result.exit_code == 0, result.output
        assert "Subscription 1 deleted" in result.output

        result = runner.invoke(app, ["subscriptions", "--db-url", db_url])
        assert "No subscriptions found" in result.output

    def test_defaults(self, runner: CliRunner, db_url: str) -> None:
        """Create the template subscriptions."""
        result = runner.invoke(app, ["subscribe", "u1", _HOOK, "--defaults", "--db-url", db_url])
        assert result.exit_code == 0, result.output
        assert result.output.count("Created subscription") == 5

    @pytest.mark.parametrize(
        "args",
        [
            ["subscribe", "u1", _HOOK],
            ["subscribe", "u1", "ftp://nope", "--event-type", "NAME_TOKEN_SOLD"],
            ["subscribe", "u1", _HOOK, "--event-type", "NAME_TOKEN_SOLD", "--filters", "{bad"],
            ["subscribe", "u1", _HOOK, "--event-type", "NAME_TOKEN_SOLD", "--filters", "[1]"],
            ["set-active", "99"],
            ["unsubscribe", "99"],
        ],
    )
    def test_invalid_requests_exit_1(
        self, runner: CliRunner, db_url: str, args: list[str]
    ) -> None:
        """Exit with code 1 on validation errors and unknown ids."""
        result = runner.invoke(app, [*args, "--db-url", db_url])
        assert result.exit_code == 1


class TestCursorCommands:
    """Tests for cursor and reset-cursor."""

    def test_cursor_on_empty_database(self, runner: CliRunner, db_url: str) -> None:
        """Report no cursor and no events."""
        result = runner.invoke(app, ["cursor", "--db-url", db_url])
        assert result.exit_code == 0, result.output
        assert "Cursor: none" in result.output
        assert "Stored events: 0" in result.output

    def test_cursor_falls_back_to_stored_events(self, runner: CliRunner, db_url: str) -> None:
        """Report the highest stored id before any cursor write."""
        asyncio.run(_seed(db_url))
        result = runner.invoke(app, ["cursor", "--db-url", db_url])
        assert "Cursor: 3" in result.output
        assert "Stored events: 3" in result.output

    def test_reset_cursor(self, runner: CliRunner, db_url: str) -> None:
        """Rewind upstream, then the stored cursor."""
        client = DomaClient(api_key="k")
        with (
            patch(_BUILD_CLIENT, return_value=client),
            patch.object(DomaClient, "reset", AsyncMock()) as mock_reset,
        ):
            result = runner.invoke(app, ["reset-cursor", "7", "--db-url", db_url])

        assert result.exit_code == 0, result.output
        assert "Cursor reset to 7" in result.output
        mock_reset.assert_awaited_once_with(7)
        result = runner.invoke(app, ["cursor", "--db-url", db_url])
        assert "Cursor: 7" in result.output

    def test_reset_cursor_upstream_failure(self, runner: CliRunner, db_url: str) -> None:
        """Leave the stored cursor alone when upstream refuses."""
        client = DomaClient(api_key="k")
        failure = DomaAPIError(msg="unavailable", status_code=503)
        with (
            patch(_BUILD_CLIENT, return_value=client),
            patch.object(DomaClient, "reset", AsyncMock(side_effect=failure)),
        ):
            result = runner.invoke(app, ["reset-cursor", "7", "--db-url", db_url])

        assert result.exit_code == 1
        result = runner.invoke(app, ["cursor", "--db-url", db_url])
        assert "Cursor: none" in result.output


class TestAnalyticsCommands:
    """Tests for process-analytics, analytics, trending and opportunities."""

    def test_process_then_show(self, runner: CliRunner, db_url: str) -> None:
        """Aggregate the backlog and display the rollup."""
        asyncio.run(_seed(db_url))

        result = runner.invoke(app, ["process-analytics", "--db-url", db_url])
        assert result.exit_code == 0, result.output
        assert "Processed 3 events" in result.output

        result = runner.invoke(app, ["analytics", "a.com", "--db-url", db_url])
        assert result.exit_code == 0, result.output
        assert "Total events:    2" in result.output
        assert "Total volume:    151,000.00" in result.output
        assert "Lowest price:    1,000.00" in result.output
        assert "Traits:" in result.output

    def test_analytics_unknown_domain(self, runner: CliRunner, db_url: str) -> None:
        """Exit 1 for a domain without analytics."""
        result = runner.invoke(app, ["analytics", "nope.com", "--db-url", db_url])
        assert result.exit_code == 1
        assert "No analytics for nope.com" in result.output

    def test_trending(self, runner: CliRunner, db_url: str) -> None:
        """List the most active domain first."""
        asyncio.run(_seed(db_url))
        runner.invoke(app, ["process-analytics", "--db-url", db_url])

        result = runner.invoke(app, ["trending", "--timeframe", "1h", "--db-url", db_url])
        assert result.exit_code == 0, result.output
        lines = [line for line in result.output.splitlines() if ".com" in line or ".io" in line]
        assert lines[0].startswith("a.com")

    def test_trending_rejects_unknown_timeframe(self, runner: CliRunner, db_url: str) -> None:
        """Exit 1 for an unsupported timeframe."""
        result = runner.invoke(app, ["trending", "--timeframe", "2w", "--db-url", db_url])
        assert result.exit_code == 1

    def test_opportunities(self, runner: CliRunner, db_url: str) -> None:
        """Rank the high-value sale above the listing."""
        asyncio.run(_seed(db_url))

        result = runner.invoke(app, ["opportunities", "--db-url", db_url])
        assert result.exit_code == 0, result.output
        assert "high_value_sale" in result.output
        assert "new_listing" in result.output
        assert result.output.index("a.com") < result.output.index("b.io")

    def test_opportunities_empty(self, runner: CliRunner, db_url: str) -> None:
        """Say so when nothing qualifies."""
        result = runner.invoke(app, ["opportunities", "--db-url", db_url])
        assert "No opportunities in the last 24h" in result.output


class TestRunCommand:
    """Tests for the run command."""

    def test_run_builds_service_with_overrides(self, runner: CliRunner, db_url: str) -> None:
        """Pass CLI overrides into the service configuration."""
        service = MagicMock()
        service.run = AsyncMock()
        with (
            patch(
                "domain_watch.apps.domain_monitor.cli.run_cmd.build_client",
                return_value=MagicMock(),
            ),
            patch(
                "domain_watch.apps.domain_monitor.cli.run_cmd.DomainMonitorService",
                return_value=service,
            ) as mock_service_cls,
        ):
            result = runner.invoke(
                app,
                [
                    "run",
                    "--db-url",
                    db_url,
                    "--page-size",
                    "25",
                    "--event-types",
                    "NAME_TOKEN_SOLD, NAME_TOKEN_LISTED",
                ],
            )

        assert result.exit_code == 0, result.output
        assert "Event types: NAME_TOKEN_SOLD, NAME_TOKEN_LISTED" in result.output
        config = mock_service_cls.call_args.args[0]
        assert config.db_url == db_url
        assert config.page_size == 25
        assert config.event_types == ("NAME_TOKEN_SOLD", "NAME_TOKEN_LISTED")
        service.run.assert_awaited_once()

    def test_run_without_api_key_exits(self, runner: CliRunner, db_url: str) -> None:
        """Exit 1 when no Doma API key is configured."""
        with patch.dict("os.environ", {"DOMA_API_KEY": ""}):
            result = runner.invoke(app, ["run", "--db-url", db_url])
        assert result.exit_code == 1
        assert "doma.api_key not configured" in result.output
