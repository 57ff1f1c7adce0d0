"""Tests for the incremental analytics aggregator."""

from dataclasses import dataclass, field
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from domain_watch.apps.domain_monitor.analytics import (
    AnalyticsAggregator,
    DomainRollup,
    merge_rollup,
    timeframe_cutoff_ms,
)
from domain_watch.apps.domain_monitor.normalizer import NormalizedEvent, normalize_event
from domain_watch.apps.domain_monitor.repository import MonitorRepository

_BASE_TS = 1_700_000_000_000
_HOUR_MS = 3_600_000


@dataclass
class _Row:
    """Minimal rollup input."""

    type: str
    created_at: int = _BASE_TS
    token_id: str | None = None
    event_data: dict[str, Any] = field(default_factory=dict)


def _priced(event_type: str, price: float, at: int = _BASE_TS) -> _Row:
    """Build a rollup input carrying a price."""
    return _Row(type=event_type, created_at=at, event_data={"price": price})


class TestMergeRollup:
    """Tests for the pure rollup merge."""

    def test_first_slice_creates_rollup(self) -> None:
        """Start from zero counters for a new domain."""
        rollup = merge_rollup(
            "a.com",
            None,
            [
                _priced("NAME_TOKEN_LISTED", 1000, _BASE_TS),
                _priced("NAME_TOKEN_SOLD", 2000, _BASE_TS + 1),
            ],
        )
        assert rollup.total_events == 2
        assert rollup.total_volume == 3000
        assert rollup.highest_price == 2000
        assert rollup.lowest_price == 1000
        assert rollup.trade_count == 1
        assert rollup.offer_count == 0
        assert rollup.last_event_type == "NAME_TOKEN_SOLD"
        assert rollup.last_event_at == _BASE_TS + 1

    def test_extrema_across_batches(self) -> None:
        """Track the running maximum and minimum over separate batches."""
        rollup: DomainRollup | None = None
        for price in (10, 50, 5):
            rollup = merge_rollup("a.com", rollup, [_priced("NAME_TOKEN_SOLD", price)])
        assert rollup is not None
        assert rollup.highest_price == 50
        assert rollup.lowest_price == 5
        assert rollup.total_volume == 65
        assert rollup.trade_count == 3

    def test_unpriced_types_do_not_touch_prices(self) -> None:
        """Ignore prices on types outside the priced set."""
        rollup = merge_rollup("a.com", None, [_priced("NAME_TOKEN_MINTED", 999)])
        assert rollup.total_volume == 0
        assert rollup.highest_price is None
        assert rollup.lowest_price is None
        assert rollup.total_events == 1

    def test_zero_price_counts(self) -> None:
        """A zero price sets the minimum instead of being skipped."""
        rollup = merge_rollup("a.com", None, [_priced("NAME_TOKEN_OFFERED", 0)])
        assert rollup.lowest_price == 0
        assert rollup.offer_count == 1

    def test_counters_are_monotonic(self) -> None:
        """Never decrease totals when merging more events."""
        prior = merge_rollup("a.com", None, [_priced("NAME_TOKEN_SOLD", 10)])
        later = merge_rollup("a.com", prior, [_Row(type="NAME_TOKEN_TRANSFERRED")])
        assert later.total_events == prior.total_events + 1
        assert later.total_volume == prior.total_volume
        assert later.trade_count == prior.trade_count

    def test_token_expiry_and_fractionalization(self) -> None:
        """Keep the latest token id and expiry and latch fractionalization."""
        prior = merge_rollup(
            "a.com",
            None,
            [
                _Row(type="NAME_TOKEN_FRACTIONALIZED", token_id="t1"),
                _Row(type="NAME_TOKEN_RENEWED", event_data={"expiresAt": _BASE_TS + _HOUR_MS}),
            ],
        )
        assert prior.token_id == "t1"
        assert prior.is_fractionalized is True
        assert prior.expires_at == _BASE_TS + _HOUR_MS

        later = merge_rollup("a.com", prior, [_Row(type="NAME_TOKEN_MINTED", token_id="t2")])
        assert later.token_id == "t2"
        assert later.is_fractionalized is True
        assert later.expires_at == _BASE_TS + _HOUR_MS

    def test_empty_slice_returns_prior(self) -> None:
        """Leave the rollup unchanged without events."""
        prior = DomainRollup("a.com", total_events=4)
        assert merge_rollup("a.com", prior, []) is prior


class TestTimeframe:
    """Tests for trending timeframes."""

    @pytest.mark.parametrize(
        ("timeframe", "hours"), [("1h", 1), ("24h", 24), ("7d", 168), ("30d", 720), ("bad", 24)]
    )
    def test_cutoff(self, timeframe: str, hours: int) -> None:
        """Subtract the timeframe length, defaulting to 24 hours."""
        now = _BASE_TS + 1000 * _HOUR_MS
        assert timeframe_cutoff_ms(timeframe, now) == now - hours * _HOUR_MS


def _record(
    event_id: int, name: str, event_type: str, price: float | None = None
) -> NormalizedEvent:
    """Build a normalized event with an optional price."""
    data = {} if price is None else {"price": price}
    return normalize_event({"id": event_id, "name": name, "type": event_type, "eventData": data})


class TestAnalyticsAggregator:
    """Tests for AnalyticsAggregator against a real store."""

    @pytest.mark.asyncio
    async def test_process_batch_rolls_up_and_marks_processed(
        self, repo: MonitorRepository
    ) -> None:
        """Aggregate per domain, store traits and consume the batch."""
        await repo.upsert_events(
            [
                _record(1, "a.com", "NAME_TOKEN_LISTED", 1000),
                _record(2, "a.com", "NAME_TOKEN_SOLD", 2000),
                _record(3, "b.io", "NAME_TOKEN_MINTED"),
            ],
            _BASE_TS,
        )
        aggregator = AnalyticsAggregator(repo, batch_size=10)

        assert await aggregator.process_batch() == 3
        assert await aggregator.process_batch() == 0

        row = await repo.get_analytics("a.com")
        assert row is not None
        assert row.total_events == 2
        assert row.total_volume == 3000
        assert row.highest_price == 2000
        assert row.lowest_price == 1000
        assert row.trade_count == 1
        assert await repo.get_traits("b.io") is not None

    @pytest.mark.asyncio
    async def test_each_event_counted_once(self, repo: MonitorRepository) -> None:
        """Redelivered events are not aggregated again."""
        event = _record(1, "a.com", "NAME_TOKEN_SOLD", 50)
        await repo.upsert_events([event], _BASE_TS)
        aggregator = AnalyticsAggregator(repo)
        await aggregator.process_batch()

        await repo.upsert_events([event], _BASE_TS + 1)
        assert await aggregator.process_batch() == 0

        row = await repo.get_analytics("a.com")
        assert row is not None
        assert row.total_events == 1
        assert row.total_volume == 50

    @pytest.mark.asyncio
    async def test_batch_size_bounds_work(self, repo: MonitorRepository) -> None:
        """Consume at most batch_size events per call, oldest first."""
        await repo.upsert_events([_record(i, "a.com", "NAME_TOKEN_MINTED") for i in range(5)], 0)
        aggregator = AnalyticsAggregator(repo, batch_size=2)

        assert await aggregator.process_batch() == 2
        assert len(await repo.get_unprocessed_events(10)) == 3

    @pytest.mark.asyncio
    async def test_failed_domain_stays_unprocessed(self, repo: MonitorRepository) -> None:
        """Skip a domain whose transaction fails and continue with the rest."""
        await repo.upsert_events(
            [_record(1, "bad.com", "NAME_TOKEN_MINTED"), _record(2, "ok.com", "NAME_TOKEN_MINTED")],
            _BASE_TS,
        )
        real_apply = repo.apply_rollup

        async def flaky(domain_name: str, *args: Any) -> DomainRollup:
            if domain_name == "bad.com":
                raise OperationalError("update", {}, Exception("locked"))
            return await real_apply(domain_name, *args)

        with patch.object(repo, "apply_rollup", side_effect=flaky):
            assert await AnalyticsAggregator(repo).process_batch() == 1

        remaining = await repo.get_unprocessed_events(10)
        assert [e.name for e in remaining] == ["bad.com"]

    @pytest.mark.asyncio
    async def test_out_of_range_expiry_is_ignored(self, repo: MonitorRepository) -> None:
        """Aggregate an event whose expiry no column can hold without storing it."""
        record = {
            "id": 2,
            "name": "b.com",
            "type": "NAME_TOKEN_SOLD",
            "eventData": {"price": 5, "expiresAt": 1e20},
        }
        await repo.upsert_events([normalize_event(record)], _BASE_TS)

        assert await AnalyticsAggregator(repo).process_batch() == 1

        row = await repo.get_analytics("b.com")
        assert row is not None
        assert row.expires_at is None
        assert row.total_volume == 5
        assert await repo.get_unprocessed_events(10) == []

    @pytest.mark.asyncio
    async def test_driver_error_skips_only_that_domain(self, repo: MonitorRepository) -> None:
        """Log a non-SQLAlchemy driver error for one domain and keep aggregating."""
        await repo.upsert_events(
            [_record(1, "bad.com", "NAME_TOKEN_MINTED"), _record(2, "ok.com", "NAME_TOKEN_MINTED")],
            _BASE_TS,
        )
        real_apply = repo.apply_rollup

        async def overflowing(domain_name: str, *args: Any) -> DomainRollup:
            if domain_name == "bad.com":
                raise OverflowError("Python int too large to convert to SQLite INTEGER")
            return await real_apply(domain_name, *args)

        with patch.object(repo, "apply_rollup", side_effect=overflowing):
            assert await AnalyticsAggregator(repo).process_batch() == 1

        remaining = await repo.get_unprocessed_events(10)
        assert [e.name for e in remaining] == ["bad.com"]
        assert await repo.get_analytics("ok.com") is not None

    @pytest.mark.asyncio
    async def test_fetch_failure_returns_zero(self, repo: MonitorRepository) -> None:
        """Report no progress when the batch cannot be read."""
        failure = OperationalError("select", {}, Exception("gone"))
        with patch.object(repo, "get_unprocessed_events", AsyncMock(side_effect=failure)):
            assert await AnalyticsAggregator(repo).process_batch() == 0

    @pytest.mark.asyncio
    async def test_run_stops(self, repo: MonitorRepository) -> None:
        """Exit the loop once stop() is called."""
        aggregator = AnalyticsAggregator(repo, interval_seconds=0.0)
        calls = 0

        async def process() -> int:
            nonlocal calls
            calls += 1
            if calls == 2:
                aggregator.stop()
            return 0

        with patch.object(aggregator, "process_batch", side_effect=process):
            await aggregator.run()

        assert calls == 2
        assert aggregator.running is False
