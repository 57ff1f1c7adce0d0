"""Tests for the subscription matcher."""

from unittest.mock import patch

import pytest

from domain_watch.apps.domain_monitor.matcher import SubscriptionMatcher
from domain_watch.apps.domain_monitor.normalizer import NormalizedEvent, normalize_event
from domain_watch.apps.domain_monitor.repository import MonitorRepository

_NOW_MS = 1_704_067_200_000


def _sale(name: str, price: float) -> NormalizedEvent:
    """Build a sale event with a price."""
    return normalize_event(
        {"id": 1, "name": name, "type": "NAME_TOKEN_SOLD", "eventData": {"price": price}}
    )


class TestSubscriptionMatcher:
    """Tests for SubscriptionMatcher."""

    @pytest.mark.asyncio
    async def test_matches_type_and_filters(self, repo: MonitorRepository) -> None:
        """Return only subscriptions whose type and filters accept the event."""
        wanted = await repo.add_subscription(
            user_id="u1",
            event_type="NAME_TOKEN_SOLD",
            webhook_url="https://a.test",
            filters={"minPrice": 500, "extensions": ["com"]},
        )
        await repo.add_subscription(
            user_id="u1", event_type="NAME_TOKEN_LISTED", webhook_url="https://b.test"
        )
        await repo.add_subscription(
            user_id="u2",
            event_type="NAME_TOKEN_SOLD",
            webhook_url="https://c.test",
            filters={"extensions": ["io"]},
        )
        matcher = SubscriptionMatcher(repo)

        matched = await matcher.match(_sale("a.com", 700), now=_NOW_MS)
        assert [s.id for s in matched] == [wanted.id]
        assert await matcher.match(_sale("a.com", 300), now=_NOW_MS) == []

    @pytest.mark.asyncio
    async def test_results_ordered_by_id(self, repo: MonitorRepository) -> None:
        """Return every match in subscription id order."""
        ids = [
            (
                await repo.add_subscription(
                    user_id="u", event_type="NAME_TOKEN_SOLD", webhook_url=f"https://{i}.test"
                )
            ).id
            for i in range(3)
        ]
        matcher = SubscriptionMatcher(repo)
        assert await matcher.refresh() == 3

        matched = await matcher.match(_sale("x.com", 1), now=_NOW_MS)
        assert [s.id for s in matched] == ids

    @pytest.mark.asyncio
    async def test_invalid_filters_are_skipped(self, repo: MonitorRepository) -> None:
        """Leave subscriptions with unparseable filters out of the snapshot."""
        await repo.add_subscription(
            user_id="u",
            event_type="NAME_TOKEN_SOLD",
            webhook_url="https://bad.test",
            filters={"minPrice": "lots"},
        )
        good = await repo.add_subscription(
            user_id="u", event_type="NAME_TOKEN_SOLD", webhook_url="https://good.test"
        )
        matcher = SubscriptionMatcher(repo)

        assert await matcher.refresh() == 1
        assert [s.id for s in await matcher.match(_sale("a.com", 1))] == [good.id]

    @pytest.mark.asyncio
    async def test_inactive_subscriptions_ignored(self, repo: MonitorRepository) -> None:
        """Never match inactive subscriptions."""
        await repo.add_subscription(
            user_id="u",
            event_type="NAME_TOKEN_SOLD",
            webhook_url="https://a.test",
            is_active=False,
        )
        assert await SubscriptionMatcher(repo).match(_sale("a.com", 1)) == []

    @pytest.mark.asyncio
    async def test_cache_ttl_and_invalidate(self, repo: MonitorRepository) -> None:
        """Reuse the snapshot within the TTL until invalidated."""
        matcher = SubscriptionMatcher(repo, cache_ttl_seconds=60.0)
        with patch("domain_watch.apps.domain_monitor.matcher.time.monotonic", return_value=100.0):
            assert await matcher.refresh() == 0
            await repo.add_subscription(
                user_id="u", event_type="NAME_TOKEN_SOLD", webhook_url="https://a.test"
            )
            assert await matcher.refresh() == 0

            matcher.invalidate()
            assert await matcher.refresh() == 1

    @pytest.mark.asyncio
    async def test_zero_ttl_always_reloads(self, repo: MonitorRepository) -> None:
        """Reload on every refresh with the default TTL."""
        matcher = SubscriptionMatcher(repo)
        assert await matcher.refresh() == 0
        await repo.add_subscription(
            user_id="u", event_type="NAME_TOKEN_SOLD", webhook_url="https://a.test"
        )
        assert await matcher.refresh() == 1
