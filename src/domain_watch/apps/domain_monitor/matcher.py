"""Resolve the active subscriptions interested in a stored event.

Subscriptions are loaded from the store once per poll cycle and grouped by
event type; each subscription's filter document is parsed once and reused
for every event of the cycle.
"""

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from domain_watch.apps.domain_monitor.filters import FilterableEvent, SubscriptionFilter
from domain_watch.apps.domain_monitor.models import Subscription
from domain_watch.apps.domain_monitor.protocols import SubscriptionStore
from domain_watch.core.timestamps import now_ms

logger = logging.getLogger(__name__)


class MatchableEvent(FilterableEvent, Protocol):
    """A filterable event that also exposes its type."""

    @property
    def type(self) -> str:
        """Return the upstream event type."""
        ...


@dataclass(frozen=True)
class _CompiledSubscription:
    """A subscription paired with its parsed filter."""

    subscription: Subscription
    predicate: SubscriptionFilter


class SubscriptionMatcher:
    """Match events against active subscriptions.

    Args:
        store: Source of active subscriptions.
        cache_ttl_seconds: How long a loaded snapshot is reused by
            ``refresh()``; ``0`` reloads on every call.

    """

    def __init__(self, store: SubscriptionStore, *, cache_ttl_seconds: float = 0.0) -> None:
        """Initialize the matcher with an empty cache.

        Args:
            store: Subscription store.
            cache_ttl_seconds: Snapshot lifetime in seconds.

        """
        self._store = store
        self._cache_ttl_seconds = cache_ttl_seconds
        self._by_type: dict[str, list[_CompiledSubscription]] | None = None
        self._loaded_at = 0.0

    async def refresh(self) -> int:
        """Load active subscriptions unless a fresh snapshot is cached.

        Subscriptions whose filters cannot be parsed are logged and left out
        of the snapshot.

        Returns:
            Number of subscriptions in the snapshot.

        """
        if (
            self._by_type is not None
            and time.monotonic() - self._loaded_at < self._cache_ttl_seconds
        ):
            return sum(len(subs) for subs in self._by_type.values())

        by_type: dict[str, list[_CompiledSubscription]] = {}
        count = 0
        for subscription in await self._store.get_active_subscriptions():
            try:
                predicate = SubscriptionFilter.from_dict(subscription.filters)
            except ValueError:
                logger.warning(
                    "Skipping subscription %d with invalid filters %r",
                    subscription.id,
                    subscription.filters,
                )
                continue
            by_type.setdefault(subscription.event_type, []).append(
                _CompiledSubscription(subscription, predicate)
            )
            count += 1

        for subs in by_type.values():
            subs.sort(key=lambda compiled: compiled.subscription.id)
        self._by_type = by_type
        self._loaded_at = time.monotonic()
        logger.debug("Loaded %d active subscriptions", count)
        return count

    def invalidate(self) -> None:
        """Drop the cached snapshot so the next ``refresh()`` reloads."""
        self._by_type = None

    async def match(self, event: MatchableEvent, now: int | None = None) -> list[Subscription]:
        """Return the subscriptions whose type and filters accept ``event``.

        Loads a snapshot first when none is cached.

        Args:
            event: Stored or normalized event.
            now: Evaluation time in epoch milliseconds; defaults to the
                current time.

        Returns:
            Matching subscriptions ordered by id.

        """
        if self._by_type is None:
            await self.refresh()
        by_type = self._by_type or {}
        evaluated_at = now_ms() if now is None else now
        return [
            compiled.subscription
            for compiled in by_type.get(event.type, [])
            if compiled.predicate.matches(event, evaluated_at)
        ]
