"""Subscription management on top of the repository.

Validate and persist subscriptions, toggle and delete them, report
per-user delivery statistics, and seed a user with the standard set of
template subscriptions. Every mutation invalidates the matcher's cached
snapshot when a matcher is attached, so changes apply from the next cycle.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from domain_watch.apps.domain_monitor.event_types import KNOWN_EVENT_TYPES
from domain_watch.apps.domain_monitor.filters import SubscriptionFilter
from domain_watch.apps.domain_monitor.models import DeliveryStatus, Subscription
from domain_watch.core.timestamps import MS_PER_SECOND, SECONDS_PER_DAY, now_ms

if TYPE_CHECKING:
    from domain_watch.apps.domain_monitor.matcher import SubscriptionMatcher
    from domain_watch.apps.domain_monitor.repository import MonitorRepository

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset({"http", "https"})
_TEMPLATE_EXTENSIONS = [".com", ".eth", ".sol"]
_STATS_WINDOW_MS = SECONDS_PER_DAY * MS_PER_SECOND


@dataclass(frozen=True)
class SubscriptionTemplate:
    """A predefined subscription offered to new users."""

    name: str
    event_type: str
    filters: dict[str, Any]


DEFAULT_TEMPLATES: tuple[SubscriptionTemplate, ...] = (
    SubscriptionTemplate(
        "High-Value Listings",
        "NAME_TOKEN_LISTED",
        {"minPrice": 500_000, "extensions": _TEMPLATE_EXTENSIONS},
    ),
    SubscriptionTemplate(
        "Premium Sales",
        "NAME_TOKEN_SOLD",
        {"minPrice": 5_000, "extensions": _TEMPLATE_EXTENSIONS},
    ),
    SubscriptionTemplate(
        "Expiring Domains",
        "NAME_TOKEN_EXPIRED",
        {"expiresWithinDays": 10, "extensions": _TEMPLATE_EXTENSIONS},
    ),
    SubscriptionTemplate(
        "Large Offers",
        "NAME_TOKEN_OFFERED",
        {"minPrice": 10_000, "extensions": _TEMPLATE_EXTENSIONS},
    ),
    SubscriptionTemplate(
        "Fractionalized Domains",
        "NAME_TOKEN_FRACTIONALIZED",
        {"extensions": _TEMPLATE_EXTENSIONS},
    ),
)


class InvalidSubscriptionError(ValueError):
    """Raised when a subscription request fails validation."""


class SubscriptionNotFoundError(LookupError):
    """Raised when a subscription id does not exist."""


@dataclass(frozen=True)
class SubscriptionStats:
    """Per-user subscription and delivery summary.

    Args:
        total_subscriptions: Subscriptions owned by the user.
        active_subscriptions: Of those, how many are active.
        webhooks_sent_24h: Successful deliveries in the last 24 hours.
        webhooks_failed_24h: Failed deliveries in the last 24 hours.
        event_types: Distinct subscribed event types, sorted.
        created_at: Creation time of the user's first subscription.

    """

    total_subscriptions: int
    active_subscriptions: int
    webhooks_sent_24h: int
    webhooks_failed_24h: int
    event_types: tuple[str, ...]
    created_at: int | None


def validate_webhook_url(url: str) -> bool:
    """Return whether ``url`` is an absolute http(s) URL with a host."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError):
        return False
    return parsed.scheme in _ALLOWED_SCHEMES and bool(parsed.host)


class SubscriptionManager:
    """Create, change and inspect subscriptions.

    Args:
        repository: Monitor repository.
        matcher: Matcher whose cache is invalidated on every change.

    """

    def __init__(
        self,
        repository: "MonitorRepository",
        matcher: "SubscriptionMatcher | None" = None,
    ) -> None:
        """Initialize the manager.

        Args:
            repository: Monitor repository.
            matcher: Optional matcher to keep in sync.

        """
        self._repo = repository
        self._matcher = matcher

    @staticmethod
    def get_event_types() -> tuple[str, ...]:
        """Return the event types offered to subscribers."""
        return KNOWN_EVENT_TYPES

    def _changed(self) -> None:
        if self._matcher is not None:
            self._matcher.invalidate()

    async def create_subscription(
        self,
        user_id: str,
        event_type: str,
        webhook_url: str,
        filters: Mapping[str, Any] | None = None,
    ) -> Subscription:
        """Validate and store a new active subscription.

        Args:
            user_id: Owning user.
            event_type: Event type to listen for.
            webhook_url: http(s) callback URL.
            filters: Filter document.

        Returns:
            The stored ``Subscription``.

        Raises:
            InvalidSubscriptionError: If the user, event type, URL or
                filters are invalid.

        """
        event_type = event_type.strip()
        if not user_id.strip():
            msg = "user_id must not be empty"
            raise InvalidSubscriptionError(msg)
        if not event_type:
            msg = "event_type must not be empty"
            raise InvalidSubscriptionError(msg)
        if not validate_webhook_url(webhook_url):
            msg = f"Invalid webhook URL: {webhook_url!r}"
            raise InvalidSubscriptionError(msg)
        filters_doc = self._checked_filters(filters)
        if event_type not in KNOWN_EVENT_TYPES:
            logger.warning("Subscribing to unrecognised event type %s", event_type)

        subscription = await self._repo.add_subscription(
            user_id=user_id,
            event_type=event_type,
            webhook_url=webhook_url,
            filters=filters_doc,
        )
        self._changed()
        return subscription

    @staticmethod
    def _checked_filters(filters: Mapping[str, Any] | None) -> dict[str, Any]:
        """Return a copy of ``filters`` after confirming it parses."""
        filters_doc = dict(filters or {})
        try:
            SubscriptionFilter.from_dict(filters_doc)
        except ValueError as exc:
            raise InvalidSubscriptionError(str(exc)) from exc
        return filters_doc

    async def list_subscriptions(self, user_id: str | None = None) -> list[Subscription]:
        """Return subscriptions ordered by id, optionally for one user."""
        return await self._repo.list_subscriptions(user_id)

    async def update_filters(
        self, subscription_id: int, filters: Mapping[str, Any]
    ) -> Subscription:
        """Replace a subscription's filter document.

        Raises:
            InvalidSubscriptionError: If the filters do not parse.
            SubscriptionNotFoundError: If the id does not exist.

        """
        updated = await self._repo.update_subscription(
            subscription_id, filters=self._checked_filters(filters)
        )
        if updated is None:
            raise SubscriptionNotFoundError(subscription_id)
        self._changed()
        return updated

    async def set_active(self, subscription_id: int, *, is_active: bool) -> Subscription:
        """Activate or deactivate a subscription.

        Raises:
            SubscriptionNotFoundError: If the id does not exist.

        """
        updated = await self._repo.update_subscription(subscription_id, is_active=is_active)
        if updated is None:
            raise SubscriptionNotFoundError(subscription_id)
        logger.info(
            "%s subscription %d", "Activated" if is_active else "Deactivated", subscription_id
        )
        self._changed()
        return updated

    async def delete_subscription(self, subscription_id: int) -> None:
        """Delete a subscription.

        Raises:
            SubscriptionNotFoundError: If the id does not exist.

        """
        if not await self._repo.delete_subscription(subscription_id):
            raise SubscriptionNotFoundError(subscription_id)
        logger.info("Deleted subscription %d", subscription_id)
        self._changed()

    async def get_stats(self, user_id: str) -> SubscriptionStats:
        """Summarize a user's subscriptions and last-24h deliveries."""
        subscriptions = await self._repo.list_subscriptions(user_id)
        counts = {status.value: 0 for status in DeliveryStatus}
        if subscriptions:
            counts = await self._repo.get_delivery_counts(
                now_ms() - _STATS_WINDOW_MS, [s.id for s in subscriptions]
            )
        return SubscriptionStats(
            total_subscriptions=len(subscriptions),
            active_subscriptions=sum(1 for s in subscriptions if s.is_active),
            webhooks_sent_24h=counts[DeliveryStatus.SUCCESS.value],
            webhooks_failed_24h=counts[DeliveryStatus.FAILED.value],
            event_types=tuple(sorted({s.event_type for s in subscriptions})),
            created_at=subscriptions[0].created_at if subscriptions else None,
        )

    async def create_default_subscriptions(
        self, user_id: str, webhook_url: str
    ) -> list[Subscription]:
        """Subscribe a user to every ``DEFAULT_TEMPLATES`` entry.

        Raises:
            InvalidSubscriptionError: If the user or URL is invalid.

        """
        created = []
        for template in DEFAULT_TEMPLATES:
            subscription = await self.create_subscription(
                user_id, template.event_type, webhook_url, template.filters
            )
            logger.info("Created %r subscription %d", template.name, subscription.id)
            created.append(subscription)
        return created
