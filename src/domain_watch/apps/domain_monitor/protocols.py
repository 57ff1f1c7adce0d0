"""Structural protocols for the upstream event source and the durable store.

Decouple the poller, matcher, dispatcher, and aggregator from the Doma HTTP
client and the SQLAlchemy repository. Any class whose shape matches can be
used without explicit inheritance (structural subtyping), which is how the
tests swap in fakes.
"""

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from domain_watch.apps.domain_monitor.analytics import DomainRollup
    from domain_watch.apps.domain_monitor.models import (
        DeliveryStatus,
        DomainEvent,
        Subscription,
        WebhookDelivery,
    )
    from domain_watch.apps.domain_monitor.normalizer import NormalizedEvent
    from domain_watch.apps.domain_monitor.traits import TraitsRecord
    from domain_watch.clients.doma.models import PollPage


@runtime_checkable
class EventSource(Protocol):
    """Paginated, cursor-based source of upstream events."""

    async def poll(
        self,
        *,
        after: int | None = None,
        limit: int = 100,
        event_types: Sequence[str] = (),
        finalized_only: bool = True,
    ) -> "PollPage":
        """Return the next page of events strictly after ``after``."""
        ...

    async def ack(self, event_id: int) -> None:
        """Acknowledge every event up to ``event_id``."""
        ...

    async def reset(self, event_id: int) -> None:
        """Rewind the upstream cursor to ``event_id``."""
        ...


@runtime_checkable
class CursorStore(Protocol):
    """Durable home of the last acknowledged event id."""

    async def get_cursor(self) -> int | None:
        """Return the stored cursor, or ``None`` before the first page."""
        ...

    async def advance_cursor(self, event_id: int) -> int:
        """Move the cursor forward to ``event_id``; never move it back."""
        ...

    async def reset_cursor(self, event_id: int) -> None:
        """Set the cursor unconditionally (operator rewind)."""
        ...


@runtime_checkable
class EventStore(Protocol):
    """Idempotent event log plus the analytics read-modify-write boundary."""

    async def upsert_events(self, events: Sequence["NormalizedEvent"], created_at: int) -> int:
        """Insert-or-overwrite events by id; return how many were new."""
        ...

    async def get_unprocessed_events(self, limit: int) -> list["DomainEvent"]:
        """Return up to ``limit`` unprocessed events, oldest first."""
        ...

    async def apply_rollup(
        self,
        domain_name: str,
        event_ids: Sequence[int],
        merge: Callable[["DomainRollup | None"], "DomainRollup"],
    ) -> "DomainRollup":
        """Atomically merge into a domain's analytics and mark events processed."""
        ...

    async def insert_traits_if_absent(self, traits: "TraitsRecord") -> bool:
        """Store traits for a domain unless a row already exists."""
        ...


@runtime_checkable
class SubscriptionStore(Protocol):
    """Read side of subscriptions plus the delivery audit trail."""

    async def get_active_subscriptions(
        self, event_type: str | None = None
    ) -> list["Subscription"]:
        """Return active subscriptions, optionally for one event type."""
        ...

    async def record_delivery(  # noqa: PLR0913
        self,
        *,
        subscription_id: int,
        event_id: int,
        webhook_url: str,
        status: "DeliveryStatus",
        response_status: int | None = None,
        error_message: str | None = None,
        delivered_at: int,
    ) -> "WebhookDelivery":
        """Append one delivery audit row."""
        ...
