"""Best-effort webhook delivery with a durable audit trail.

Each matched subscription receives one JSON POST per event. Any HTTP
response, whatever its status, is a completed attempt; transport failures
(connection errors, timeouts) and stored URLs that cannot be parsed count
as failed. Attempts are never retried, and every attempt leaves exactly
one ``WebhookDelivery`` row.
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError

from domain_watch.apps.domain_monitor.models import DeliveryStatus, Subscription
from domain_watch.apps.domain_monitor.protocols import SubscriptionStore
from domain_watch.apps.domain_monitor.subscriptions import validate_webhook_url
from domain_watch.core.timestamps import ms_to_iso, now_ms

logger = logging.getLogger(__name__)

USER_AGENT = "domain-watch/0.1"
_DEFAULT_TIMEOUT = 10.0


class DeliverableEvent(Protocol):
    """The event fields carried in a webhook body."""

    @property
    def event_id(self) -> int:
        """Return the upstream event id."""
        ...

    @property
    def name(self) -> str:
        """Return the domain name."""
        ...

    @property
    def token_id(self) -> str | None:
        """Return the token id."""
        ...

    @property
    def type(self) -> str:
        """Return the event type."""
        ...

    @property
    def event_data(self) -> Mapping[str, Any]:
        """Return the event payload."""
        ...


def build_payload(
    subscription: Subscription, event: DeliverableEvent, sent_at: int
) -> dict[str, Any]:
    """Build the JSON body posted to a subscriber.

    Args:
        subscription: Subscription being notified.
        event: Matched event.
        sent_at: Dispatch time in epoch milliseconds.

    Returns:
        The webhook body.

    """
    timestamp = ms_to_iso(sent_at)
    return {
        "subscription_id": subscription.id,
        "event": {
            "id": event.event_id,
            "name": event.name,
            "tokenId": event.token_id,
            "type": event.type,
            "eventData": dict(event.event_data),
            "timestamp": timestamp,
        },
        "metadata": {
            "webhook_url": subscription.webhook_url,
            "created_at": timestamp,
        },
    }


class WebhookDispatcher:
    """POST matched events to subscriber URLs and record every attempt.

    Args:
        store: Store receiving the delivery audit rows.
        timeout: Per-request timeout in seconds.

    """

    def __init__(self, store: SubscriptionStore, *, timeout: float = _DEFAULT_TIMEOUT) -> None:
        """Initialize the dispatcher.

        Args:
            store: Delivery audit store.
            timeout: Per-request timeout in seconds.

        """
        self._store = store
        self._http_client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, "Content-Type": "application/json"},
        )

    async def deliver(self, subscription: Subscription, event: DeliverableEvent) -> DeliveryStatus:
        """Make one delivery attempt and write its audit row.

        A stored URL that is not an absolute http(s) URL is recorded as a
        failed attempt without touching the network.

        Args:
            subscription: Subscription to notify.
            event: Matched event.

        Returns:
            ``SUCCESS`` when any HTTP response arrived, ``FAILED`` on a
            transport error or an unusable URL.

        """
        sent_at = now_ms()
        status, response_status, error_message = await self._post(
            subscription.webhook_url, build_payload(subscription, event, sent_at)
        )
        if status is DeliveryStatus.FAILED:
            logger.warning(
                "Webhook to %s failed for event %d: %s",
                subscription.webhook_url,
                event.event_id,
                error_message,
            )
        else:
            logger.info(
                "Webhook to %s for event %d returned %d",
                subscription.webhook_url,
                event.event_id,
                response_status,
            )

        try:
            await self._store.record_delivery(
                subscription_id=subscription.id,
                event_id=event.event_id,
                webhook_url=subscription.webhook_url,
                status=status,
                response_status=response_status,
                error_message=error_message,
                delivered_at=sent_at,
            )
        except SQLAlchemyError:
            logger.exception(
                "Failed to record delivery of event %d to subscription %d",
                event.event_id,
                subscription.id,
            )
        return status

    async def _post(
        self, url: str, payload: dict[str, Any]
    ) -> tuple[DeliveryStatus, int | None, str | None]:
        """POST ``payload`` and return (status, response status, error message)."""
        if not validate_webhook_url(url):
            return DeliveryStatus.FAILED, None, f"invalid webhook URL: {url!r}"
        try:
            response = await self._http_client.post(url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return DeliveryStatus.FAILED, None, str(exc) or type(exc).__name__
        return DeliveryStatus.SUCCESS, response.status_code, None

    async def dispatch(
        self, event: DeliverableEvent, subscriptions: Sequence[Subscription]
    ) -> list[DeliveryStatus]:
        """Deliver ``event`` to every subscription concurrently.

        A subscription listed more than once is notified once.

        Args:
            event: Matched event.
            subscriptions: Subscriptions that accepted the event.

        Returns:
            Delivery outcomes in subscription order.

        """
        unique = list({sub.id: sub for sub in subscriptions}.values())
        if not unique:
            return []
        return list(await asyncio.gather(*(self.deliver(sub, event) for sub in unique)))

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._http_client.aclose()

    async def __aenter__(self) -> "WebhookDispatcher":
        """Enter the async context manager."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit the async context manager, closing the HTTP client."""
        await self.close()
