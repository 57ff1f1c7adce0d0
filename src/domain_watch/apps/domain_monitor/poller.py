"""Cursor-driven ingestion loop for the Doma poll API.

One cycle reads the stored cursor, fetches the next page strictly after it,
normalizes and upserts the page, notifies matching subscribers, moves the
cursor to the page's high-water mark and finally acknowledges upstream.
Storage always precedes the cursor write, so a crash anywhere in the cycle
replays the page instead of losing it.

Re-entrancy is governed by ``PollerState``: a cycle only starts from
``IDLE``, ``HALTED`` is entered on a fatal upstream error and ``STOPPED``
on an operator stop. Both terminal states require an explicit ``resume()``.
"""

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from domain_watch.apps.domain_monitor.dispatcher import WebhookDispatcher
from domain_watch.apps.domain_monitor.matcher import SubscriptionMatcher
from domain_watch.apps.domain_monitor.normalizer import dedupe_events, normalize_event
from domain_watch.apps.domain_monitor.protocols import CursorStore, EventSource, EventStore
from domain_watch.clients.doma import FATAL_ERRORS, DomaAPIError
from domain_watch.core.timestamps import now_ms

logger = logging.getLogger(__name__)

_DEFAULT_PAGE_SIZE = 100
_DEFAULT_POLL_INTERVAL_SECONDS = 30.0
_DEFAULT_FOLLOW_UP_DELAY_SECONDS = 1.0


class PollerState(Enum):
    """Lifecycle of the ingestion loop."""

    IDLE = "idle"
    POLLING = "polling"
    HALTED = "halted"
    STOPPED = "stopped"


class PollerBusyError(RuntimeError):
    """Raised when an operation needs the poller idle but a cycle is running."""


class IngestStore(CursorStore, EventStore, Protocol):
    """Store offering both the cursor and the event log."""


@dataclass(frozen=True)
class PollResult:
    """Summary of one completed poll cycle.

    Args:
        fetched: Records on the upstream page.
        inserted: Events stored for the first time.
        deliveries: Webhook attempts made.
        cursor: Cursor after the cycle.
        has_more: Whether upstream reported further pending events.
        acknowledged: Whether the upstream acknowledgement succeeded.

    """

    fetched: int
    inserted: int
    deliveries: int
    cursor: int | None
    has_more: bool
    acknowledged: bool


class EventPoller:
    """Periodic, single-flight poller feeding the store and the dispatcher.

    Args:
        source: Upstream event source.
        store: Cursor and event store.
        matcher: Subscription matcher.
        dispatcher: Webhook dispatcher.
        page_size: Maximum events requested per page.
        event_types: Event types to request; empty requests all.
        finalized_only: Request only finalized events.
        poll_interval_seconds: Delay between cycles when caught up.
        follow_up_delay_seconds: Delay before the next cycle when upstream
            reports more pending events.

    """

    def __init__(  # noqa: PLR0913
        self,
        source: EventSource,
        store: IngestStore,
        matcher: SubscriptionMatcher,
        dispatcher: WebhookDispatcher,
        *,
        page_size: int = _DEFAULT_PAGE_SIZE,
        event_types: Sequence[str] = (),
        finalized_only: bool = True,
        poll_interval_seconds: float = _DEFAULT_POLL_INTERVAL_SECONDS,
        follow_up_delay_seconds: float = _DEFAULT_FOLLOW_UP_DELAY_SECONDS,
    ) -> None:
        """Initialize the poller in the ``IDLE`` state.

        Args:
            source: Upstream event source.
            store: Cursor and event store.
            matcher: Subscription matcher.
            dispatcher: Webhook dispatcher.
            page_size: Maximum events per page.
            event_types: Event type filter.
            finalized_only: Finalized-only flag.
            poll_interval_seconds: Idle delay between cycles.
            follow_up_delay_seconds: Delay while draining a backlog.

        """
        self._source = source
        self._store = store
        self._matcher = matcher
        self._dispatcher = dispatcher
        self._page_size = page_size
        self._event_types = tuple(event_types)
        self._finalized_only = finalized_only
        self._poll_interval_seconds = poll_interval_seconds
        self._follow_up_delay_seconds = follow_up_delay_seconds
        self._state = PollerState.IDLE
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> PollerState:
        """Return the current lifecycle state."""
        return self._state

    async def poll_once(self) -> PollResult | None:
        """Run a single ingestion cycle.

        Fatal upstream errors move the poller to ``HALTED``. Transient
        upstream errors and storage failures are logged and leave the cursor
        where it was, so the next cycle retries the same page.

        Returns:
            The cycle summary, or ``None`` when the cycle was skipped or
            failed.

        """
        if self._state is not PollerState.IDLE:
            logger.debug("Skipping poll cycle in state %s", self._state.value)
            return None

        self._state = PollerState.POLLING
        try:
            return await self._cycle()
        except FATAL_ERRORS as exc:
            logger.error("Fatal upstream error, halting poller: %s", exc)
            self._state = PollerState.HALTED
            return None
        except DomaAPIError as exc:
            logger.warning("Transient upstream error, will retry: %s", exc)
            return None
        except SQLAlchemyError:
            logger.exception("Storage failure, page will be replayed")
            return None
        finally:
            if self._state is PollerState.POLLING:
                self._state = (
                    PollerState.STOPPED if self._stop_event.is_set() else PollerState.IDLE
                )

    async def _cycle(self) -> PollResult:
        """Fetch, store, dispatch, advance and acknowledge one page."""
        cursor = await self._store.get_cursor()
        page = await self._source.poll(
            after=cursor,
            limit=self._page_size,
            event_types=self._event_types,
            finalized_only=self._finalized_only,
        )
        if not page.events:
            logger.debug("No new events after %s", cursor)
            return PollResult(
                fetched=0,
                inserted=0,
                deliveries=0,
                cursor=cursor,
                has_more=page.has_more_events,
                acknowledged=False,
            )

        events = dedupe_events([normalize_event(record) for record in page.events])
        inserted = await self._store.upsert_events(events, now_ms())

        await self._matcher.refresh()
        deliveries = 0
        for event in events:
            subscriptions = await self._matcher.match(event)
            if subscriptions:
                deliveries += len(await self._dispatcher.dispatch(event, subscriptions))

        high_water = page.last_id if page.last_id is not None else events[-1].event_id
        new_cursor = await self._store.advance_cursor(high_water)
        acknowledged = await self._acknowledge(high_water)

        logger.info(
            "Ingested %d events (%d new), %d webhooks, cursor %s",
            len(page.events),
            inserted,
            deliveries,
            new_cursor,
        )
        return PollResult(
            fetched=len(page.events),
            inserted=inserted,
            deliveries=deliveries,
            cursor=new_cursor,
            has_more=page.has_more_events,
            acknowledged=acknowledged,
        )

    async def _acknowledge(self, event_id: int) -> bool:
        """Acknowledge upstream after the cursor is persisted.

        Non-fatal failures are only logged because the stored cursor already
        records the progress; fatal ones propagate and halt the poller.
        """
        try:
            await self._source.ack(event_id)
        except FATAL_ERRORS:
            raise
        except DomaAPIError as exc:
            logger.warning("Acknowledgement of %d failed: %s", event_id, exc)
            return False
        return True

    async def run(self) -> None:
        """Poll until stopped or halted.

        After a cycle that reported more pending events the next cycle runs
        after ``follow_up_delay_seconds``; otherwise after
        ``poll_interval_seconds``. ``stop()`` interrupts the wait.
        """
        logger.info(
            "Poller started (interval=%.1fs, page=%d)",
            self._poll_interval_seconds,
            self._page_size,
        )
        while self._state not in (PollerState.HALTED, PollerState.STOPPED):
            result = await self.poll_once()
            if self._state in (PollerState.HALTED, PollerState.STOPPED):
                break
            delay = (
                self._follow_up_delay_seconds
                if result is not None and result.has_more
                else self._poll_interval_seconds
            )
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        logger.info("Poller exited in state %s", self._state.value)

    def stop(self) -> None:
        """Request an operator stop; an in-flight cycle finishes its page."""
        self._stop_event.set()
        if self._state is PollerState.IDLE:
            self._state = PollerState.STOPPED
        logger.info("Poller stop requested")

    def resume(self) -> None:
        """Return a halted or stopped poller to ``IDLE``.

        Raises:
            PollerBusyError: If a cycle is in flight.

        """
        if self._state is PollerState.POLLING:
            msg = "Cannot resume while a poll cycle is running"
            raise PollerBusyError(msg)
        self._stop_event.clear()
        self._state = PollerState.IDLE
        logger.info("Poller resumed")

    async def reset(self, event_id: int) -> None:
        """Rewind the upstream cursor and the stored cursor to ``event_id``.

        Args:
            event_id: Event id to resume after.

        Raises:
            PollerBusyError: If a cycle is in flight.

        """
        if self._state is PollerState.POLLING:
            msg = "Cannot reset the cursor while a poll cycle is running"
            raise PollerBusyError(msg)
        previous = self._state
        self._state = PollerState.POLLING
        try:
            await self._source.reset(event_id)
            await self._store.reset_cursor(event_id)
        finally:
            if previous is PollerState.IDLE and self._stop_event.is_set():
                previous = PollerState.STOPPED
            self._state = previous
        logger.info("Cursor rewound to %d", event_id)
