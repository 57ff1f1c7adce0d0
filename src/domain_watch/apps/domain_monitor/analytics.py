"""Incremental per-domain analytics over the stored event log.

Consume unprocessed events in bounded, creation-ordered batches, fold each
domain's slice of the batch into its running ``DomainRollup``, and mark the
slice processed in the same transaction so no event is ever counted twice.
Runs as its own periodic loop, independent of the poller; the two share
only the store.
"""

import asyncio
import contextlib
import logging
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from domain_watch.apps.domain_monitor.event_types import (
    FRACTIONALIZED_TYPES,
    OFFER_TYPES,
    PRICED_TYPES,
    SALE_TYPES,
)
from domain_watch.apps.domain_monitor.filters import extract_expiry_ms, extract_price
from domain_watch.apps.domain_monitor.traits import compute_traits
from domain_watch.core.timestamps import MS_PER_SECOND, SECONDS_PER_HOUR

if TYPE_CHECKING:
    from domain_watch.apps.domain_monitor.models import DomainAnalytics, DomainEvent
    from domain_watch.apps.domain_monitor.protocols import EventStore

logger = logging.getLogger(__name__)

# Storage failures plus driver errors on values a column cannot hold.
_ROLLUP_ERRORS = (SQLAlchemyError, ArithmeticError, ValueError)

_DEFAULT_BATCH_SIZE = 100
_DEFAULT_INTERVAL_SECONDS = 60.0

TIMEFRAME_HOURS: dict[str, int] = {"1h": 1, "24h": 24, "7d": 24 * 7, "30d": 24 * 30}
_DEFAULT_TIMEFRAME = "24h"


class RollupInput(Protocol):
    """The slice of a stored event the rollup reads."""

    type: str
    created_at: int
    token_id: str | None
    event_data: Mapping[str, Any]


@dataclass(frozen=True)
class DomainRollup:
    """Running analytics for one domain.

    Mirrors the ``domain_analytics`` columns. ``highest_price`` and
    ``lowest_price`` are ``None`` until a priced event is seen.
    """

    domain_name: str
    total_events: int = 0
    token_id: str | None = None
    last_event_type: str | None = None
    last_event_at: int | None = None
    total_volume: float = 0.0
    highest_price: float | None = None
    lowest_price: float | None = None
    offer_count: int = 0
    trade_count: int = 0
    is_fractionalized: bool = False
    expires_at: int | None = None

    @classmethod
    def from_model(cls, row: "DomainAnalytics") -> "DomainRollup":
        """Snapshot a stored analytics row."""
        return cls(
            domain_name=row.domain_name,
            total_events=row.total_events or 0,
            token_id=row.token_id,
            last_event_type=row.last_event_type,
            last_event_at=row.last_event_at,
            total_volume=row.total_volume or 0.0,
            highest_price=row.highest_price,
            lowest_price=row.lowest_price,
            offer_count=row.offer_count or 0,
            trade_count=row.trade_count or 0,
            is_fractionalized=bool(row.is_fractionalized),
            expires_at=row.expires_at,
        )

    def as_columns(self) -> dict[str, Any]:
        """Return the rollup as a column-name to value mapping."""
        return asdict(self)


def _running_max(prior: float | None, values: Sequence[float]) -> float | None:
    """Fold ``values`` into a running maximum where ``None`` means unset."""
    candidates = [*values] if prior is None else [prior, *values]
    return max(candidates) if candidates else None


def _running_min(prior: float | None, values: Sequence[float]) -> float | None:
    """Fold ``values`` into a running minimum where ``None`` means unset."""
    candidates = [*values] if prior is None else [prior, *values]
    return min(candidates) if candidates else None


def merge_rollup(
    domain_name: str,
    prior: DomainRollup | None,
    events: Sequence[RollupInput],
) -> DomainRollup:
    """Fold a chronologically ordered slice of events into a domain's rollup.

    Args:
        domain_name: Domain the events belong to.
        prior: Stored rollup, or ``None`` for a domain seen for the first time.
        events: New events for this domain, oldest first.

    Returns:
        The updated ``DomainRollup``; ``prior`` is returned unchanged for an
        empty slice.

    """
    base = prior or DomainRollup(domain_name=domain_name)
    if not events:
        return base

    latest = events[-1]
    prices = [
        price
        for event in events
        if event.type in PRICED_TYPES
        and (price := extract_price(event.event_data)) is not None
    ]
    token_id = next((e.token_id for e in reversed(events) if e.token_id), base.token_id)
    latest_expiry = extract_expiry_ms(latest.event_data)

    return DomainRollup(
        domain_name=domain_name,
        total_events=base.total_events + len(events),
        token_id=token_id,
        last_event_type=latest.type,
        last_event_at=latest.created_at,
        total_volume=base.total_volume + sum(prices),
        highest_price=_running_max(base.highest_price, prices),
        lowest_price=_running_min(base.lowest_price, prices),
        offer_count=base.offer_count + sum(1 for e in events if e.type in OFFER_TYPES),
        trade_count=base.trade_count + sum(1 for e in events if e.type in SALE_TYPES),
        is_fractionalized=base.is_fractionalized
        or any(e.type in FRACTIONALIZED_TYPES for e in events),
        expires_at=latest_expiry if latest_expiry is not None else base.expires_at,
    )


def group_by_domain(events: Sequence["DomainEvent"]) -> dict[str, list["DomainEvent"]]:
    """Group events by domain name, preserving their relative order."""
    groups: dict[str, list[DomainEvent]] = {}
    for event in events:
        groups.setdefault(event.name, []).append(event)
    return groups


def timeframe_cutoff_ms(timeframe: str, now_ms: int) -> int:
    """Return the epoch-ms lower bound for a trending timeframe.

    Args:
        timeframe: One of ``1h``, ``24h``, ``7d``, ``30d``; anything else
            falls back to ``24h``.
        now_ms: Current time in epoch milliseconds.

    Returns:
        ``now_ms`` minus the timeframe length.

    """
    hours = TIMEFRAME_HOURS.get(timeframe, TIMEFRAME_HOURS[_DEFAULT_TIMEFRAME])
    return now_ms - hours * SECONDS_PER_HOUR * MS_PER_SECOND


class AnalyticsAggregator:
    """Periodic consumer that keeps ``domain_analytics`` up to date.

    Args:
        store: Event store offering unprocessed-event reads and the atomic
            ``apply_rollup`` boundary.
        batch_size: Maximum events consumed per batch.
        interval_seconds: Sleep between batches when the backlog is drained.

    """

    def __init__(
        self,
        store: "EventStore",
        *,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        interval_seconds: float = _DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        """Initialize the aggregator.

        Args:
            store: Event store.
            batch_size: Maximum events per batch.
            interval_seconds: Seconds between batches.

        """
        self._store = store
        self._batch_size = batch_size
        self._interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        """Return whether the periodic loop is active."""
        return self._running

    async def process_batch(self) -> int:
        """Aggregate one batch of unprocessed events.

        Domains are folded one at a time, each in its own transaction. A
        domain whose transaction fails is logged and its events stay
        unprocessed for the next batch.

        Returns:
            Number of events marked processed.

        """
        try:
            events = await self._store.get_unprocessed_events(self._batch_size)
        except SQLAlchemyError:
            logger.exception("Failed to fetch unprocessed events")
            return 0

        if not events:
            return 0

        processed = 0
        for domain_name, domain_events in group_by_domain(events).items():
            event_ids = [e.event_id for e in domain_events]
            try:
                await self._store.apply_rollup(
                    domain_name,
                    event_ids,
                    lambda prior, name=domain_name, batch=domain_events: merge_rollup(
                        name, prior, batch
                    ),
                )
            except _ROLLUP_ERRORS:
                logger.exception("Failed to update analytics for %s", domain_name)
                continue
            processed += len(event_ids)

            try:
                await self._store.insert_traits_if_absent(
                    compute_traits(domain_name, domain_events[0].token_id)
                )
            except _ROLLUP_ERRORS:
                logger.exception("Failed to store traits for %s", domain_name)

        logger.info("Aggregated %d/%d events", processed, len(events))
        return processed

    async def run(self) -> None:
        """Process batches until ``stop()`` is called.

        A full batch is followed immediately by the next one so a backlog
        drains without waiting for the timer.
        """
        self._running = True
        logger.info("Analytics aggregator started (batch=%d)", self._batch_size)
        try:
            while not self._stop_event.is_set():
                processed = await self.process_batch()
                if processed >= self._batch_size:
                    continue
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self._interval_seconds
                    )
        finally:
            self._running = False
        logger.info("Analytics aggregator stopped")

    def stop(self) -> None:
        """Stop the loop after the in-flight batch completes.

        A stop requested before ``run()`` starts makes ``run()`` return
        immediately.
        """
        self._stop_event.set()
