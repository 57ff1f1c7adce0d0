"""Async repository for the domain monitor database.

Wrap SQLAlchemy async engine and session management for the whole pipeline:
the idempotent event log, the poll cursor, subscriptions and their delivery
audit trail, and the per-domain analytics and traits rollups. Every write is
an explicit read-modify-write-or-insert inside one transaction, so the
repository works the same on SQLite and PostgreSQL. Swap backends by
changing the connection string.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from domain_watch.apps.domain_monitor.analytics import DomainRollup
from domain_watch.apps.domain_monitor.models import (
    CURSOR_ROW_ID,
    Base,
    DeliveryStatus,
    DomainAnalytics,
    DomainEvent,
    DomainTraits,
    PollCursor,
    Subscription,
    WebhookDelivery,
)
from domain_watch.apps.domain_monitor.normalizer import NormalizedEvent, dedupe_events
from domain_watch.apps.domain_monitor.traits import TraitsRecord
from domain_watch.core.timestamps import now_ms

logger = logging.getLogger(__name__)

_SUBSCRIPTION_FIELDS = frozenset({"event_type", "webhook_url", "filters", "is_active"})


class MonitorRepository:
    """Async repository for every domain monitor table.

    Implements the ``CursorStore``, ``EventStore`` and ``SubscriptionStore``
    protocols, plus the read queries used by the CLI and the opportunity
    scorer.

    Args:
        db_url: SQLAlchemy async connection string
            (e.g. ``sqlite+aiosqlite:///domain_watch.db``).

    """

    def __init__(self, db_url: str) -> None:
        """Initialize the repository with an async database engine.

        Args:
            db_url: SQLAlchemy async connection string.

        """
        self._engine: AsyncEngine = create_async_engine(db_url, echo=False)
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )

    async def init_db(self) -> None:
        """Create all tables if they do not already exist.

        Idempotent, safe to call on every startup.
        """
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialised")

    # ------------------------------------------------------------------
    # Cursor
    # ------------------------------------------------------------------

    async def get_cursor(self) -> int | None:
        """Return the last acknowledged event id.

        Falls back to the highest stored ``event_id`` when no cursor row has
        been written yet, so an existing event log resumes where it left off.

        Returns:
            The cursor, or ``None`` for an empty database.

        """
        async with self._session_factory() as session:
            cursor = await session.get(PollCursor, CURSOR_ROW_ID)
            if cursor is not None:
                return cursor.last_event_id
            result = await session.execute(select(func.max(DomainEvent.event_id)))
            return result.scalar_one_or_none()

    async def advance_cursor(self, event_id: int) -> int:
        """Move the cursor forward to ``event_id``.

        A value at or below the stored cursor leaves it unchanged.

        Args:
            event_id: Candidate high-water mark.

        Returns:
            The cursor value after the write.

        """
        async with self._session_factory() as session, session.begin():
            cursor = await session.get(PollCursor, CURSOR_ROW_ID, with_for_update=True)
            if cursor is None:
                session.add(
                    PollCursor(id=CURSOR_ROW_ID, last_event_id=event_id, updated_at=now_ms())
                )
                return event_id
            if cursor.last_event_id is None or event_id > cursor.last_event_id:
                cursor.last_event_id = event_id
                cursor.updated_at = now_ms()
            else:
                logger.debug(
                    "Cursor %s not advanced to %d", cursor.last_event_id, event_id
                )
            return cursor.last_event_id

    async def reset_cursor(self, event_id: int) -> None:
        """Set the cursor unconditionally.

        Args:
            event_id: New cursor value, possibly lower than the current one.

        """
        async with self._session_factory() as session, session.begin():
            cursor = await session.get(PollCursor, CURSOR_ROW_ID)
            if cursor is None:
                session.add(
                    PollCursor(id=CURSOR_ROW_ID, last_event_id=event_id, updated_at=now_ms())
                )
            else:
                cursor.last_event_id = event_id
                cursor.updated_at = now_ms()
        logger.info("Cursor reset to %d", event_id)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def upsert_events(self, events: Sequence[NormalizedEvent], created_at: int) -> int:
        """Insert new events and overwrite redelivered ones, keyed by id.

        Redelivery refreshes the descriptive fields but keeps ``created_at``
        and ``processed`` so an event is never aggregated twice.

        Args:
            events: Normalized events of one page, in arrival order.
            created_at: Ingest time in epoch milliseconds for new rows.

        Returns:
            Number of rows inserted (as opposed to overwritten).

        """
        if not events:
            return 0
        inserted = 0
        async with self._session_factory() as session, session.begin():
            for event in dedupe_events(events):
                row = await session.get(DomainEvent, event.event_id)
                if row is None:
                    session.add(
                        DomainEvent(
                            event_id=event.event_id,
                            name=event.name,
                            token_id=event.token_id,
                            unique_id=event.unique_id,
                            relay_id=event.relay_id,
                            type=event.type,
                            event_data=event.event_data,
                            created_at=created_at,
                            processed=False,
                        )
                    )
                    inserted += 1
                    continue
                row.name = event.name
                row.token_id = event.token_id
                row.unique_id = event.unique_id
                row.relay_id = event.relay_id
                row.type = event.type
                row.event_data = event.event_data
        logger.debug("Upserted %d events (%d new)", len(events), inserted)
        return inserted

    async def get_event(self, event_id: int) -> DomainEvent | None:
        """Return one stored event by id."""
        async with self._session_factory() as session:
            return await session.get(DomainEvent, event_id)

    async def get_event_count(self) -> int:
        """Return the total number of stored events."""
        stmt = select(func.count()).select_from(DomainEvent)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one()

    async def get_events_since(self, since_ms: int, limit: int | None = None) -> list[DomainEvent]:
        """Return events ingested at or after ``since_ms``, oldest first.

        Args:
            since_ms: Inclusive lower bound on ``created_at`` (epoch ms).
            limit: Optional maximum number of rows.

        Returns:
            Matching events ordered by ``(created_at, event_id)``.

        """
        stmt = (
            select(DomainEvent)
            .where(DomainEvent.created_at >= since_ms)
            .order_by(DomainEvent.created_at, DomainEvent.event_id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_unprocessed_events(self, limit: int) -> list[DomainEvent]:
        """Return up to ``limit`` events analytics has not consumed yet.

        Args:
            limit: Maximum batch size.

        Returns:
            Unprocessed events ordered by ``(created_at, event_id)``.

        """
        stmt = (
            select(DomainEvent)
            .where(DomainEvent.processed.is_(False))
            .order_by(DomainEvent.created_at, DomainEvent.event_id)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def get_active_subscriptions(self, event_type: str | None = None) -> list[Subscription]:
        """Return active subscriptions ordered by id.

        Args:
            event_type: Restrict to one event type when given.

        Returns:
            Active ``Subscription`` rows.

        """
        stmt = select(Subscription).where(Subscription.is_active.is_(True))
        if event_type is not None:
            stmt = stmt.where(Subscription.event_type == event_type)
        stmt = stmt.order_by(Subscription.id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def add_subscription(
        self,
        *,
        user_id: str,
        event_type: str,
        webhook_url: str,
        filters: dict[str, Any] | None = None,
        is_active: bool = True,
    ) -> Subscription:
        """Insert a new subscription.

        Args:
            user_id: Owning user.
            event_type: Event type to listen for.
            webhook_url: Callback URL.
            filters: Filter document; empty matches every event of the type.
            is_active: Initial active flag.

        Returns:
            The persisted ``Subscription`` with its id assigned.

        """
        timestamp = now_ms()
        subscription = Subscription(
            user_id=user_id,
            event_type=event_type,
            webhook_url=webhook_url,
            filters=dict(filters or {}),
            is_active=is_active,
            created_at=timestamp,
            updated_at=timestamp,
        )
        async with self._session_factory() as session, session.begin():
            session.add(subscription)
        logger.info("Subscription %d created for %s", subscription.id, event_type)
        return subscription

    async def get_subscription(self, subscription_id: int) -> Subscription | None:
        """Return one subscription by id."""
        async with self._session_factory() as session:
            return await session.get(Subscription, subscription_id)

    async def list_subscriptions(self, user_id: str | None = None) -> list[Subscription]:
        """Return subscriptions ordered by id, optionally for one user."""
        stmt = select(Subscription)
        if user_id is not None:
            stmt = stmt.where(Subscription.user_id == user_id)
        stmt = stmt.order_by(Subscription.id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_subscription(
        self, subscription_id: int, **changes: Any
    ) -> Subscription | None:
        """Apply field changes to a subscription.

        Args:
            subscription_id: Subscription to update.
            **changes: New values for ``event_type``, ``webhook_url``,
                ``filters`` or ``is_active``.

        Returns:
            The updated row, or ``None`` when the id does not exist.

        Raises:
            ValueError: If a change names a field that cannot be updated.

        """
        unknown = set(changes) - _SUBSCRIPTION_FIELDS
        if unknown:
            msg = f"Cannot update subscription fields: {sorted(unknown)}"
            raise ValueError(msg)
        async with self._session_factory() as session, session.begin():
            subscription = await session.get(Subscription, subscription_id)
            if subscription is None:
                return None
            for key, value in changes.items():
                setattr(subscription, key, value)
            subscription.updated_at = now_ms()
        return subscription

    async def delete_subscription(self, subscription_id: int) -> bool:
        """Delete a subscription; delivery history is kept.

        Returns:
            ``True`` when a row was deleted.

        """
        stmt = delete(Subscription).where(Subscription.id == subscription_id)
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
        return bool(result.rowcount)

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    async def record_delivery(  # noqa: PLR0913
        self,
        *,
        subscription_id: int,
        event_id: int,
        webhook_url: str,
        status: DeliveryStatus,
        response_status: int | None = None,
        error_message: str | None = None,
        delivered_at: int,
    ) -> WebhookDelivery:
        """Append one webhook delivery audit row.

        Args:
            subscription_id: Subscription the event was delivered for.
            event_id: Delivered event id.
            webhook_url: URL the attempt was made against.
            status: Outcome of the attempt.
            response_status: HTTP status, when a response arrived.
            error_message: Transport error text for failed attempts.
            delivered_at: Attempt time in epoch milliseconds.

        Returns:
            The persisted ``WebhookDelivery``.

        """
        delivery = WebhookDelivery(
            subscription_id=subscription_id,
            event_id=event_id,
            webhook_url=webhook_url,
            status=status.value,
            response_status=response_status,
            error_message=error_message,
            delivered_at=delivered_at,
        )
        async with self._session_factory() as session, session.begin():
            session.add(delivery)
        return delivery

    async def get_deliveries(
        self,
        *,
        subscription_id: int | None = None,
        event_id: int | None = None,
    ) -> list[WebhookDelivery]:
        """Return delivery audit rows in insertion order, optionally filtered."""
        stmt = select(WebhookDelivery)
        if subscription_id is not None:
            stmt = stmt.where(WebhookDelivery.subscription_id == subscription_id)
        if event_id is not None:
            stmt = stmt.where(WebhookDelivery.event_id == event_id)
        stmt = stmt.order_by(WebhookDelivery.id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_delivery_counts(
        self,
        since_ms: int,
        subscription_ids: Sequence[int] | None = None,
    ) -> dict[str, int]:
        """Count delivery attempts by status since ``since_ms``.

        Args:
            since_ms: Inclusive lower bound on ``delivered_at``.
            subscription_ids: Restrict to these subscriptions when given.

        Returns:
            Mapping of status value to count; statuses with no rows are 0.

        """
        stmt = (
            select(WebhookDelivery.status, func.count())
            .where(WebhookDelivery.delivered_at >= since_ms)
            .group_by(WebhookDelivery.status)
        )
        if subscription_ids is not None:
            stmt = stmt.where(WebhookDelivery.subscription_id.in_(list(subscription_ids)))
        counts = {status.value: 0 for status in DeliveryStatus}
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            for status, count in result.all():
                counts[status] = count
        return counts

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    async def apply_rollup(
        self,
        domain_name: str,
        event_ids: Sequence[int],
        merge: Callable[[DomainRollup | None], DomainRollup],
    ) -> DomainRollup:
        """Merge into a domain's analytics and mark its events processed.

        The prior row is read, merged, written back and the source events are
        flagged in a single transaction, so a failure leaves both the rollup
        and the events untouched.

        Args:
            domain_name: Domain whose rollup is updated.
            event_ids: Events folded into the rollup by ``merge``.
            merge: Pure function from the prior rollup (``None`` for a new
                domain) to the updated one.

        Returns:
            The rollup as written.

        """
        stmt = (
            select(DomainAnalytics)
            .where(DomainAnalytics.domain_name == domain_name)
            .with_for_update()
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            rollup = merge(DomainRollup.from_model(row) if row is not None else None)
            columns = rollup.as_columns()
            timestamp = now_ms()
            if row is None:
                session.add(DomainAnalytics(**columns, updated_at=timestamp))
            else:
                for key, value in columns.items():
                    setattr(row, key, value)
                row.updated_at = timestamp
            if event_ids:
                await session.execute(
                    update(DomainEvent)
                    .where(DomainEvent.event_id.in_(list(event_ids)))
                    .values(processed=True)
                )
        logger.debug("Rolled up %d events for %s", len(event_ids), domain_name)
        return rollup

    async def get_analytics(self, domain_name: str) -> DomainAnalytics | None:
        """Return the analytics row for one domain."""
        stmt = select(DomainAnalytics).where(DomainAnalytics.domain_name == domain_name)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_trending_domains(self, since_ms: int, limit: int = 10) -> list[DomainAnalytics]:
        """Return the most active domains with activity since ``since_ms``.

        Args:
            since_ms: Inclusive lower bound on ``last_event_at``.
            limit: Maximum number of domains.

        Returns:
            Analytics rows ordered by ``total_events`` descending.

        """
        stmt = (
            select(DomainAnalytics)
            .where(DomainAnalytics.last_event_at >= since_ms)
            .order_by(DomainAnalytics.total_events.desc(), DomainAnalytics.domain_name)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def insert_traits_if_absent(self, traits: TraitsRecord) -> bool:
        """Store traits for a domain unless a row already exists.

        Returns:
            ``True`` when a new row was inserted.

        """
        stmt = select(DomainTraits.id).where(DomainTraits.domain_name == traits.domain_name)
        async with self._session_factory() as session, session.begin():
            existing = (await session.execute(stmt)).scalar_one_or_none()
            if existing is not None:
                return False
            session.add(
                DomainTraits(
                    domain_name=traits.domain_name,
                    token_id=traits.token_id,
                    length=traits.length,
                    extension=traits.extension,
                    has_numbers=traits.has_numbers,
                    has_hyphens=traits.has_hyphens,
                    has_underscores=traits.has_underscores,
                    word_count=traits.word_count,
                    is_palindrome=traits.is_palindrome,
                    is_pronounceable=traits.is_pronounceable,
                    character_diversity=traits.character_diversity,
                    created_at=now_ms(),
                )
            )
        return True

    async def get_traits(self, domain_name: str) -> DomainTraits | None:
        """Return the stored traits for one domain."""
        stmt = select(DomainTraits).where(DomainTraits.domain_name == domain_name)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def close(self) -> None:
        """Dispose the async engine and release all connections."""
        await self._engine.dispose()
        logger.info("Database engine disposed")
