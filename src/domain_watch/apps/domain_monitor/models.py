"""SQLAlchemy ORM models for the domain monitor database.

Define the stored event log (keyed by upstream event id), the singleton poll
cursor, subscriptions and their append-only webhook delivery audit trail,
and the per-domain analytics and traits rollups. Times are epoch
milliseconds throughout so the schema behaves the same on SQLite and
PostgreSQL.
"""

from enum import Enum
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, Float, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

CURSOR_ROW_ID = 1


class DeliveryStatus(Enum):
    """Outcome of a webhook delivery attempt."""

    SUCCESS = "success"
    FAILED = "failed"


class Base(DeclarativeBase):
    """Declarative base class for all domain monitor ORM models."""


class DomainEvent(Base):
    """A normalized domain lifecycle event, stored once per upstream id.

    Attributes:
        event_id: Upstream-assigned monotonic identifier (primary key).
        name: Domain name, or an ``Event-<id>`` placeholder.
        token_id: Optional token identifier.
        unique_id: Optional upstream unique identifier.
        relay_id: Optional relay identifier.
        type: Upstream event type, stored verbatim.
        event_data: Event payload.
        created_at: Epoch milliseconds when first ingested (indexed).
        processed: Whether analytics has consumed this event (indexed).

    """

    __tablename__ = "domain_events"

    event_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String, index=True)
    token_id: Mapped[str | None] = mapped_column(String, nullable=True)
    unique_id: Mapped[str | None] = mapped_column(String, nullable=True)
    relay_id: Mapped[str | None] = mapped_column(String, nullable=True)
    type: Mapped[str] = mapped_column(String, index=True)
    event_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[int] = mapped_column(BigInteger, index=True)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)


class PollCursor(Base):
    """Singleton row holding the last acknowledged upstream event id.

    Attributes:
        id: Always ``CURSOR_ROW_ID``.
        last_event_id: Last event id stored and acknowledged.
        updated_at: Epoch milliseconds of the last write.

    """

    __tablename__ = "poll_cursor"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_event_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[int] = mapped_column(BigInteger)


class Subscription(Base):
    """A subscriber's interest in one event type, with optional filters.

    Attributes:
        id: Auto-incrementing primary key.
        user_id: Owning user (indexed).
        event_type: Event type this subscription listens for (indexed).
        webhook_url: Callback URL receiving matched events.
        filters: Filter predicate document (``minPrice``, ``extensions``, ...).
        is_active: Whether the subscription currently receives events.
        created_at: Epoch milliseconds at creation.
        updated_at: Epoch milliseconds of the last change.

    """

    __tablename__ = "domain_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    webhook_url: Mapped[str] = mapped_column(String)
    filters: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[int] = mapped_column(BigInteger)

    __table_args__ = (Index("ix_domain_subscriptions_type_active", "event_type", "is_active"),)


class WebhookDelivery(Base):
    """Append-only audit record of one webhook delivery attempt.

    Attributes:
        id: Auto-incrementing primary key.
        subscription_id: Subscription the event was delivered for (indexed).
        event_id: Upstream event id that was delivered.
        webhook_url: URL the attempt was made against.
        status: ``success`` or ``failed`` (see ``DeliveryStatus``).
        response_status: HTTP status of the response, if one arrived.
        error_message: Transport error description for failed attempts.
        delivered_at: Epoch milliseconds of the attempt (indexed).

    """

    __tablename__ = "webhook_deliveries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(Integer, index=True)
    event_id: Mapped[int] = mapped_column(BigInteger)
    webhook_url: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, index=True)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(String, nullable=True)
    delivered_at: Mapped[int] = mapped_column(BigInteger, index=True)


class DomainAnalytics(Base):
    """Running per-domain summary maintained by the analytics aggregator.

    ``highest_price`` and ``lowest_price`` stay ``None`` until the first
    priced event arrives, so a real price of zero is never confused with
    "no data".

    Attributes:
        domain_name: Domain name (unique).
        token_id: Token id from the most recent event that carried one.
        total_events: Number of events aggregated so far.
        last_event_type: Type of the chronologically last aggregated event.
        last_event_at: Ingest time of that event, epoch milliseconds (indexed).
        total_volume: Sum of prices from priced event types.
        highest_price: Running maximum price, or ``None``.
        lowest_price: Running minimum price, or ``None``.
        offer_count: Number of offer events.
        trade_count: Number of sale events.
        is_fractionalized: Set once a fractionalization event is seen.
        expires_at: Latest known expiry, epoch milliseconds.
        updated_at: Epoch milliseconds of the last rollup.

    """

    __tablename__ = "domain_analytics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain_name: Mapped[str] = mapped_column(String, unique=True)
    token_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    total_events: Mapped[int] = mapped_column(Integer, default=0)
    last_event_type: Mapped[str | None] = mapped_column(String, nullable=True)
    last_event_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    total_volume: Mapped[float] = mapped_column(Float, default=0.0)
    highest_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    lowest_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    offer_count: Mapped[int] = mapped_column(Integer, default=0)
    trade_count: Mapped[int] = mapped_column(Integer, default=0)
    is_fractionalized: Mapped[bool] = mapped_column(Boolean, default=False)
    expires_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[int] = mapped_column(BigInteger)


class DomainTraits(Base):
    """Static name features, computed once per domain and never updated.

    Attributes:
        domain_name: Domain name (unique).
        token_id: Token id of the event the traits were first computed from.
        length: Character length of the full name.
        extension: Suffix after the last dot.
        has_numbers: Whether the name contains a digit.
        has_hyphens: Whether the name contains a hyphen.
        has_underscores: Whether the name contains an underscore.
        word_count: Number of segments split on ``-``, ``.`` and ``_``.
        is_palindrome: Whether the first label reads the same reversed.
        is_pronounceable: Whether the vowel ratio looks pronounceable.
        character_diversity: Number of distinct lower-cased characters.
        created_at: Epoch milliseconds at computation.

    """

    __tablename__ = "domain_traits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain_name: Mapped[str] = mapped_column(String, unique=True)
    token_id: Mapped[str | None] = mapped_column(String, nullable=True)
    length: Mapped[int] = mapped_column(Integer, index=True)
    extension: Mapped[str] = mapped_column(String, index=True)
    has_numbers: Mapped[bool] = mapped_column(Boolean)
    has_hyphens: Mapped[bool] = mapped_column(Boolean)
    has_underscores: Mapped[bool] = mapped_column(Boolean)
    word_count: Mapped[int] = mapped_column(Integer)
    is_palindrome: Mapped[bool] = mapped_column(Boolean)
    is_pronounceable: Mapped[bool] = mapped_column(Boolean)
    character_diversity: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[int] = mapped_column(BigInteger)
