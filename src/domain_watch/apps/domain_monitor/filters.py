"""Subscription filter predicates evaluated against stored events.

A subscription's ``filters`` document is parsed once into an immutable
``SubscriptionFilter``. Evaluation is a short-circuiting conjunction: a
clause the subscriber did not specify is satisfied, and a specified clause
whose input is missing from the event fails closed.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from domain_watch.core.timestamps import MS_PER_SECOND, SECONDS_PER_DAY, to_epoch_ms

PRICE_FIELDS = ("price", "amount", "value", "cost", "priceUsd")
EXPIRY_FIELDS = ("expiresAt", "expirationDate", "expiry")
OWNER_FIELDS = ("owner", "ownerAddress")


class FilterableEvent(Protocol):
    """Anything exposing a domain name and a payload mapping."""

    @property
    def name(self) -> str:
        """Return the domain name."""
        ...

    @property
    def event_data(self) -> Mapping[str, Any]:
        """Return the event payload."""
        ...


def _to_float(value: Any) -> float | None:
    """Parse a finite float from a number or numeric string, else ``None``."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def extract_price(event_data: Mapping[str, Any] | None) -> float | None:
    """Return the first parseable price in ``PRICE_FIELDS`` order.

    Zero is a legitimate price; only missing or unparseable fields are
    skipped.

    Args:
        event_data: Event payload.

    Returns:
        The price, or ``None`` when no candidate field holds a number.

    """
    if not event_data:
        return None
    for field_name in PRICE_FIELDS:
        price = _to_float(event_data.get(field_name))
        if price is not None:
            return price
    return None


def extract_expiry_ms(event_data: Mapping[str, Any] | None) -> int | None:
    """Return the first parseable expiry in ``EXPIRY_FIELDS`` as epoch ms."""
    if not event_data:
        return None
    for field_name in EXPIRY_FIELDS:
        expiry = to_epoch_ms(event_data.get(field_name))
        if expiry is not None:
            return expiry
    return None


def extract_owner(event_data: Mapping[str, Any] | None) -> str | None:
    """Return the first non-blank owner address in ``OWNER_FIELDS``."""
    if not event_data:
        return None
    for field_name in OWNER_FIELDS:
        value = event_data.get(field_name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def domain_extension(name: str) -> str:
    """Return the lower-cased suffix after the last dot of ``name``."""
    return name.rsplit(".", 1)[-1].lower()


def _optional_float(filters: Mapping[str, Any], key: str) -> float | None:
    """Read an optional numeric filter, rejecting values that are not numbers."""
    raw = filters.get(key)
    if raw is None or raw == "":
        return None
    value = _to_float(raw)
    if value is None:
        msg = f"Filter {key!r} must be a number, got {raw!r}"
        raise ValueError(msg)
    return value


def _optional_int(filters: Mapping[str, Any], key: str) -> int | None:
    """Read an optional integer filter."""
    value = _optional_float(filters, key)
    return None if value is None else int(value)


def _extensions(raw: Any) -> frozenset[str] | None:
    """Normalize an extension list: strip leading dots and lower-case."""
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, Iterable):
        msg = f"Filter 'extensions' must be a list, got {raw!r}"
        raise ValueError(msg)
    cleaned = frozenset(str(ext).strip().lstrip(".").lower() for ext in raw if str(ext).strip())
    return cleaned or None


@dataclass(frozen=True)
class SubscriptionFilter:
    """Parsed filter predicate for one subscription.

    Every field is optional; ``None`` means the subscriber did not specify
    that clause.

    Args:
        min_price: Minimum event price (inclusive).
        max_price: Maximum event price (inclusive).
        min_length: Minimum domain name length (inclusive).
        max_length: Maximum domain name length (inclusive).
        extensions: Allowed suffixes after the last dot, without dots.
        expires_within_days: Maximum days until the payload's expiry.
        owner: Owner address, compared case-insensitively.

    """

    min_price: float | None = None
    max_price: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    extensions: frozenset[str] | None = None
    expires_within_days: float | None = None
    owner: str | None = None

    @classmethod
    def from_dict(cls, filters: Mapping[str, Any] | None) -> "SubscriptionFilter":
        """Parse a subscription's ``filters`` document.

        Args:
            filters: Filter document as stored; ``None`` or empty matches all.

        Returns:
            The parsed ``SubscriptionFilter``.

        Raises:
            ValueError: If a specified value has the wrong type.

        """
        if not filters:
            return cls()
        owner = filters.get("owner")
        return cls(
            min_price=_optional_float(filters, "minPrice"),
            max_price=_optional_float(filters, "maxPrice"),
            min_length=_optional_int(filters, "minLength"),
            max_length=_optional_int(filters, "maxLength"),
            extensions=_extensions(filters.get("extensions")),
            expires_within_days=_optional_float(filters, "expiresWithinDays"),
            owner=str(owner).strip() if owner else None,
        )

    def matches(self, event: FilterableEvent, now_ms: int) -> bool:
        """Evaluate the predicate against an event.

        Args:
            event: Event exposing ``name`` and ``event_data``.
            now_ms: Current time in epoch milliseconds, for expiry clauses.

        Returns:
            ``True`` when every specified clause holds.

        """
        data = event.event_data
        name = event.name or ""

        if self.min_price is not None or self.max_price is not None:
            price = extract_price(data)
            if price is None:
                return False
            if self.min_price is not None and price < self.min_price:
                return False
            if self.max_price is not None and price > self.max_price:
                return False

        if self.min_length is not None and len(name) < self.min_length:
            return False
        if self.max_length is not None and len(name) > self.max_length:
            return False

        if self.extensions is not None and (
            "." not in name or domain_extension(name) not in self.extensions
        ):
            return False

        if self.expires_within_days is not None:
            expiry_ms = extract_expiry_ms(data)
            if expiry_ms is None:
                return False
            days_left = (expiry_ms - now_ms) / MS_PER_SECOND / SECONDS_PER_DAY
            if days_left > self.expires_within_days:
                return False

        if self.owner is not None:
            owner = extract_owner(data)
            if owner is None or owner.lower() != self.owner.lower():
                return False

        return True
