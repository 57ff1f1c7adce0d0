"""Score stored events into ranked domain opportunities.

Four categories are detected over a window of recent events: expired
domains still inside their grace period, high-value sales, trending domains
and new listings. Each candidate gets a priority in ``[0, 100]`` from
static name heuristics (length bands, extension allow-lists,
pronounceability and a brandability composite) and the top candidates are
returned for downstream notification.
"""

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from domain_watch.apps.domain_monitor.event_types import (
    EXPIRED_TYPES,
    LISTING_SIGNAL_TYPES,
    SALE_TYPES,
    TRANSFER_TYPES,
    TREND_TYPES,
)
from domain_watch.apps.domain_monitor.filters import domain_extension, extract_price
from domain_watch.apps.domain_monitor.normalizer import PLACEHOLDER_PREFIX
from domain_watch.apps.domain_monitor.traits import (
    CONSONANTS,
    VOWELS,
    has_balanced_vowels,
    is_pronounceable,
    vowel_ratio,
)
from domain_watch.core.timestamps import MS_PER_SECOND, SECONDS_PER_DAY, SECONDS_PER_HOUR

_MAX_PRIORITY = 100
_MAX_DOMAIN_LENGTH = 253
_DOMAIN_PATTERN = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

PREMIUM_EXTENSIONS = frozenset({"com", "org", "net"})
TECH_EXTENSIONS = frozenset({"io", "ai", "co"})

_SHORT_LENGTH = 3
_MEDIUM_LENGTH = 5
_LONG_LENGTH = 7
_BRAND_MIN_LENGTH = 3
_BRAND_MAX_LENGTH = 8
_BRAND_IDEAL_MIN = 4
_BRAND_IDEAL_MAX = 6

_ULTRA_PREMIUM_PRICE = 100_000
_PREMIUM_PRICE = 10_000
_HIGH_VALUE_PRICE = 1_000
_MID_VALUE_PRICE = 100

# (minimum price, category), checked top down.
_PRICE_CATEGORIES = (
    (_ULTRA_PREMIUM_PRICE, "ultra_premium"),
    (_PREMIUM_PRICE, "premium"),
    (_HIGH_VALUE_PRICE, "high_value"),
    (_MID_VALUE_PRICE, "mid_value"),
)

_DEFAULT_LIMIT = 10


class OpportunityCategory(Enum):
    """Kinds of opportunity the scorer emits."""

    EXPIRED = "high_value_expired"
    SALE = "high_value_sale"
    TRENDING = "trending_domain"
    LISTING = "new_listing"


@dataclass(frozen=True)
class Opportunity:
    """A scored, categorized signal about one domain.

    Args:
        category: Opportunity category.
        domain: Domain name.
        priority: Priority in ``[0, 100]``; higher is more interesting.
        value: Observed price for sales and listings, estimated value for
            expired and trending domains, ``None`` when unknown.
        detected_at: Ingest time of the triggering event (epoch ms).
        metadata: Category-specific details.

    """

    category: OpportunityCategory
    domain: str
    priority: int
    value: float | None
    detected_at: int
    metadata: dict[str, Any] = field(default_factory=dict)


class ScorableEvent(Protocol):
    """The stored-event fields the scorer reads."""

    @property
    def name(self) -> str:
        """Return the domain name."""
        ...

    @property
    def type(self) -> str:
        """Return the event type."""
        ...

    @property
    def event_data(self) -> Mapping[str, Any]:
        """Return the event payload."""
        ...

    @property
    def created_at(self) -> int:
        """Return the ingest time in epoch milliseconds."""
        ...


def is_valid_domain_name(name: str | None) -> bool:
    """Return whether ``name`` looks like a real, dotted domain name.

    Placeholder names and bare numbers are rejected.
    """
    if not name or not isinstance(name, str):
        return False
    if name.startswith(PLACEHOLDER_PREFIX) or name.isdigit():
        return False
    if "." not in name or len(name) > _MAX_DOMAIN_LENGTH:
        return False
    return _DOMAIN_PATTERN.match(name) is not None


def _label(domain: str) -> str:
    """Return the first label of a domain name."""
    return domain.split(".")[0]


def categorize_price(price: float | None) -> str:
    """Bucket a price into a named category.

    Args:
        price: Observed price, or ``None``.

    Returns:
        ``ultra_premium``, ``premium``, ``high_value``, ``mid_value``,
        ``low_value``, or ``unknown`` without a positive price.

    """
    if not price:
        return "unknown"
    for threshold, category in _PRICE_CATEGORIES:
        if price >= threshold:
            return category
    return "low_value"


def is_brandable(domain: str) -> bool:
    """Return whether the first label reads like a brand name.

    Brandable labels are 3 to 8 characters, mix vowels and consonants, and
    contain no digits or hyphens.
    """
    label = _label(domain).lower()
    return (
        any(ch in VOWELS for ch in label)
        and any(ch in CONSONANTS for ch in label)
        and _BRAND_MIN_LENGTH <= len(label) <= _BRAND_MAX_LENGTH
        and not any(ch.isdigit() for ch in label)
        and "-" not in label
    )


def brandability_score(domain: str) -> int:
    """Return a 0-100 composite of length, pronounceability and cleanliness."""
    label = _label(domain)
    score = 0
    if _BRAND_IDEAL_MIN <= len(label) <= _BRAND_IDEAL_MAX:
        score += 30
    elif _BRAND_MIN_LENGTH <= len(label) <= _BRAND_MAX_LENGTH:
        score += 20
    if is_pronounceable(label):
        score += 25
    if not any(ch.isdigit() for ch in label):
        score += 15
    if "-" not in label:
        score += 15
    if has_balanced_vowels(vowel_ratio(label, letters_only=False)):
        score += 15
    return min(score, _MAX_PRIORITY)


def estimate_value(domain: str) -> int:
    """Estimate a domain's value from its length, extension and brandability."""
    value = 100.0
    length = len(domain)
    if length <= _SHORT_LENGTH:
        value *= 10
    elif length <= _MEDIUM_LENGTH:
        value *= 5
    elif length <= _LONG_LENGTH:
        value *= 2

    extension = domain_extension(domain)
    if extension in PREMIUM_EXTENSIONS:
        value *= 2
    elif extension in TECH_EXTENSIONS:
        value *= 1.5

    if is_brandable(domain):
        value *= 1.5
    return round(value)


def expired_priority(domain: str) -> int:
    """Priority of an expired domain: short, premium and brandable rank high."""
    priority = 50
    length = len(domain)
    if length <= _SHORT_LENGTH:
        priority += 40
    elif length <= _MEDIUM_LENGTH:
        priority += 30
    elif length <= _LONG_LENGTH:
        priority += 20

    extension = domain_extension(domain)
    if extension in PREMIUM_EXTENSIONS:
        priority += 20
    elif extension in TECH_EXTENSIONS:
        priority += 15

    if is_brandable(domain):
        priority += 25
    return min(priority, _MAX_PRIORITY)


def sale_priority(domain: str, price: float) -> int:
    """Priority of a sale, driven by price and then by name length."""
    priority = 30
    if price >= _ULTRA_PREMIUM_PRICE:
        priority += 50
    elif price >= _PREMIUM_PRICE:
        priority += 40
    elif price >= _HIGH_VALUE_PRICE:
        priority += 30

    if len(domain) <= _SHORT_LENGTH:
        priority += 30
    elif len(domain) <= _MEDIUM_LENGTH:
        priority += 20
    return min(priority, _MAX_PRIORITY)


def trend_priority(domain: str, activity_count: int, event_type_count: int) -> int:
    """Priority of a trending domain from its activity and event variety."""
    priority = 40 + min(activity_count * 5, 30)
    if len(domain) <= _MEDIUM_LENGTH:
        priority += 20
    priority += event_type_count * 5
    return min(priority, _MAX_PRIORITY)


def listing_priority(domain: str, price: float | None) -> int:
    """Priority of a new listing."""
    priority = 35
    if price is not None and price >= _HIGH_VALUE_PRICE:
        priority += 25
    if len(domain) <= _MEDIUM_LENGTH:
        priority += 20
    return min(priority, _MAX_PRIORITY)


def trend_score(activity_count: int, first_seen_ms: int, last_seen_ms: int) -> float:
    """Return events per hour times ten, capped at 100.

    Spans shorter than an hour count as one hour.
    """
    hours = (last_seen_ms - first_seen_ms) / MS_PER_SECOND / SECONDS_PER_HOUR
    return min(activity_count / max(hours, 1.0) * 10, float(_MAX_PRIORITY))


@dataclass
class _Activity:
    """Running per-domain activity for trend detection."""

    count: int = 0
    types: set[str] = field(default_factory=set)
    first_seen: int | None = None
    last_seen: int | None = None

    def add(self, event: ScorableEvent) -> None:
        """Count one event."""
        self.count += 1
        self.types.add(event.type)
        ts = event.created_at
        self.first_seen = ts if self.first_seen is None else min(self.first_seen, ts)
        self.last_seen = ts if self.last_seen is None else max(self.last_seen, ts)


class OpportunityScorer:
    """Detect and rank opportunities over a window of stored events.

    Args:
        high_value_min_price: Minimum price for a sale to count.
        trending_min_events: Minimum trend-type events for a trending domain.
        grace_period_days: Days after expiry during which a domain counts
            as available.
        expired_min_length: Minimum full-name length for expired domains.
        expired_max_length: Maximum full-name length for expired domains.

    """

    def __init__(
        self,
        *,
        high_value_min_price: float = 1_000.0,
        trending_min_events: int = 5,
        grace_period_days: int = 7,
        expired_min_length: int = 3,
        expired_max_length: int = 8,
    ) -> None:
        """Initialize the scorer with its detection thresholds.

        Args:
            high_value_min_price: Sale price threshold.
            trending_min_events: Trending activity threshold.
            grace_period_days: Expired-domain grace period.
            expired_min_length: Expired-domain minimum length.
            expired_max_length: Expired-domain maximum length.

        """
        self._high_value_min_price = high_value_min_price
        self._trending_min_events = trending_min_events
        self._grace_period_ms = grace_period_days * SECONDS_PER_DAY * MS_PER_SECOND
        self._expired_min_length = expired_min_length
        self._expired_max_length = expired_max_length

    @staticmethod
    def _valid(events: Iterable[ScorableEvent], types: Iterable[str]) -> list[ScorableEvent]:
        """Keep events of the given types that carry a real domain name."""
        wanted = frozenset(types)
        return [e for e in events if e.type in wanted and is_valid_domain_name(e.name)]

    def expired(self, events: Sequence[ScorableEvent], now_ms: int) -> list[Opportunity]:
        """Expired domains still inside the grace period with a short name."""
        opportunities = []
        for event in self._valid(events, EXPIRED_TYPES):
            if now_ms - event.created_at > self._grace_period_ms:
                continue
            if not self._expired_min_length <= len(event.name) <= self._expired_max_length:
                continue
            opportunities.append(
                Opportunity(
                    category=OpportunityCategory.EXPIRED,
                    domain=event.name,
                    priority=expired_priority(event.name),
                    value=estimate_value(event.name),
                    detected_at=event.created_at,
                    metadata={
                        "expired_at": event.created_at,
                        "grace_period_ms": self._grace_period_ms,
                        "brandability": brandability_score(event.name),
                    },
                )
            )
        return opportunities

    def sales(self, events: Sequence[ScorableEvent]) -> list[Opportunity]:
        """Sales and priced transfers at or above the high-value threshold."""
        opportunities = []
        for event in self._valid(events, SALE_TYPES | TRANSFER_TYPES):
            price = extract_price(event.event_data)
            if price is None or price < self._high_value_min_price:
                continue
            opportunities.append(
                Opportunity(
                    category=OpportunityCategory.SALE,
                    domain=event.name,
                    priority=sale_priority(event.name, price),
                    value=price,
                    detected_at=event.created_at,
                    metadata={
                        "sale_type": event.type,
                        "price_category": categorize_price(price),
                    },
                )
            )
        return opportunities

    def trending(self, events: Sequence[ScorableEvent]) -> list[Opportunity]:
        """Domains with at least ``trending_min_events`` mint/tokenization events."""
        activity: dict[str, _Activity] = {}
        for event in self._valid(events, TREND_TYPES):
            activity.setdefault(event.name, _Activity()).add(event)

        opportunities = []
        for domain, stats in activity.items():
            if stats.count < self._trending_min_events:
                continue
            first_seen = stats.first_seen or 0
            last_seen = stats.last_seen or 0
            opportunities.append(
                Opportunity(
                    category=OpportunityCategory.TRENDING,
                    domain=domain,
                    priority=trend_priority(domain, stats.count, len(stats.types)),
                    value=estimate_value(domain),
                    detected_at=last_seen,
                    metadata={
                        "activity_count": stats.count,
                        "event_types": sorted(stats.types),
                        "trend_score": trend_score(stats.count, first_seen, last_seen),
                        "first_seen": first_seen,
                        "last_seen": last_seen,
                    },
                )
            )
        return opportunities

    def listings(self, events: Sequence[ScorableEvent]) -> list[Opportunity]:
        """Every listing signal; the price may be unknown."""
        opportunities = []
        for event in self._valid(events, LISTING_SIGNAL_TYPES):
            price = extract_price(event.event_data)
            opportunities.append(
                Opportunity(
                    category=OpportunityCategory.LISTING,
                    domain=event.name,
                    priority=listing_priority(event.name, price),
                    value=price,
                    detected_at=event.created_at,
                    metadata={"listing_type": event.type},
                )
            )
        return opportunities

    def find_opportunities(
        self,
        events: Sequence[ScorableEvent],
        now_ms: int,
        limit: int = _DEFAULT_LIMIT,
    ) -> list[Opportunity]:
        """Return the top opportunities across every category.

        Args:
            events: Recent stored events, in any order.
            now_ms: Current time in epoch milliseconds.
            limit: Maximum number of opportunities.

        Returns:
            Opportunities ordered by priority descending, newest first on
            ties.

        """
        candidates = [
            *self.expired(events, now_ms),
            *self.sales(events),
            *self.trending(events),
            *self.listings(events),
        ]
        candidates.sort(key=lambda opp: (opp.priority, opp.detected_at), reverse=True)
        return candidates[:limit]
