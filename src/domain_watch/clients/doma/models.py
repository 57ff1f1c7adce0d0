"""Typed wire models for the Doma poll API.

Insulate the pipeline from the untyped ``{events, lastId, hasMoreEvents}``
response. Individual event records stay as raw dictionaries because their
shape varies by event type; the normalizer owns their interpretation.
"""

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


def coerce_event_id(value: Any) -> int | None:
    """Return an upstream event identifier as an int, or ``None`` if unusable.

    Args:
        value: Raw ``id`` value from an event record.

    Returns:
        The integer identifier, or ``None`` for missing, boolean, or
        non-numeric values.

    """
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class PollPage:
    """One page of events returned by ``GET /poll``.

    Args:
        events: Raw event records in upstream order, each with a usable ``id``.
        last_id: High-water mark to persist and acknowledge, or ``None``
            when the page is empty.
        has_more_events: Whether upstream holds further pending events.

    """

    events: tuple[dict[str, Any], ...]
    last_id: int | None
    has_more_events: bool

    @classmethod
    def from_response(cls, data: Any) -> "PollPage":
        """Parse a poll response body.

        Records without a usable ``id`` are dropped with a warning; they
        can be neither deduplicated nor acknowledged. When ``lastId`` is
        missing, the page's maximum event id is used instead.

        Args:
            data: Parsed JSON body of the poll response.

        Returns:
            A ``PollPage`` (empty when the body is not a mapping).

        """
        if not isinstance(data, dict):
            logger.warning("Unexpected poll response body: %r", data)
            return cls(events=(), last_id=None, has_more_events=False)

        events: list[dict[str, Any]] = []
        for record in data.get("events") or []:
            if not isinstance(record, dict) or coerce_event_id(record.get("id")) is None:
                logger.warning("Dropping event record without a usable id: %r", record)
                continue
            events.append(record)

        last_id = coerce_event_id(data.get("lastId"))
        if last_id is None and events:
            last_id = max(coerce_event_id(e["id"]) or 0 for e in events)

        return cls(
            events=tuple(events),
            last_id=last_id,
            has_more_events=bool(data.get("hasMoreEvents", False)),
        )
