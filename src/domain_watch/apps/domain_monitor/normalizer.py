"""Map heterogeneous upstream event records to one canonical shape.

Upstream records are inconsistent: some carry identifiers at the top level,
some only inside ``eventData``, some use snake_case aliases, and some have no
``eventData`` at all. ``normalize_event`` resolves each field from a fixed,
ordered list of candidate locations and falls back to a deterministic value
derived from the event id, so every record with an id is storable.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from domain_watch.apps.domain_monitor.event_types import UNKNOWN_EVENT_TYPE
from domain_watch.clients.doma.models import coerce_event_id

# Envelope keys are never copied into a raw payload.
_ENVELOPE_KEYS = frozenset(
    {"id", "name", "type", "tokenId", "uniqueId", "relayId", "eventData"}
)

# (location, key): "top" reads the record itself, "payload" reads the payload.
_NAME_PATHS = (("top", "name"), ("payload", "name"), ("payload", "domain"))
_TOKEN_ID_PATHS = (("top", "tokenId"), ("payload", "tokenId"), ("payload", "token_id"))
_UNIQUE_ID_PATHS = (("top", "uniqueId"), ("payload", "uniqueId"), ("payload", "unique_id"))
_RELAY_ID_PATHS = (("top", "relayId"), ("payload", "relayId"), ("payload", "relay_id"))

PLACEHOLDER_PREFIX = "Event-"


@dataclass(frozen=True)
class KnownPayload:
    """Payload taken from the record's ``eventData`` mapping."""

    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RawPayload:
    """Payload rebuilt from the non-envelope keys of a record without ``eventData``."""

    data: dict[str, Any] = field(default_factory=dict)


Payload: TypeAlias = KnownPayload | RawPayload


@dataclass(frozen=True)
class NormalizedEvent:
    """Canonical form of one upstream event.

    Args:
        event_id: Upstream event identifier.
        name: Domain name, or ``Event-<event_id>`` when none was found.
        type: Upstream event type, ``UNKNOWN`` when absent.
        payload: Tagged payload the event was read from.
        token_id: Token identifier, if any.
        unique_id: Upstream unique identifier, ``str(event_id)`` when absent.
        relay_id: Relay identifier, if any.

    """

    event_id: int
    name: str
    type: str
    payload: Payload
    token_id: str | None = None
    unique_id: str | None = None
    relay_id: str | None = None

    @property
    def event_data(self) -> dict[str, Any]:
        """Return the payload mapping regardless of its tag."""
        return self.payload.data


def split_payload(record: Mapping[str, Any]) -> Payload:
    """Tag a record's payload as known (``eventData``) or raw.

    Args:
        record: Raw upstream event record.

    Returns:
        ``KnownPayload`` wrapping ``eventData`` when it is a mapping,
        otherwise ``RawPayload`` holding every non-envelope key.

    """
    event_data = record.get("eventData")
    if isinstance(event_data, Mapping):
        return KnownPayload(data=dict(event_data))
    return RawPayload(data={k: v for k, v in record.items() if k not in _ENVELOPE_KEYS})


def _first_present(
    record: Mapping[str, Any],
    payload: Payload,
    paths: tuple[tuple[str, str], ...],
) -> str | None:
    """Return the first present, non-blank value along ``paths`` as a string."""
    for location, key in paths:
        source = record if location == "top" else payload.data
        value = source.get(key)
        if value is None or isinstance(value, Mapping | list):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def placeholder_name(event_id: int) -> str:
    """Return the synthetic name used when an event carries no domain name."""
    return f"{PLACEHOLDER_PREFIX}{event_id}"


def normalize_event(record: Mapping[str, Any]) -> NormalizedEvent:
    """Produce the canonical event for one upstream record.

    Args:
        record: Raw event record; must carry an integer-coercible ``id``
            (guaranteed by ``PollPage.from_response``).

    Returns:
        The ``NormalizedEvent``.

    Raises:
        ValueError: If the record has no usable ``id``.

    """
    event_id = coerce_event_id(record.get("id"))
    if event_id is None:
        msg = f"Event record has no usable id: {record!r}"
        raise ValueError(msg)

    payload = split_payload(record)
    raw_type = record.get("type")
    event_type = str(raw_type).strip() if raw_type is not None else ""

    return NormalizedEvent(
        event_id=event_id,
        name=_first_present(record, payload, _NAME_PATHS) or placeholder_name(event_id),
        type=event_type or UNKNOWN_EVENT_TYPE,
        payload=payload,
        token_id=_first_present(record, payload, _TOKEN_ID_PATHS),
        unique_id=_first_present(record, payload, _UNIQUE_ID_PATHS) or str(event_id),
        relay_id=_first_present(record, payload, _RELAY_ID_PATHS),
    )


def dedupe_events(events: Sequence[NormalizedEvent]) -> list[NormalizedEvent]:
    """Collapse repeated ids within one page.

    The last occurrence of an id wins and takes the position of the first.

    Args:
        events: Normalized events in arrival order.

    Returns:
        One event per id, in first-arrival order.

    """
    by_id: dict[int, NormalizedEvent] = {}
    for event in events:
        by_id[event.event_id] = event
    return list(by_id.values())
