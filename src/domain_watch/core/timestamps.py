"""Timestamp helpers shared by ingestion, filters, and the CLI.

All persisted times are epoch milliseconds. Upstream payloads carry
expirations as ISO 8601 strings or as epoch seconds/milliseconds, so
``to_epoch_ms`` accepts all of those.
"""

import math
import time
from datetime import UTC, datetime
from typing import Any

MS_PER_SECOND = 1000
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

# Epoch values at or above this are treated as milliseconds (Sep 2001 in ms).
_MS_THRESHOLD = 1_000_000_000_000
# Bounds of what ``datetime`` can represent (years 1 through 9999).
_MIN_EPOCH_MS = -62_135_596_800_000
_MAX_EPOCH_MS = 253_402_300_799_999


def now_ms() -> int:
    """Return the current time as epoch milliseconds.

    Returns:
        Integer epoch milliseconds.

    """
    return int(time.time() * MS_PER_SECOND)


def to_epoch_ms(value: Any) -> int | None:
    """Convert a loosely-typed payload timestamp to epoch milliseconds.

    Numbers (or numeric strings) below ``_MS_THRESHOLD`` are read as
    seconds, larger ones as milliseconds. Strings are otherwise parsed as
    ISO 8601; a trailing ``Z`` is accepted and naive values are taken as
    UTC.

    Args:
        value: Raw value from an event payload.

    Returns:
        Epoch milliseconds, or ``None`` when the value is missing, cannot
        be interpreted as a point in time, or lies outside the years 1
        through 9999.

    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return _number_to_ms(float(value))
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        return _number_to_ms(float(text))
    except ValueError:
        pass

    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * MS_PER_SECOND)


def _number_to_ms(number: float) -> int | None:
    """Scale an epoch number to milliseconds, rejecting non-finite and out-of-range values."""
    if not math.isfinite(number):
        return None
    ms = number if abs(number) >= _MS_THRESHOLD else number * MS_PER_SECOND
    if not _MIN_EPOCH_MS <= ms <= _MAX_EPOCH_MS:
        return None
    return int(ms)


def ms_to_iso(value: int) -> str:
    """Format epoch milliseconds as an ISO 8601 UTC string with a ``Z`` suffix."""
    dt = datetime.fromtimestamp(value / MS_PER_SECOND, tz=UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
