"""Configuration dataclass for the domain monitor service.

Hold all tuneable parameters for the monitor: database URL, poll cadence and
page size, upstream event selection, analytics batching, and webhook
timeouts. Immutable after construction so the two service loops can share
one instance safely.
"""

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

from domain_watch.core.config import ConfigError, ConfigLoader, get_config

_DEFAULT_DB_URL = "sqlite+aiosqlite:///domain_watch.db"
_DEFAULT_POLL_INTERVAL = 30.0
_DEFAULT_FOLLOW_UP_DELAY = 1.0
_DEFAULT_PAGE_SIZE = 100
_DEFAULT_ANALYTICS_INTERVAL = 60.0
_DEFAULT_ANALYTICS_BATCH_SIZE = 100
_DEFAULT_WEBHOOK_TIMEOUT = 10.0
_DEFAULT_SUBSCRIPTION_CACHE_TTL = 0.0

_CONFIG_SECTION = "monitor"


def _as_bool(value: Any) -> bool:
    """Interpret YAML or environment-substituted text as a boolean."""
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_types(value: Any) -> tuple[str, ...]:
    """Accept a list of event types or a comma-separated string."""
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(str(v).strip() for v in value if str(v).strip())


_CONVERTERS: dict[str, Any] = {
    "db_url": str,
    "poll_interval_seconds": float,
    "follow_up_delay_seconds": float,
    "page_size": int,
    "event_types": _as_types,
    "finalized_only": _as_bool,
    "analytics_interval_seconds": float,
    "analytics_batch_size": int,
    "webhook_timeout_seconds": float,
    "subscription_cache_ttl_seconds": float,
}


@dataclass(frozen=True)
class MonitorConfig:
    """Immutable configuration for a domain monitor session.

    Attributes:
        db_url: SQLAlchemy async connection string
            (e.g. ``sqlite+aiosqlite:///domain_watch.db``).
        poll_interval_seconds: Delay between poll cycles once caught up.
        follow_up_delay_seconds: Delay before the next cycle while upstream
            still reports pending events.
        page_size: Maximum events requested per poll.
        event_types: Event types requested from upstream; empty for all.
        finalized_only: Request only finalized events.
        analytics_interval_seconds: Delay between analytics batches.
        analytics_batch_size: Maximum events aggregated per batch.
        webhook_timeout_seconds: Per-request webhook timeout.
        subscription_cache_ttl_seconds: How long the matcher reuses a
            subscription snapshot; ``0`` reloads every cycle.

    """

    db_url: str = _DEFAULT_DB_URL
    poll_interval_seconds: float = _DEFAULT_POLL_INTERVAL
    follow_up_delay_seconds: float = _DEFAULT_FOLLOW_UP_DELAY
    page_size: int = _DEFAULT_PAGE_SIZE
    event_types: tuple[str, ...] = ()
    finalized_only: bool = True
    analytics_interval_seconds: float = _DEFAULT_ANALYTICS_INTERVAL
    analytics_batch_size: int = _DEFAULT_ANALYTICS_BATCH_SIZE
    webhook_timeout_seconds: float = _DEFAULT_WEBHOOK_TIMEOUT
    subscription_cache_ttl_seconds: float = _DEFAULT_SUBSCRIPTION_CACHE_TTL

    def __post_init__(self) -> None:
        """Reject values the loops cannot run with.

        Raises:
            ConfigError: If a size is not positive or an interval is negative.

        """
        if self.page_size <= 0 or self.analytics_batch_size <= 0:
            msg = "page_size and analytics_batch_size must be positive"
            raise ConfigError(msg)
        intervals = (
            self.poll_interval_seconds,
            self.follow_up_delay_seconds,
            self.analytics_interval_seconds,
            self.webhook_timeout_seconds,
            self.subscription_cache_ttl_seconds,
        )
        if any(value < 0 for value in intervals):
            msg = "Intervals and timeouts must not be negative"
            raise ConfigError(msg)

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> "MonitorConfig":
        """Build a config from a ``monitor`` settings mapping.

        Unknown keys are ignored and missing keys keep their defaults.

        Args:
            section: Raw settings, as loaded from YAML.

        Returns:
            The parsed ``MonitorConfig``.

        Raises:
            ConfigError: If a value cannot be converted.

        """
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = section.get(f.name)
            if raw is None:
                continue
            try:
                values[f.name] = _CONVERTERS[f.name](raw)
            except (TypeError, ValueError) as exc:
                msg = f"Invalid value for monitor.{f.name}: {raw!r}"
                raise ConfigError(msg) from exc
        return cls(**values)

    @classmethod
    def from_loader(
        cls, loader: ConfigLoader | None = None, **overrides: Any
    ) -> "MonitorConfig":
        """Build a config from the ``monitor`` section of the settings files.

        Args:
            loader: Config loader; defaults to the global one.
            **overrides: Field values that take precedence over the file,
                typically CLI options. ``None`` values are ignored.

        Returns:
            The parsed ``MonitorConfig``.

        """
        config = cls.from_mapping((loader or get_config()).get_section(_CONFIG_SECTION))
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(config, **changes) if changes else config
