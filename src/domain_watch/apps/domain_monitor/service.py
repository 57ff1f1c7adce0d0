"""Main orchestrator for the domain monitor service.

Wire together the Doma poll client, the repository, the subscription
matcher, the webhook dispatcher and the analytics aggregator. The poller
and the aggregator run as two independent asyncio tasks that share only
the repository. On SIGINT/SIGTERM both loops are asked to stop, in-flight
work finishes, and every client and the database engine are closed.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING

from domain_watch.apps.domain_monitor.analytics import AnalyticsAggregator
from domain_watch.apps.domain_monitor.dispatcher import WebhookDispatcher
from domain_watch.apps.domain_monitor.matcher import SubscriptionMatcher
from domain_watch.apps.domain_monitor.poller import EventPoller, PollerState
from domain_watch.apps.domain_monitor.repository import MonitorRepository

if TYPE_CHECKING:
    from domain_watch.apps.domain_monitor.config import MonitorConfig
    from domain_watch.clients.doma import DomaClient

logger = logging.getLogger(__name__)


class DomainMonitorService:
    """Run ingestion and analytics until shutdown.

    Args:
        config: Immutable monitor configuration.
        client: Upstream Doma client; closed on shutdown.
        repository: Repository to use instead of one built from
            ``config.db_url``.

    """

    def __init__(
        self,
        config: MonitorConfig,
        client: DomaClient,
        repository: MonitorRepository | None = None,
    ) -> None:
        """Build the pipeline components.

        Args:
            config: Monitor configuration.
            client: Upstream Doma client.
            repository: Optional pre-built repository.

        """
        self._config = config
        self._client = client
        self._repo = repository or MonitorRepository(config.db_url)
        self._matcher = SubscriptionMatcher(
            self._repo, cache_ttl_seconds=config.subscription_cache_ttl_seconds
        )
        self._dispatcher = WebhookDispatcher(self._repo, timeout=config.webhook_timeout_seconds)
        self._poller = EventPoller(
            client,
            self._repo,
            self._matcher,
            self._dispatcher,
            page_size=config.page_size,
            event_types=config.event_types,
            finalized_only=config.finalized_only,
            poll_interval_seconds=config.poll_interval_seconds,
            follow_up_delay_seconds=config.follow_up_delay_seconds,
        )
        self._aggregator = AnalyticsAggregator(
            self._repo,
            batch_size=config.analytics_batch_size,
            interval_seconds=config.analytics_interval_seconds,
        )

    @property
    def poller(self) -> EventPoller:
        """Return the event poller."""
        return self._poller

    @property
    def aggregator(self) -> AnalyticsAggregator:
        """Return the analytics aggregator."""
        return self._aggregator

    @property
    def repository(self) -> MonitorRepository:
        """Return the shared repository."""
        return self._repo

    async def run(self, *, install_signal_handlers: bool = True) -> None:
        """Execute both loops until shutdown.

        Steps:
            1. Initialise the database schema.
            2. Install SIGINT/SIGTERM handlers.
            3. Start the poller and the analytics aggregator as tasks.
            4. When the poller exits (stopped or halted), stop the
               aggregator and wait for its in-flight batch.
            5. Close the HTTP clients and dispose the engine.

        Args:
            install_signal_handlers: Register OS signal handlers; disabled
                in tests and when embedded in another event loop owner.

        """
        if install_signal_handlers:
            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGINT, self.shutdown)
            loop.add_signal_handler(signal.SIGTERM, self.shutdown)

        await self._repo.init_db()
        logger.info("Domain monitor starting (db: %s)", self._config.db_url)

        poller_task = asyncio.create_task(self._poller.run())
        analytics_task = asyncio.create_task(self._aggregator.run())
        try:
            await poller_task
            if self._poller.state is PollerState.HALTED:
                logger.error("Poller halted; stopping the service")
        finally:
            self._poller.stop()
            self._aggregator.stop()
            results = await asyncio.gather(poller_task, analytics_task, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("Service loop failed", exc_info=result)
            await self.close()
            logger.info("Domain monitor shut down")

    def shutdown(self) -> None:
        """Ask both loops to stop after their in-flight work."""
        logger.info("Shutdown signal received")
        self._poller.stop()
        self._aggregator.stop()

    async def close(self) -> None:
        """Close the HTTP clients and the database engine."""
        await self._dispatcher.close()
        await self._client.close()
        await self._repo.close()
