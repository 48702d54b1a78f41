"""
Retention reaper for deleting old succeeded jobs.

The database normally runs the retention delete itself through pg_cron
(see ``jobqueue.reaper.schedule``). This process does the same work from
Python for deployments without pg_cron. Both can run at once: deletes use
SKIP LOCKED and only ever touch SUCCEEDED rows past the retention window.
"""

import asyncio
import logging
import signal
from datetime import timedelta

from jobqueue.config import Settings, get_settings
from jobqueue.constants import SPAN_REAP_JOBS
from jobqueue.db.connection import Database
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import setup_metrics
from jobqueue.observability.tracing import get_tracer, setup_tracing
from jobqueue.service import JobService

logger = logging.getLogger(__name__)


class Reaper:
    """
    Retention reaper that deletes expired SUCCEEDED jobs.

    Runs periodically to:
    1. Delete SUCCEEDED jobs created before now() - retention, in batches
    2. Refresh the jobs-by-status gauge
    """

    def __init__(
        self,
        service: JobService,
        retention: timedelta | None = None,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            service: Job service bound to the store.
            retention: Age after which SUCCEEDED jobs are deleted.
            interval_seconds: Seconds between reaper runs.
            batch_size: Maximum rows deleted per transaction.
        """
        settings = get_settings()
        self.service = service
        self.retention = retention or settings.retention
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self.batch_size = batch_size or settings.reaper_batch_size
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(
            f"Reaper starting with interval {self.interval}s",
            extra={"retention_seconds": int(self.retention.total_seconds())},
        )
        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False
        self._stopped.set()

    async def run_once(self) -> int:
        """
        Delete every expired SUCCEEDED job, one short transaction per batch.

        Returns:
            Number of jobs deleted.
        """
        total = 0
        with get_tracer().start_as_current_span(SPAN_REAP_JOBS) as span:
            while True:
                deleted = await self.service.delete_expired(self.retention, self.batch_size)
                total += deleted
                if deleted < self.batch_size:
                    break
            span.set_attribute("deleted", total)

        if total > 0:
            logger.info(f"Deleted {total} expired jobs")

        await self.service.count_by_status()
        return total


async def run_async(settings: Settings | None = None) -> None:
    """Run the reaper asynchronously."""
    settings = settings or get_settings()
    setup_logging(settings)
    setup_metrics()
    setup_tracing(settings)

    database = Database.from_settings(settings)
    try:
        await database.wait_until_ready(
            settings.database_connect_attempts,
            settings.database_connect_retry_seconds,
        )
        reaper = Reaper(
            JobService(database, max_attempts=settings.worker_max_attempts),
            retention=settings.retention,
            interval_seconds=settings.reaper_interval_seconds,
            batch_size=settings.reaper_batch_size,
        )

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(reaper.stop()))

        await reaper.start()
    finally:
        await database.dispose()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
