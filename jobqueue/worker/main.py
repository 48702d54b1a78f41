"""
Reference consumer process.

The worker sleeps on the change notifier, and on every wake-up (or
timeout) acknowledges pending jobs, claims them one at a time, runs the
handler and records the outcome. Failed jobs go back to PENDING while
they have attempts left. A sweeper fails jobs left RUNNING by a crashed
consumer so they can be retried.
"""

import asyncio
import logging
import os
import signal
import time
from datetime import timedelta

from jobqueue.config import Settings, get_settings
from jobqueue.constants import SPAN_EXECUTE_JOB, JobStatus
from jobqueue.db.connection import Database
from jobqueue.db.models import Job
from jobqueue.exceptions import ConflictError, RetryExhaustedError
from jobqueue.notifier import JobNotificationListener
from jobqueue.observability.logging import bind_job_context, clear_job_context, setup_logging
from jobqueue.observability.metrics import get_metrics, setup_metrics
from jobqueue.observability.tracing import get_tracer, setup_tracing
from jobqueue.service import JobService
from jobqueue.state_machine import is_terminal
from jobqueue.worker.handlers import JobHandler, simulate_work

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker driven by wake signals.

    Features:
    - Wakes on NOTIFY and re-scans on a timeout, so lost signals only delay work
    - Claims with compare-and-swap updates; a lost race means re-scan
    - Retries failed jobs while the attempt budget allows
    - Sweeps jobs stuck in RUNNING
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        service: JobService,
        settings: Settings | None = None,
        handler: JobHandler = simulate_work,
        listener: JobNotificationListener | None = None,
    ):
        """
        Initialize the worker.

        Args:
            service: Job service bound to the store.
            settings: Application settings. Defaults to the cached settings.
            handler: Coroutine run for each claimed job.
            listener: Notification listener. Built from settings if omitted.
        """
        settings = settings or get_settings()

        self.service = service
        self.handler = handler
        self.worker_id = settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.batch_size = settings.worker_batch_size
        self.wake_timeout = settings.worker_wake_timeout_seconds
        self.sweep_interval = settings.worker_sweep_interval_seconds
        self.running_timeout = timedelta(seconds=settings.worker_running_timeout_seconds)

        self.listener = listener or JobNotificationListener(
            settings.asyncpg_dsn,
            settings.notify_channel,
            reconnect_delay_seconds=settings.database_connect_retry_seconds,
        )

        self._running = False
        self._stop_requested = False
        self._sweeper_task: asyncio.Task | None = None
        self._metrics = get_metrics()

    async def start(self) -> None:
        """Start the worker and block until stop() is called."""
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "batch_size": self.batch_size},
        )
        self._running = True
        self._stop_requested = False
        self._sweeper_task = asyncio.create_task(self._sweep_loop())

        try:
            await self.listener.ensure_connected()

            while self._running:
                try:
                    await self.run_once()
                except Exception as e:
                    logger.exception(
                        f"Error in worker loop: {e}",
                        extra={"worker_id": self.worker_id},
                    )

                if not self._running:
                    break

                await self.listener.ensure_connected()
                woke = await self.listener.wait(self.wake_timeout)
                self._metrics.record_wake("notify" if woke else "timeout")
        finally:
            self._sweeper_task.cancel()
            try:
                await self._sweeper_task
            except asyncio.CancelledError:
                pass
            await self.listener.close()

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop the worker after the job in hand finishes."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._stop_requested = True
        self.listener.interrupt()

    async def run_once(self) -> int:
        """
        Acknowledge pending jobs, scan for eligible work, then claim and run
        jobs until none are left.

        The scan runs on every wake and every timeout, so a missed
        notification only delays work until the next round.

        Returns:
            Number of jobs processed.
        """
        await self.service.queue_pending(self.batch_size)

        eligible = await self.service.list_eligible_ids(self.batch_size)
        if not eligible:
            return 0
        logger.debug(
            f"Found {len(eligible)} eligible jobs",
            extra={"worker_id": self.worker_id, "first_job_id": eligible[0]},
        )

        processed = 0
        while not self._stop_requested:
            job = await self.service.claim_next()
            if job is None:
                break
            await self._execute_job(job)
            processed += 1

        if processed:
            logger.info(
                f"Processed {processed} jobs",
                extra={"worker_id": self.worker_id},
            )
        return processed

    async def _execute_job(self, job: Job) -> None:
        """
        Run the handler for a claimed job and record the outcome.

        Args:
            job: A job this worker moved to RUNNING.
        """
        bind_job_context(job.id, attempt=job.attempts, worker_id=self.worker_id)
        start_time = time.monotonic()

        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("attempt", job.attempts)

                error: str | None = None
                try:
                    await self.handler(job)
                except Exception as e:
                    error = str(e) or type(e).__name__
                    span.record_exception(e)

            duration = time.monotonic() - start_time

            if error is None:
                await self.service.advance(
                    job.id,
                    JobStatus.RUNNING,
                    JobStatus.SUCCEEDED,
                    expected_attempts=job.attempts,
                )
                self._metrics.record_job_finished(JobStatus.SUCCEEDED, duration)
                logger.info(
                    "Job completed successfully",
                    extra={"job_id": job.id, "duration": f"{duration:.2f}s"},
                )
            else:
                failed = await self.service.advance(
                    job.id,
                    JobStatus.RUNNING,
                    JobStatus.FAILED,
                    last_error=error,
                    expected_attempts=job.attempts,
                )
                self._metrics.record_job_finished(JobStatus.FAILED, duration)
                logger.warning(
                    "Job failed",
                    extra={"job_id": job.id, "error": error, "attempt": failed.attempts},
                )
                if is_terminal(failed.status, failed.attempts, self.service.max_attempts):
                    logger.warning(
                        "Job failed permanently",
                        extra={"job_id": job.id, "attempts": failed.attempts},
                    )
                else:
                    await self._retry(job.id)

        except ConflictError as e:
            # The sweeper or another consumer took the job over; re-scan
            logger.warning(
                "Job changed status while running",
                extra={
                    "job_id": job.id,
                    "actual": str(e.actual),
                    "attempt": job.attempts,
                    "current_attempt": e.actual_attempts,
                },
            )
        finally:
            clear_job_context()

    async def _retry(self, job_id: int) -> None:
        """Send a failed job back to PENDING if it has attempts left."""
        try:
            await self.service.retry(job_id)
        except RetryExhaustedError as e:
            logger.warning(
                "Job failed permanently",
                extra={"job_id": job_id, "attempts": e.attempts},
            )
            return
        except ConflictError as e:
            logger.info(
                "Job already left FAILED",
                extra={"job_id": job_id, "actual": str(e.actual)},
            )
            return

        logger.info("Job scheduled for retry", extra={"job_id": job_id})

    async def _sweep_loop(self) -> None:
        """Periodically fail and retry jobs stuck in RUNNING."""
        while self._running:
            try:
                await asyncio.sleep(self.sweep_interval)
                for job_id in await self.service.fail_stuck_running(self.running_timeout):
                    await self._retry(job_id)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in sweeper loop: {e}")


async def run_async(settings: Settings | None = None) -> None:
    """Run the worker asynchronously."""
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
        service = JobService(database, max_attempts=settings.worker_max_attempts)
        worker = Worker(service, settings)

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(worker.stop()))

        await worker.start()
    finally:
        await database.dispose()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
