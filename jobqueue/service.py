"""
Job service: the enqueue protocol and the status query interface.

Every call opens its own session through ``Database.session()``, so the
connection is released on every path, and database faults surface as
``StorageError`` with the cause chained.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from jobqueue.constants import (
    DEFAULT_MAX_ATTEMPTS,
    MAX_JOB_ID,
    MIN_JOB_ID,
    SPAN_ADVANCE_JOB,
    SPAN_ENQUEUE_JOB,
    JobStatus,
)
from jobqueue.db.connection import Database
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository, validate_description
from jobqueue.exceptions import ConflictError, NotFoundError, StorageError
from jobqueue.observability.metrics import MetricsCollector, get_metrics
from jobqueue.observability.tracing import get_tracer

logger = logging.getLogger(__name__)


def _check_job_id(job_id: int) -> None:
    """Ids outside the identity column's range can never exist."""
    if not MIN_JOB_ID <= job_id <= MAX_JOB_ID:
        raise NotFoundError(job_id)


class JobService:
    """Transactional operations over the job store."""

    def __init__(
        self,
        database: Database,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        metrics: MetricsCollector | None = None,
    ):
        self.database = database
        self.max_attempts = max_attempts
        self._metrics = metrics or get_metrics()

    @asynccontextmanager
    async def _repository(self, operation: str) -> AsyncIterator[JobRepository]:
        """
        Open a transaction and yield a repository bound to it.

        Raises:
            StorageError: If the database fails; the original error is chained.
        """
        try:
            async with self.database.session() as session:
                yield JobRepository(session, self.max_attempts)
        except (SQLAlchemyError, OSError) as e:
            self._metrics.record_storage_error(operation)
            logger.exception(
                "Database operation failed",
                extra={"operation": operation},
            )
            raise StorageError(operation) from e

    async def enqueue(self, description: Any) -> Job:
        """
        Create a job in PENDING.

        Input is validated before a connection is taken from the pool.
        Consumers are woken by the insert trigger once the row commits.

        Args:
            description: Non-empty text describing the work.

        Returns:
            The committed Job.

        Raises:
            ValidationError: If the description is missing or blank.
            StorageError: If the insert could not be committed.
        """
        validate_description(description)

        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
            async with self._repository("enqueue") as repo:
                job = await repo.create_job(description)
            span.set_attribute("job_id", job.id)

        self._metrics.record_job_created()
        return job

    async def get_job(self, job_id: int) -> Job:
        """
        Read the committed state of a job.

        Raises:
            NotFoundError: If no job has this id.
            StorageError: If the read failed.
        """
        _check_job_id(job_id)
        async with self._repository("get_job") as repo:
            job = await repo.get_job(job_id)

        if job is None:
            raise NotFoundError(job_id)
        return job

    async def advance(
        self,
        job_id: int,
        from_status: JobStatus,
        to_status: JobStatus,
        *,
        last_error: str | None = None,
        clear_error: bool = False,
        expected_attempts: int | None = None,
    ) -> Job:
        """
        Commit a single compare-and-swap status change.

        Pass ``expected_attempts`` to finish only the attempt that was claimed.

        Raises:
            InvalidTransitionError: If the edge is not permitted.
            RetryExhaustedError: If a retry has no attempts left.
            NotFoundError: If the job does not exist.
            ConflictError: If the job is no longer in ``from_status``.
            StorageError: If the update could not be committed.
        """
        _check_job_id(job_id)
        with get_tracer().start_as_current_span(SPAN_ADVANCE_JOB) as span:
            span.set_attribute("job_id", job_id)
            span.set_attribute("from_status", str(from_status))
            span.set_attribute("to_status", str(to_status))
            try:
                async with self._repository("advance") as repo:
                    job = await repo.advance(
                        job_id,
                        from_status,
                        to_status,
                        last_error=last_error,
                        clear_error=clear_error,
                        expected_attempts=expected_attempts,
                    )
            except ConflictError:
                self._metrics.record_conflict(str(to_status))
                raise

        self._metrics.record_transition(str(from_status), str(to_status))
        return job

    async def retry(self, job_id: int) -> Job:
        """Return a FAILED job to PENDING, clearing its last error."""
        return await self.advance(
            job_id, JobStatus.FAILED, JobStatus.PENDING, clear_error=True
        )

    async def claim_next(self) -> Job | None:
        """Claim the oldest claimable job, or return None if there is none."""
        async with self._repository("claim_next") as repo:
            job = await repo.claim_next()
        if job is not None:
            self._metrics.record_claimed()
        return job

    async def queue_pending(self, limit: int) -> list[int]:
        """Acknowledge up to ``limit`` PENDING jobs by moving them to QUEUED."""
        async with self._repository("queue_pending") as repo:
            job_ids = await repo.queue_pending(limit)
        if job_ids:
            self._metrics.record_transition(
                str(JobStatus.PENDING), str(JobStatus.QUEUED), len(job_ids)
            )
        return job_ids

    async def list_eligible_ids(self, limit: int) -> list[int]:
        """Ids of jobs a consumer could claim right now."""
        async with self._repository("list_eligible_ids") as repo:
            return await repo.list_eligible_ids(limit)

    async def fail_stuck_running(self, timeout: timedelta, limit: int = 100) -> list[int]:
        """Fail jobs stuck in RUNNING for longer than ``timeout``."""
        async with self._repository("fail_stuck_running") as repo:
            job_ids = await repo.fail_stuck_running(timeout, limit)
        if job_ids:
            self._metrics.record_transition(
                str(JobStatus.RUNNING), str(JobStatus.FAILED), len(job_ids)
            )
        return job_ids

    async def count_by_status(self) -> dict[str, int]:
        """Job counts per status; also refreshes the queue-depth gauge."""
        async with self._repository("count_by_status") as repo:
            counts = await repo.count_by_status()
        self._metrics.update_status_counts(counts)
        return counts

    async def delete_expired(self, retention: timedelta, batch_size: int) -> int:
        """Delete one batch of SUCCEEDED jobs older than ``retention``."""
        async with self._repository("delete_expired") as repo:
            deleted = await repo.delete_expired(retention, batch_size)
        self._metrics.record_reaped(deleted)
        return deleted
