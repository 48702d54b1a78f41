"""
Job repository for database operations.
Implements the core data access patterns for job management.
"""

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import (
    CLAIMABLE_STATUSES,
    DEFAULT_MAX_ATTEMPTS,
    STUCK_JOB_ERROR,
    JobStatus,
)
from jobqueue.db.models import Job
from jobqueue.exceptions import (
    ConflictError,
    NotFoundError,
    RetryExhaustedError,
    ValidationError,
)
from jobqueue.state_machine import (
    INITIAL_STATUS,
    is_retry,
    phase_timestamp,
    validate_transition,
)

logger = logging.getLogger(__name__)


def _touch() -> Any:
    """updated_at value for a status change; never earlier than created_at."""
    return func.greatest(func.now(), Job.created_at)


def _entry_values(to_status: JobStatus) -> dict[str, Any]:
    """Column updates implied by entering ``to_status``."""
    values: dict[str, Any] = {"status": to_status, "updated_at": _touch()}
    column = phase_timestamp(to_status)
    if column is not None:
        values[column] = func.coalesce(getattr(Job, column), func.now())
    if to_status == JobStatus.RUNNING:
        values["attempts"] = Job.attempts + 1
    return values


def validate_description(description: Any) -> str:
    """
    Check a producer-supplied description.

    Raises:
        ValidationError: If the description is missing, not text, or blank.
    """
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("Description is required")
    return description


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job creation in the initial state
    - Compare-and-swap status transitions
    - Claiming work with FOR UPDATE SKIP LOCKED
    - Retention deletes and stuck-job sweeps
    """

    def __init__(self, session: AsyncSession, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            max_attempts: Retry budget checked on the FAILED -> PENDING edge.
        """
        self._session = session
        self._max_attempts = max_attempts

    async def create_job(self, description: Any) -> Job:
        """
        Insert a job in the initial state.

        Args:
            description: Non-empty text describing the work.

        Returns:
            The inserted Job with its generated id and timestamps.

        Raises:
            ValidationError: If the description is missing or blank.
        """
        validate_description(description)

        stmt = (
            insert(Job)
            .values(description=description, status=INITIAL_STATUS)
            .returning(Job)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one()

        logger.info("Created new job", extra={"job_id": job.id})
        return job

    async def get_job(self, job_id: int) -> Job | None:
        """
        Get a job by ID, always reloading it from the database.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

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
        Move a job from one status to another if it is still in ``from_status``.

        The status check and the write are one UPDATE statement, so two
        callers racing for the same row cannot both succeed.

        Args:
            job_id: The job id.
            from_status: Status the caller expects the job to be in.
            to_status: Target status.
            last_error: Error text recorded when entering FAILED.
            clear_error: Clear last_error when retrying.
            expected_attempts: Also require this attempt count, so a consumer
                only finishes the attempt it claimed.

        Returns:
            The updated Job.

        Raises:
            InvalidTransitionError: If the edge is not permitted.
            RetryExhaustedError: If a retry was requested with no attempts left.
            NotFoundError: If the job does not exist.
            ConflictError: If the job is no longer in ``from_status``, or is
                on a different attempt than ``expected_attempts``.
        """
        validate_transition(from_status, to_status)
        retry = is_retry(from_status, to_status)

        values = _entry_values(to_status)
        if to_status == JobStatus.FAILED and last_error is not None:
            values["last_error"] = last_error
        if retry and clear_error:
            values["last_error"] = None

        conditions = [Job.id == job_id, Job.status == from_status]
        if retry:
            conditions.append(Job.attempts < self._max_attempts)
        if expected_attempts is not None:
            conditions.append(Job.attempts == expected_attempts)

        stmt = (
            update(Job)
            .where(*conditions)
            .values(**values)
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Job status changed",
                extra={
                    "job_id": job_id,
                    "from_status": str(from_status),
                    "to_status": str(to_status),
                    "attempts": job.attempts,
                },
            )
            return job

        current = await self._session.execute(
            select(Job.status, Job.attempts).where(Job.id == job_id)
        )
        row = current.one_or_none()
        if row is None:
            raise NotFoundError(job_id)
        actual = JobStatus(row.status)
        if expected_attempts is not None and row.attempts != expected_attempts:
            raise ConflictError(
                job_id,
                from_status,
                actual,
                expected_attempts=expected_attempts,
                actual_attempts=row.attempts,
            )
        if retry and actual == JobStatus.FAILED:
            raise RetryExhaustedError(job_id, row.attempts, self._max_attempts)
        raise ConflictError(job_id, from_status, actual)

    async def claim_next(self) -> Job | None:
        """
        Claim the oldest claimable job and move it to RUNNING.

        Uses FOR UPDATE SKIP LOCKED so concurrent consumers never pick the
        same row and never wait on each other.

        Returns:
            The claimed Job, or None if nothing is claimable.
        """
        candidate = (
            select(Job.id)
            .where(Job.status.in_(CLAIMABLE_STATUSES))
            .order_by(Job.id)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(Job)
            .where(Job.id == candidate)
            .values(**_entry_values(JobStatus.RUNNING))
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Claimed job",
                extra={"job_id": job.id, "attempts": job.attempts},
            )
        return job

    async def list_eligible_ids(self, limit: int) -> list[int]:
        """
        Ids of claimable jobs, oldest first, without locking them.

        Args:
            limit: Maximum number of ids to return.
        """
        stmt = (
            select(Job.id)
            .where(Job.status.in_(CLAIMABLE_STATUSES))
            .order_by(Job.id)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def queue_pending(self, limit: int) -> list[int]:
        """
        Acknowledge up to ``limit`` pending jobs by moving them to QUEUED.

        Args:
            limit: Maximum number of jobs to queue.

        Returns:
            Ids of the queued jobs, oldest first.
        """
        candidates = (
            select(Job.id)
            .where(Job.status == JobStatus.PENDING)
            .order_by(Job.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(Job)
            .where(Job.id.in_(candidates))
            .values(**_entry_values(JobStatus.QUEUED))
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        job_ids = sorted(result.scalars().all())

        if job_ids:
            logger.info(f"Queued {len(job_ids)} pending jobs")
        return job_ids

    async def fail_stuck_running(self, timeout: timedelta, limit: int = 100) -> list[int]:
        """
        Fail jobs that have been RUNNING longer than ``timeout``.

        A consumer that crashed mid-job leaves its row RUNNING; failing it
        lets the normal retry edge hand it back to the queue.

        Args:
            timeout: Maximum time a job may stay RUNNING.
            limit: Maximum number of jobs to fail in one call.

        Returns:
            Ids of the failed jobs, oldest first.
        """
        candidates = (
            select(Job.id)
            .where(
                Job.status == JobStatus.RUNNING,
                Job.updated_at < func.now() - timeout,
            )
            .order_by(Job.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(Job)
            .where(Job.id.in_(candidates), Job.status == JobStatus.RUNNING)
            .values(**_entry_values(JobStatus.FAILED), last_error=STUCK_JOB_ERROR)
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        job_ids = sorted(result.scalars().all())

        if job_ids:
            logger.warning(
                f"Failed {len(job_ids)} stuck running jobs",
                extra={"job_ids": job_ids},
            )
        return job_ids

    async def delete_expired(self, retention: timedelta, batch_size: int) -> int:
        """
        Delete one batch of SUCCEEDED jobs created before ``now() - retention``.

        Only terminal-successful rows past the window are touched, and rows
        locked by another reaper are skipped.

        Args:
            retention: Retention window.
            batch_size: Maximum rows to delete.

        Returns:
            Number of deleted rows.
        """
        candidates = (
            select(Job.id)
            .where(
                Job.status == JobStatus.SUCCEEDED,
                Job.created_at < func.now() - retention,
            )
            .order_by(Job.created_at)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            delete(Job)
            .where(Job.id.in_(candidates))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def count_by_status(self) -> dict[str, int]:
        """
        Get job counts by status.

        Returns:
            Dictionary of status -> count, with zero for absent statuses.
        """
        stmt = select(Job.status, func.count()).group_by(Job.status)
        result = await self._session.execute(stmt)
        counts = {status.value: 0 for status in JobStatus}
        counts.update({JobStatus(status).value: count for status, count in result.all()})
        return counts
