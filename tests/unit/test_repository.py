"""
Unit tests for the job repository.

These run against PostgreSQL (``TEST_DATABASE_URL``) and are skipped when
it is unreachable.
"""

from datetime import timedelta

import pytest
import pytest_asyncio
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import STUCK_JOB_ERROR, JobStatus
from jobqueue.db.repository import JobRepository
from jobqueue.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    RetryExhaustedError,
    ValidationError,
)


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        """Create a repository instance."""
        return JobRepository(db_session, max_attempts=2)

    async def test_create_job_success(self, repo: JobRepository, db_session: AsyncSession):
        job = await repo.create_job("Integration job")
        await db_session.commit()

        assert isinstance(job.id, int)
        assert job.description == "Integration job"
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.created_at == job.updated_at
        assert job.enqueued_at is None
        assert job.started_at is None
        assert job.last_error is None

    async def test_ids_strictly_increase(self, repo: JobRepository, db_session: AsyncSession):
        first = await repo.create_job("first")
        second = await repo.create_job("second")
        await db_session.commit()

        assert second.id > first.id

    async def test_create_job_rejects_blank_description(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        with pytest.raises(ValidationError):
            await repo.create_job("   ")

        count = await db_session.scalar(sa.text("SELECT count(*) FROM jobs"))
        assert count == 0

    async def test_blank_description_rejected_by_database(self, db_session: AsyncSession):
        with pytest.raises(sa.exc.IntegrityError):
            await db_session.execute(sa.text("INSERT INTO jobs (description) VALUES ('  ')"))

    async def test_get_job_not_found(self, repo: JobRepository):
        assert await repo.get_job(999) is None

    async def test_queue_then_run_stamps_phase_timestamps(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job = await repo.create_job("stamp me")
        await db_session.commit()

        queued = await repo.advance(job.id, JobStatus.PENDING, JobStatus.QUEUED)
        await db_session.commit()
        enqueued_at = queued.enqueued_at
        assert queued.status == JobStatus.QUEUED
        assert enqueued_at is not None
        assert queued.started_at is None
        assert queued.updated_at >= queued.created_at

        running = await repo.advance(job.id, JobStatus.QUEUED, JobStatus.RUNNING)
        await db_session.commit()
        assert running.status == JobStatus.RUNNING
        assert running.started_at is not None
        assert running.enqueued_at == enqueued_at
        assert running.attempts == 1

    async def test_invalid_transition(self, repo: JobRepository, db_session: AsyncSession):
        job = await repo.create_job("no shortcut")
        await db_session.commit()

        with pytest.raises(InvalidTransitionError):
            await repo.advance(job.id, JobStatus.PENDING, JobStatus.SUCCEEDED)

        fresh = await repo.get_job(job.id)
        assert fresh.status == JobStatus.PENDING

    async def test_stale_from_status_conflicts(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job = await repo.create_job("moved")
        await repo.advance(job.id, JobStatus.PENDING, JobStatus.RUNNING)
        await db_session.commit()

        with pytest.raises(ConflictError) as exc_info:
            await repo.advance(job.id, JobStatus.PENDING, JobStatus.QUEUED)

        assert exc_info.value.actual == JobStatus.RUNNING
        assert exc_info.value.expected == JobStatus.PENDING

    async def test_advance_missing_job(self, repo: JobRepository):
        with pytest.raises(NotFoundError):
            await repo.advance(999, JobStatus.PENDING, JobStatus.RUNNING)

    async def test_retry_until_budget_spent(self, repo: JobRepository, db_session: AsyncSession):
        job = await repo.create_job("flaky")
        await db_session.commit()

        for _ in range(2):
            await repo.advance(job.id, JobStatus.PENDING, JobStatus.RUNNING)
            failed = await repo.advance(
                job.id, JobStatus.RUNNING, JobStatus.FAILED, last_error="boom"
            )
            await db_session.commit()
            assert failed.last_error == "boom"
            if failed.attempts < 2:
                retried = await repo.advance(
                    job.id, JobStatus.FAILED, JobStatus.PENDING, clear_error=True
                )
                await db_session.commit()
                assert retried.status == JobStatus.PENDING
                assert retried.last_error is None

        with pytest.raises(RetryExhaustedError) as exc_info:
            await repo.advance(job.id, JobStatus.FAILED, JobStatus.PENDING)

        assert exc_info.value.attempts == 2
        fresh = await repo.get_job(job.id)
        assert fresh.status == JobStatus.FAILED

    async def test_started_at_is_set_once(self, repo: JobRepository, db_session: AsyncSession):
        job = await repo.create_job("twice")
        first = await repo.advance(job.id, JobStatus.PENDING, JobStatus.RUNNING)
        first_started = first.started_at
        await repo.advance(job.id, JobStatus.RUNNING, JobStatus.FAILED, last_error="x")
        await repo.advance(job.id, JobStatus.FAILED, JobStatus.PENDING)
        await db_session.commit()

        second = await repo.advance(job.id, JobStatus.PENDING, JobStatus.RUNNING)
        await db_session.commit()

        assert second.attempts == 2
        assert second.started_at == first_started

    async def test_guard_trigger_keeps_phase_timestamps(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job = await repo.create_job("guarded")
        running = await repo.advance(job.id, JobStatus.PENDING, JobStatus.RUNNING)
        started_at = running.started_at
        await db_session.commit()
        assert started_at is not None

        await db_session.execute(
            sa.text("UPDATE jobs SET started_at = NULL WHERE id = :id"), {"id": job.id}
        )
        await db_session.commit()

        fresh = await repo.get_job(job.id)
        assert fresh.started_at == started_at

    async def test_claim_next_takes_oldest(self, repo: JobRepository, db_session: AsyncSession):
        first = await repo.create_job("first")
        await repo.create_job("second")
        await db_session.commit()

        claimed = await repo.claim_next()
        await db_session.commit()

        assert claimed.id == first.id
        assert claimed.status == JobStatus.RUNNING
        assert claimed.attempts == 1

    async def test_claim_next_empty(self, repo: JobRepository):
        assert await repo.claim_next() is None

    async def test_queue_pending_and_list_eligible(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        jobs = [await repo.create_job(f"job {i}") for i in range(3)]
        await db_session.commit()

        queued = await repo.queue_pending(limit=2)
        await db_session.commit()

        assert queued == [jobs[0].id, jobs[1].id]
        assert await repo.list_eligible_ids(limit=10) == [job.id for job in jobs]

        third = await repo.get_job(jobs[2].id)
        assert third.status == JobStatus.PENDING

    async def test_fail_stuck_running(self, repo: JobRepository, db_session: AsyncSession):
        stuck = await repo.create_job("stuck")
        fresh = await repo.create_job("fresh")
        await repo.advance(stuck.id, JobStatus.PENDING, JobStatus.RUNNING)
        await repo.advance(fresh.id, JobStatus.PENDING, JobStatus.RUNNING)
        await db_session.commit()

        await db_session.execute(
            sa.text(
                "UPDATE jobs SET created_at = now() - interval '2 hours', "
                "updated_at = now() - interval '1 hour' WHERE id = :id"
            ),
            {"id": stuck.id},
        )
        await db_session.commit()

        failed = await repo.fail_stuck_running(timedelta(minutes=5))
        await db_session.commit()

        assert failed == [stuck.id]
        swept = await repo.get_job(stuck.id)
        assert swept.status == JobStatus.FAILED
        assert swept.last_error == STUCK_JOB_ERROR
        assert (await repo.get_job(fresh.id)).status == JobStatus.RUNNING

    async def test_count_by_status(self, repo: JobRepository, db_session: AsyncSession):
        job = await repo.create_job("one")
        await repo.create_job("two")
        await repo.advance(job.id, JobStatus.PENDING, JobStatus.QUEUED)
        await db_session.commit()

        counts = await repo.count_by_status()

        assert counts == {
            "PENDING": 1,
            "QUEUED": 1,
            "RUNNING": 0,
            "SUCCEEDED": 0,
            "FAILED": 0,
        }

    async def test_expected_attempts_guards_finish(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        job = await repo.create_job("reclaimed")
        await repo.advance(job.id, JobStatus.PENDING, JobStatus.RUNNING)
        await repo.advance(job.id, JobStatus.RUNNING, JobStatus.FAILED, last_error="x")
        await repo.advance(job.id, JobStatus.FAILED, JobStatus.PENDING)
        await repo.advance(job.id, JobStatus.PENDING, JobStatus.RUNNING)
        await db_session.commit()

        with pytest.raises(ConflictError) as exc_info:
            await repo.advance(
                job.id, JobStatus.RUNNING, JobStatus.SUCCEEDED, expected_attempts=1
            )

        assert exc_info.value.actual == JobStatus.RUNNING
        assert exc_info.value.actual_attempts == 2

        done = await repo.advance(
            job.id, JobStatus.RUNNING, JobStatus.SUCCEEDED, expected_attempts=2
        )
        await db_session.commit()
        assert done.status == JobStatus.SUCCEEDED
