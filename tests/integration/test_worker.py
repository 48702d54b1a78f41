"""
Integration tests for worker job processing.
"""

import asyncio
from datetime import timedelta

import pytest

from jobqueue.config import Settings
from jobqueue.constants import JobStatus
from jobqueue.db.models import Job
from jobqueue.notifier import JobNotificationListener
from jobqueue.service import JobService
from jobqueue.worker.main import Worker


async def succeed(job: Job) -> None:
    await asyncio.sleep(0)


async def explode(job: Job) -> None:
    raise RuntimeError("boom")


async def _wait_for_status(
    service: JobService, job_id: int, status: JobStatus, timeout: float = 5.0
) -> Job:
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        job = await service.get_job(job_id)
        if job.status == status:
            return job
        if asyncio.get_running_loop().time() > deadline:
            pytest.fail(f"Job {job_id} stayed {job.status}, expected {status}")
        await asyncio.sleep(0.05)


class TestWorkerIntegration:
    """Integration tests for the reference consumer."""

    async def test_run_once_processes_all_jobs(
        self, service: JobService, test_settings: Settings
    ):
        first = await service.enqueue("first")
        second = await service.enqueue("second")
        worker = Worker(service, test_settings, handler=succeed)

        processed = await worker.run_once()

        assert processed == 2
        for job_id in (first.id, second.id):
            job = await service.get_job(job_id)
            assert job.status == JobStatus.SUCCEEDED
            assert job.attempts == 1
            assert job.enqueued_at is not None
            assert job.started_at is not None

    async def test_failed_job_retries_until_budget_spent(
        self, service: JobService, test_settings: Settings
    ):
        job = await service.enqueue("flaky")
        worker = Worker(service, test_settings, handler=explode)

        processed = await worker.run_once()

        final = await service.get_job(job.id)
        assert processed == service.max_attempts
        assert final.status == JobStatus.FAILED
        assert final.attempts == service.max_attempts
        assert final.last_error == "boom"

    async def test_empty_queue(self, service: JobService, test_settings: Settings):
        worker = Worker(service, test_settings, handler=succeed)

        assert await worker.run_once() == 0

    async def test_stuck_job_is_swept_and_retried(
        self, service: JobService, test_settings: Settings, database
    ):
        job = await service.enqueue("abandoned")
        await service.advance(job.id, JobStatus.PENDING, JobStatus.RUNNING)

        # Simulate a consumer that crashed an hour ago
        async with database.engine.begin() as conn:
            await conn.exec_driver_sql(
                "UPDATE jobs SET created_at = now() - interval '2 hours', "
                f"updated_at = now() - interval '1 hour' WHERE id = {job.id}"
            )

        worker = Worker(service, test_settings, handler=succeed)
        swept = await service.fail_stuck_running(worker.running_timeout)
        assert swept == [job.id]
        await worker._retry(job.id)

        retried = await service.get_job(job.id)
        assert retried.status == JobStatus.PENDING
        assert retried.last_error is None

        await worker.run_once()
        done = await service.get_job(job.id)
        assert done.status == JobStatus.SUCCEEDED
        assert done.attempts == 2

    async def test_worker_loop_wakes_on_new_job(
        self, service: JobService, test_settings: Settings
    ):
        listener = JobNotificationListener(test_settings.asyncpg_dsn, test_settings.notify_channel)
        worker = Worker(service, test_settings, handler=succeed, listener=listener)
        task = asyncio.create_task(worker.start())
        try:
            await asyncio.sleep(0.1)
            job = await service.enqueue("Integration job")

            done = await _wait_for_status(service, job.id, JobStatus.SUCCEEDED)
            assert done.attempts == 1
        finally:
            await worker.stop()
            await asyncio.wait_for(task, timeout=5.0)

    @pytest.mark.parametrize("outcome", ["succeed", "fail"])
    async def test_superseded_attempt_cannot_finish_the_job(
        self, service: JobService, test_settings: Settings, outcome: str
    ):
        job = await service.enqueue("slow")
        takeover: list[Job] = []

        async def overrun(claimed: Job) -> None:
            # While this attempt runs, the sweeper fails it and another
            # consumer claims the retry
            assert await service.fail_stuck_running(timedelta(0)) == [claimed.id]
            await service.retry(claimed.id)
            takeover.append(await service.claim_next())
            if outcome == "fail":
                raise RuntimeError("late failure")

        worker = Worker(service, test_settings, handler=overrun)
        await worker.run_once()

        assert takeover[0].attempts == 2
        current = await service.get_job(job.id)
        assert current.status == JobStatus.RUNNING
        assert current.attempts == 2
        assert current.last_error is None
