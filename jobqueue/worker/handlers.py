"""
Job handlers.

A handler receives the claimed Job and either returns (success) or raises
(failure; the exception text becomes ``last_error``). Handlers must be
idempotent: a job whose consumer crashed is swept back to the queue and
runs again.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from jobqueue.db.models import Job

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[Job], Awaitable[None]]

SIMULATED_WORK_SECONDS = 2.0


async def simulate_work(job: Job) -> None:
    """
    Default handler: pretend to work for a fixed time.

    Descriptions have no executable meaning, so the reference consumer
    just sleeps.
    """
    logger.info(
        "Processing job",
        extra={"job_id": job.id, "description": job.description},
    )
    await asyncio.sleep(SIMULATED_WORK_SECONDS)

