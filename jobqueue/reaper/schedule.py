"""
Retention schedule registration with pg_cron.

The database runs the retention delete itself on a cron schedule. pg_cron
is optional: when it is missing or registration fails, the failure is
logged and counted and the rest of the system keeps running without
automatic cleanup (the in-process Reaper can be deployed instead).
"""

import logging
from datetime import timedelta

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from jobqueue.config import Settings
from jobqueue.constants import JOBS_TABLE, JobStatus
from jobqueue.db.connection import Database
from jobqueue.observability.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)

_EXTENSION_AVAILABLE = text(
    "SELECT 1 FROM pg_available_extensions WHERE name = 'pg_cron'"
)
_CREATE_EXTENSION = text("CREATE EXTENSION IF NOT EXISTS pg_cron")
_UNSCHEDULE_BY_NAME = text(
    "SELECT cron.unschedule(jobid) FROM cron.job WHERE jobname = :name"
)
_SCHEDULE = text("SELECT cron.schedule(:name, :schedule, :command)")
_CRON_INSTALLED = text("SELECT 1 FROM pg_extension WHERE extname = 'pg_cron'")


def retention_delete_command(retention: timedelta) -> str:
    """
    SQL the scheduler runs on every tick.

    The interval is rendered from the parsed timedelta, never from raw
    configuration text.
    """
    seconds = int(retention.total_seconds())
    return (
        f"DELETE FROM {JOBS_TABLE} "
        f"WHERE status = '{JobStatus.SUCCEEDED.value}' "
        f"AND created_at < now() - interval '{seconds} seconds'"
    )


async def register_retention_schedule(
    database: Database,
    settings: Settings,
    metrics: MetricsCollector | None = None,
) -> bool:
    """
    Register (or replace) the retention schedule.

    Any prior schedule with the same name is removed first so re-running
    never leaves two schedules behind. When the reaper is disabled the
    existing schedule is removed instead.

    Args:
        database: Store handle.
        settings: Application settings.
        metrics: Metrics collector. Defaults to the process-wide collector.

    Returns:
        True if the schedule is registered, False otherwise. Never raises
        for database errors.
    """
    metrics = metrics or get_metrics()

    if not settings.reaper_enabled:
        await unregister_retention_schedule(database, settings.reaper_job_name)
        logger.info("Retention schedule disabled")
        return False

    command = retention_delete_command(settings.retention)
    try:
        async with database.engine.begin() as conn:
            available = await conn.execute(_EXTENSION_AVAILABLE)
            if available.first() is None:
                logger.warning(
                    "pg_cron is not available; scheduled retention cleanup disabled",
                    extra={"job_name": settings.reaper_job_name},
                )
                metrics.record_schedule_failure()
                return False

            await conn.execute(_CREATE_EXTENSION)
            await conn.execute(_UNSCHEDULE_BY_NAME, {"name": settings.reaper_job_name})
            await conn.execute(
                _SCHEDULE,
                {
                    "name": settings.reaper_job_name,
                    "schedule": settings.reaper_schedule,
                    "command": command,
                },
            )
    except (SQLAlchemyError, OSError) as e:
        logger.warning(
            "Failed to register retention schedule; scheduled retention cleanup disabled",
            extra={"job_name": settings.reaper_job_name, "error": str(e)},
        )
        metrics.record_schedule_failure()
        return False

    logger.info(
        "Registered retention schedule",
        extra={
            "job_name": settings.reaper_job_name,
            "schedule": settings.reaper_schedule,
            "retention": settings.reaper_retention,
        },
    )
    return True


async def unregister_retention_schedule(database: Database, job_name: str) -> int:
    """
    Remove every pg_cron job named ``job_name``.

    Args:
        database: Store handle.
        job_name: Schedule name.

    Returns:
        Number of schedules removed (0 when pg_cron is not installed or on error).
    """
    try:
        async with database.engine.begin() as conn:
            installed = await conn.execute(_CRON_INSTALLED)
            if installed.first() is None:
                return 0
            result = await conn.execute(_UNSCHEDULE_BY_NAME, {"name": job_name})
            removed = len(result.all())
    except (SQLAlchemyError, OSError) as e:
        logger.warning(
            "Failed to remove retention schedule",
            extra={"job_name": job_name, "error": str(e)},
        )
        return 0

    if removed:
        logger.info("Removed retention schedule", extra={"job_name": job_name, "count": removed})
    return removed
