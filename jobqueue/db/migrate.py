"""
Schema migration entry point.

Creates (or brings up to date) the status type, the jobs table, its
indexes and the guard/notify triggers, then registers the retention
schedule. Safe to run any number of times and from several processes at
once: every statement is idempotent and the whole run is serialized by a
transaction-scoped advisory lock.
"""

import asyncio
import logging
import sys

from sqlalchemy import text

from jobqueue.config import Settings, get_settings
from jobqueue.constants import DEFAULT_NOTIFY_CHANNEL
from jobqueue.db.connection import Database
from jobqueue.db.schema import schema_statements
from jobqueue.observability.logging import setup_logging

logger = logging.getLogger(__name__)

# Arbitrary constant shared by every migrating process
MIGRATION_LOCK_KEY = 7_340_211


async def run_migrations(database: Database, channel: str = DEFAULT_NOTIFY_CHANNEL) -> None:
    """
    Apply the schema in one transaction.

    Args:
        database: Store handle.
        channel: Notification channel baked into the notify triggers.
    """
    async with database.engine.begin() as conn:
        await conn.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": MIGRATION_LOCK_KEY},
        )
        for statement in schema_statements(channel):
            await conn.execute(text(statement))

    logger.info("Schema is up to date", extra={"channel": channel})


async def run_async(settings: Settings | None = None) -> None:
    """Wait for the database, migrate, then register the retention schedule."""
    # Imported here so the reaper package can depend on db without a cycle
    from jobqueue.reaper.schedule import register_retention_schedule

    settings = settings or get_settings()
    setup_logging(settings)

    database = Database.from_settings(settings)
    try:
        await database.wait_until_ready(
            settings.database_connect_attempts,
            settings.database_connect_retry_seconds,
        )
        await run_migrations(database, settings.notify_channel)
        await register_retention_schedule(database, settings)
    finally:
        await database.dispose()


def run() -> None:
    """Run migrations; exit non-zero on failure."""
    try:
        asyncio.run(run_async())
    except Exception:
        logger.exception("Migration failed")
        sys.exit(1)


if __name__ == "__main__":
    run()
