"""
Idempotent DDL for the jobs schema.

Every statement is safe to re-run: the enum type is created only if
missing (and gains any missing labels), the table and indexes use
IF NOT EXISTS, functions use CREATE OR REPLACE, and triggers are
dropped and recreated inside the same transaction.
"""

from jobqueue.constants import (
    DEFAULT_NOTIFY_CHANNEL,
    JOB_STATUS_TYPE,
    JOBS_TABLE,
    JobStatus,
)

_STATUS_LABELS = ", ".join(f"'{status.value}'" for status in JobStatus)

CREATE_STATUS_TYPE = f"""
DO $$ BEGIN
    CREATE TYPE {JOB_STATUS_TYPE} AS ENUM ({_STATUS_LABELS});
EXCEPTION
    WHEN duplicate_object THEN null;
END $$;
"""

# Older deployments created the type without QUEUED
ADD_STATUS_LABELS = [
    f"ALTER TYPE {JOB_STATUS_TYPE} ADD VALUE IF NOT EXISTS '{status.value}'"
    for status in JobStatus
]

CREATE_JOBS_TABLE = f"""
CREATE TABLE IF NOT EXISTS {JOBS_TABLE} (
    id          INTEGER GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
    description TEXT NOT NULL,
    status      {JOB_STATUS_TYPE} NOT NULL DEFAULT '{JobStatus.PENDING.value}',
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    enqueued_at TIMESTAMPTZ,
    started_at  TIMESTAMPTZ,
    attempts    INTEGER NOT NULL DEFAULT 0,
    last_error  TEXT,
    CONSTRAINT ck_jobs_description_not_empty CHECK (length(btrim(description)) > 0),
    CONSTRAINT ck_jobs_attempts_non_negative CHECK (attempts >= 0),
    CONSTRAINT ck_jobs_updated_after_created CHECK (updated_at >= created_at)
)
"""

CREATE_INDEXES = [
    f"""
    CREATE INDEX IF NOT EXISTS ix_jobs_eligible
    ON {JOBS_TABLE} (id)
    WHERE status = 'PENDING'
    """,
    f"""
    CREATE INDEX IF NOT EXISTS ix_jobs_succeeded_created_at
    ON {JOBS_TABLE} (created_at)
    WHERE status = 'SUCCEEDED'
    """,
    f"""
    CREATE INDEX IF NOT EXISTS ix_jobs_running_updated_at
    ON {JOBS_TABLE} (updated_at)
    WHERE status = 'RUNNING'
    """,
]

# Phase timestamps keep their first value; updated_at follows status changes.
CREATE_GUARD_FUNCTION = """
CREATE OR REPLACE FUNCTION jobs_guard_update() RETURNS trigger
LANGUAGE plpgsql AS $$
BEGIN
    NEW.enqueued_at := COALESCE(OLD.enqueued_at, NEW.enqueued_at);
    NEW.started_at := COALESCE(OLD.started_at, NEW.started_at);
    IF NEW.status IS DISTINCT FROM OLD.status THEN
        NEW.updated_at := GREATEST(now(), NEW.created_at);
    END IF;
    RETURN NEW;
END;
$$
"""

# The channel name arrives as the first trigger argument; the payload is empty.
CREATE_NOTIFY_FUNCTION = """
CREATE OR REPLACE FUNCTION jobs_notify_available() RETURNS trigger
LANGUAGE plpgsql AS $$
BEGIN
    PERFORM pg_notify(TG_ARGV[0], '');
    RETURN NULL;
END;
$$
"""

TRIGGER_NAMES = ("jobs_guard_update", "jobs_notify_insert", "jobs_notify_retry")


def trigger_statements(channel: str = DEFAULT_NOTIFY_CHANNEL) -> list[str]:
    """
    Drop and recreate the jobs triggers.

    Args:
        channel: Wake channel name (validated by Settings).

    Returns:
        Ordered DDL statements.
    """
    statements = [
        f"DROP TRIGGER IF EXISTS {name} ON {JOBS_TABLE}" for name in TRIGGER_NAMES
    ]
    statements += [
        f"""
        CREATE TRIGGER jobs_guard_update
        BEFORE UPDATE ON {JOBS_TABLE}
        FOR EACH ROW
        EXECUTE FUNCTION jobs_guard_update()
        """,
        f"""
        CREATE TRIGGER jobs_notify_insert
        AFTER INSERT ON {JOBS_TABLE}
        FOR EACH ROW
        WHEN (NEW.status = 'PENDING')
        EXECUTE FUNCTION jobs_notify_available('{channel}')
        """,
        f"""
        CREATE TRIGGER jobs_notify_retry
        AFTER UPDATE OF status ON {JOBS_TABLE}
        FOR EACH ROW
        WHEN (NEW.status = 'PENDING' AND OLD.status IS DISTINCT FROM NEW.status)
        EXECUTE FUNCTION jobs_notify_available('{channel}')
        """,
    ]
    return statements


def schema_statements(channel: str = DEFAULT_NOTIFY_CHANNEL) -> list[str]:
    """All DDL needed to bring a database up to the current schema."""
    return [
        CREATE_STATUS_TYPE,
        *ADD_STATUS_LABELS,
        CREATE_JOBS_TABLE,
        *CREATE_INDEXES,
        CREATE_GUARD_FUNCTION,
        CREATE_NOTIFY_FUNCTION,
        *trigger_statements(channel),
    ]


def drop_statements() -> list[str]:
    """DDL that removes everything schema_statements creates."""
    return [
        f"DROP TABLE IF EXISTS {JOBS_TABLE}",
        "DROP FUNCTION IF EXISTS jobs_notify_available()",
        "DROP FUNCTION IF EXISTS jobs_guard_update()",
        f"DROP TYPE IF EXISTS {JOB_STATUS_TYPE}",
    ]
