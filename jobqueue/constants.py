"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> QUEUED (consumer acknowledged intent)
    - PENDING -> RUNNING (direct claim)
    - QUEUED -> RUNNING (claim)
    - RUNNING -> SUCCEEDED (success)
    - RUNNING -> FAILED (error or timeout)
    - FAILED -> PENDING (retry, while attempts remain)
    """

    PENDING = "PENDING"
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# Statuses a consumer may claim from
CLAIMABLE_STATUSES: tuple[JobStatus, ...] = (JobStatus.PENDING, JobStatus.QUEUED)

# Database object names
JOBS_TABLE = "jobs"
JOB_STATUS_TYPE = "job_status"
DEFAULT_NOTIFY_CHANNEL = "jobs_available"

# Range of the INTEGER identity column
MIN_JOB_ID = 1
MAX_JOB_ID = 2**31 - 1

# Retry budget used when none is configured
DEFAULT_MAX_ATTEMPTS = 3

# Error text recorded by the stuck-job sweep
STUCK_JOB_ERROR = "execution timed out"

# API constants
API_PREFIX = "/api"
NO_STORE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}

# Metrics names
METRIC_JOBS_CREATED = "jobs_created_total"
METRIC_JOBS_BY_STATUS = "jobs_by_status"
METRIC_STATUS_TRANSITIONS = "job_status_transitions_total"
METRIC_CLAIM_CONFLICTS = "job_claim_conflicts_total"
METRIC_JOBS_CLAIMED = "jobs_claimed_total"
METRIC_STORAGE_ERRORS = "jobs_storage_errors_total"
METRIC_JOBS_REAPED = "jobs_reaped_total"
METRIC_SCHEDULE_FAILURES = "reaper_schedule_failures_total"
METRIC_WAKE_SIGNALS = "worker_wake_signals_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_API_REQUESTS = "http_requests_total"
METRIC_API_LATENCY = "http_request_duration_seconds"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_ADVANCE_JOB = "advance_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_REAP_JOBS = "reap_jobs"
