"""
Job status state machine.

The edge graph is the single source of truth for which status changes the
store accepts. QUEUED is an optional acknowledgement step; FAILED re-enters
PENDING only while the job has retry attempts left.
"""

from jobqueue.constants import JobStatus
from jobqueue.exceptions import InvalidTransitionError

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.QUEUED, JobStatus.RUNNING}),
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED}),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
}

# Phase timestamps stamped once, on first entry to the status
PHASE_TIMESTAMPS: dict[JobStatus, str] = {
    JobStatus.QUEUED: "enqueued_at",
    JobStatus.RUNNING: "started_at",
}

INITIAL_STATUS = JobStatus.PENDING


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    """Check whether ``from_status -> to_status`` is an edge."""
    return to_status in TRANSITIONS.get(from_status, frozenset())


def validate_transition(from_status: JobStatus, to_status: JobStatus) -> None:
    """
    Validate a status change against the edge graph.

    Raises:
        InvalidTransitionError: If the edge does not exist.
    """
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)


def is_retry(from_status: JobStatus, to_status: JobStatus) -> bool:
    """Check whether the change is the retry edge."""
    return from_status == JobStatus.FAILED and to_status == JobStatus.PENDING


def is_terminal(status: JobStatus, attempts: int, max_attempts: int) -> bool:
    """
    Check whether a job accepts no further transitions.

    Args:
        status: Current job status.
        attempts: Processing attempts recorded so far.
        max_attempts: Retry budget.

    Returns:
        True for SUCCEEDED, and for FAILED once the budget is spent.
    """
    if status == JobStatus.SUCCEEDED:
        return True
    if status == JobStatus.FAILED:
        return attempts >= max_attempts
    return False


def phase_timestamp(status: JobStatus) -> str | None:
    """Column stamped on entry to ``status``, if any."""
    return PHASE_TIMESTAMPS.get(status)
