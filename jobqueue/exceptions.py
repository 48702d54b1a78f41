"""
Exception taxonomy for the job queue.

Each class maps to one outcome a caller must handle differently:
rejected input, a clean miss, a lost race, or a storage fault.
"""

from typing import Any

from jobqueue.constants import JobStatus


class JobQueueError(Exception):
    """Base exception for the job queue."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(JobQueueError):
    """Raised when input is rejected before any write."""


class InvalidTransitionError(ValidationError):
    """Raised when a status change is not an edge of the state graph."""

    def __init__(self, from_status: JobStatus, to_status: JobStatus, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        message = reason or f"Transition {from_status} -> {to_status} is not permitted"
        super().__init__(
            message,
            {"from_status": str(from_status), "to_status": str(to_status)},
        )


class RetryExhaustedError(InvalidTransitionError):
    """Raised when a failed job has no retry attempts left."""

    def __init__(self, job_id: int, attempts: int, max_attempts: int):
        self.job_id = job_id
        self.attempts = attempts
        self.max_attempts = max_attempts
        super().__init__(
            JobStatus.FAILED,
            JobStatus.PENDING,
            f"Job {job_id} used {attempts} of {max_attempts} attempts",
        )


class NotFoundError(JobQueueError):
    """Raised when a job identity does not exist."""

    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found", {"job_id": job_id})


class ConflictError(JobQueueError):
    """
    Raised when a conditional status update finds a different status.

    This is the expected outcome when another consumer got there first;
    callers should re-scan for eligible work instead of retrying the row.
    """

    def __init__(
        self,
        job_id: int,
        expected: JobStatus,
        actual: JobStatus,
        *,
        expected_attempts: int | None = None,
        actual_attempts: int | None = None,
    ):
        self.job_id = job_id
        self.expected = expected
        self.actual = actual
        self.expected_attempts = expected_attempts
        self.actual_attempts = actual_attempts
        details: dict[str, Any] = {"job_id": job_id, "expected": str(expected), "actual": str(actual)}
        if expected_attempts is not None:
            details["expected_attempts"] = expected_attempts
            details["actual_attempts"] = actual_attempts
        if actual == expected and expected_attempts is not None:
            message = (
                f"Job {job_id} is on attempt {actual_attempts}, "
                f"expected attempt {expected_attempts}"
            )
        else:
            message = f"Job {job_id} is {actual}, expected {expected}"
        super().__init__(message, details)


class StorageError(JobQueueError):
    """Raised when the database fails (connection loss, constraint, transaction)."""

    def __init__(self, operation: str, message: str = "Database error"):
        self.operation = operation
        super().__init__(message, {"operation": operation})
