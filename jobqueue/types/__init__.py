"""
Type definitions for the job queue API.
"""

from jobqueue.types.api import (
    CreateJobRequest,
    CreateJobResponse,
    ErrorResponse,
    HealthResponse,
    JobResponse,
)

__all__ = [
    "CreateJobRequest",
    "CreateJobResponse",
    "JobResponse",
    "HealthResponse",
    "ErrorResponse",
]
