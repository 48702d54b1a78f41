"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobqueue.constants import JobStatus


class CreateJobRequest(BaseModel):
    """Request body for creating a new job."""

    # Accept any JSON value; the service decides what a valid description is
    description: Any = Field(default=None, description="Text describing the work")


class CreateJobResponse(BaseModel):
    """Response body after creating a job."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    status: JobStatus


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    enqueued_at: datetime | None
    started_at: datetime | None
    attempts: int
    last_error: str | None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
