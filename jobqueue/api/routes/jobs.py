"""
Job routes: enqueue and status query.
"""

import logging

from fastapi import APIRouter, Response, status

from jobqueue.api.dependencies import JobServiceDep
from jobqueue.constants import API_PREFIX, NO_STORE_HEADERS
from jobqueue.types.api import (
    CreateJobRequest,
    CreateJobResponse,
    ErrorResponse,
    JobResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_PREFIX}/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=CreateJobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a job",
    description="Create a job in PENDING. Consumers are woken once it commits.",
    responses={
        400: {"model": ErrorResponse, "description": "Description missing or blank"},
        500: {"model": ErrorResponse, "description": "Database error"},
    },
)
async def create_job(
    request: CreateJobRequest,
    service: JobServiceDep,
) -> CreateJobResponse:
    """
    Create a new job.

    Args:
        request: Job creation request.
        service: Job service.

    Returns:
        CreateJobResponse with the new id and status.
    """
    job = await service.enqueue(request.description)
    return CreateJobResponse.model_validate(job)


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Read the committed state of a job. Responses are never cached.",
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
        500: {"model": ErrorResponse, "description": "Database error"},
    },
)
async def get_job(
    job_id: int,
    response: Response,
    service: JobServiceDep,
) -> JobResponse:
    """
    Get job details by id.

    Args:
        job_id: The job id.
        response: Outgoing response, used to set cache headers.
        service: Job service.

    Returns:
        JobResponse with full job details.
    """
    response.headers.update(NO_STORE_HEADERS)
    job = await service.get_job(job_id)
    return JobResponse.model_validate(job)
