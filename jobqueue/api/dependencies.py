"""
Request dependencies.

The store handle and service live on ``app.state``; routes receive them
through FastAPI dependencies so tests can install fakes.
"""

from typing import Annotated

from fastapi import Depends, Request

from jobqueue.db.connection import Database
from jobqueue.service import JobService


def get_database(request: Request) -> Database:
    """Return the store handle created at startup."""
    return request.app.state.database


def get_job_service(request: Request) -> JobService:
    """Return the job service created at startup."""
    return request.app.state.service


DatabaseDep = Annotated[Database, Depends(get_database)]
JobServiceDep = Annotated[JobService, Depends(get_job_service)]
