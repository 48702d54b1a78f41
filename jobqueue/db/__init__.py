"""
Database module.
Contains the store handle, models, schema DDL, and repository.
"""

from jobqueue.db.connection import Database, create_engine, get_test_engine
from jobqueue.db.models import Base, Job
from jobqueue.db.repository import JobRepository

__all__ = [
    "Database",
    "create_engine",
    "get_test_engine",
    "Base",
    "Job",
    "JobRepository",
]
