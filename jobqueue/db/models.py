"""
SQLAlchemy database models.
Defines the Job table.
"""

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Identity,
    Index,
    Integer,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ENUM
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.constants import JOB_STATUS_TYPE, JOBS_TABLE, JobStatus


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of requested work.

    This is the authoritative source of truth for job state.
    All lifecycle transitions are conditional updates on this table.

    Key constraints:
    - id is an identity column, strictly increasing and never reused
    - description is non-empty and never rewritten
    - updated_at never precedes created_at
    - enqueued_at / started_at are stamped once (see the guard trigger in schema.py)
    """

    __tablename__ = JOBS_TABLE

    id: Mapped[int] = mapped_column(
        Integer,
        Identity(always=True),
        primary_key=True,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    status: Mapped[JobStatus] = mapped_column(
        ENUM(
            JobStatus,
            name=JOB_STATUS_TYPE,
            create_type=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobStatus.PENDING,
        server_default=JobStatus.PENDING.value,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    enqueued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint("length(btrim(description)) > 0", name="ck_jobs_description_not_empty"),
        CheckConstraint("attempts >= 0", name="ck_jobs_attempts_non_negative"),
        CheckConstraint("updated_at >= created_at", name="ck_jobs_updated_after_created"),
        # Claim and reconcile scans
        Index(
            "ix_jobs_eligible",
            "id",
            postgresql_where=text("status = 'PENDING'"),
        ),
        # Retention sweep
        Index(
            "ix_jobs_succeeded_created_at",
            "created_at",
            postgresql_where=text("status = 'SUCCEEDED'"),
        ),
        # Stuck-job sweep
        Index(
            "ix_jobs_running_updated_at",
            "updated_at",
            postgresql_where=text("status = 'RUNNING'"),
        ),
    )

    def __repr__(self) -> str:
        return f"Job(id={self.id}, status={self.status}, attempts={self.attempts})"
