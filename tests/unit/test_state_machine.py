"""
Unit tests for the job status state machine.
"""

import pytest

from jobqueue.constants import JobStatus
from jobqueue.exceptions import InvalidTransitionError, ValidationError
from jobqueue.state_machine import (
    INITIAL_STATUS,
    TRANSITIONS,
    can_transition,
    is_retry,
    is_terminal,
    phase_timestamp,
    validate_transition,
)


class TestTransitions:
    """Tests for the edge graph."""

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (JobStatus.PENDING, JobStatus.QUEUED),
            (JobStatus.PENDING, JobStatus.RUNNING),
            (JobStatus.QUEUED, JobStatus.RUNNING),
            (JobStatus.RUNNING, JobStatus.SUCCEEDED),
            (JobStatus.RUNNING, JobStatus.FAILED),
            (JobStatus.FAILED, JobStatus.PENDING),
        ],
    )
    def test_allowed_edges(self, from_status: JobStatus, to_status: JobStatus):
        assert can_transition(from_status, to_status)
        validate_transition(from_status, to_status)

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (JobStatus.PENDING, JobStatus.SUCCEEDED),
            (JobStatus.PENDING, JobStatus.FAILED),
            (JobStatus.QUEUED, JobStatus.PENDING),
            (JobStatus.RUNNING, JobStatus.PENDING),
            (JobStatus.RUNNING, JobStatus.QUEUED),
            (JobStatus.SUCCEEDED, JobStatus.PENDING),
            (JobStatus.SUCCEEDED, JobStatus.FAILED),
            (JobStatus.FAILED, JobStatus.RUNNING),
        ],
    )
    def test_rejected_edges(self, from_status: JobStatus, to_status: JobStatus):
        assert not can_transition(from_status, to_status)
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(from_status, to_status)

        assert exc_info.value.from_status == from_status
        assert exc_info.value.to_status == to_status

    def test_self_transitions_are_not_edges(self):
        for status in JobStatus:
            assert not can_transition(status, status)

    def test_succeeded_has_no_outgoing_edges(self):
        assert TRANSITIONS[JobStatus.SUCCEEDED] == frozenset()

    def test_invalid_transition_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            validate_transition(JobStatus.SUCCEEDED, JobStatus.RUNNING)

    def test_initial_status_is_pending(self):
        assert INITIAL_STATUS == JobStatus.PENDING


class TestRetryAndTerminal:
    """Tests for retry detection and terminal states."""

    def test_only_failed_to_pending_is_retry(self):
        assert is_retry(JobStatus.FAILED, JobStatus.PENDING)
        assert not is_retry(JobStatus.PENDING, JobStatus.QUEUED)
        assert not is_retry(JobStatus.RUNNING, JobStatus.FAILED)

    def test_succeeded_is_terminal(self):
        assert is_terminal(JobStatus.SUCCEEDED, attempts=1, max_attempts=3)

    def test_failed_is_terminal_only_when_budget_spent(self):
        assert not is_terminal(JobStatus.FAILED, attempts=1, max_attempts=3)
        assert is_terminal(JobStatus.FAILED, attempts=3, max_attempts=3)

    @pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.QUEUED, JobStatus.RUNNING])
    def test_active_statuses_are_not_terminal(self, status: JobStatus):
        assert not is_terminal(status, attempts=99, max_attempts=1)


class TestPhaseTimestamps:
    """Tests for the phase timestamp mapping."""

    def test_phase_columns(self):
        assert phase_timestamp(JobStatus.QUEUED) == "enqueued_at"
        assert phase_timestamp(JobStatus.RUNNING) == "started_at"
        assert phase_timestamp(JobStatus.SUCCEEDED) is None
        assert phase_timestamp(JobStatus.PENDING) is None
