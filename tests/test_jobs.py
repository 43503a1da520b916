"""Tests for the job model."""

from __future__ import annotations

import pytest

from lane_dispatch.errors import InvalidTransitionError
from lane_dispatch.jobs import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    JobRecord,
    JobStatus,
)


class TestJobStatus:
    """Test status classification."""

    def test_terminal_statuses(self):
        """completed, failed and timed_out are terminal."""
        assert TERMINAL_STATUSES == {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMED_OUT}
        assert JobStatus.TIMED_OUT.is_terminal
        assert not JobStatus.RUNNING.is_terminal

    def test_active_statuses(self):
        """pending and running are active."""
        assert ACTIVE_STATUSES == {JobStatus.PENDING, JobStatus.RUNNING}
        assert JobStatus.PENDING.is_active
        assert not JobStatus.FAILED.is_active

    def test_values_are_strings(self):
        """Status values serialize as plain strings."""
        assert JobStatus.TIMED_OUT.value == "timed_out"
        assert JobStatus("running") is JobStatus.RUNNING


class TestJobRecord:
    """Test JobRecord lifecycle."""

    def test_defaults(self):
        """A new record is pending with a fresh id and creation time."""
        job = JobRecord(payload={"a": 1})

        assert job.status == JobStatus.PENDING
        assert job.job_id
        assert job.created_at > 0
        assert job.started_at is None
        assert job.completed_at is None
        assert job.error is None

    def test_ids_are_unique(self):
        """Every record gets its own id."""
        ids = {JobRecord().job_id for _ in range(100)}
        assert len(ids) == 100

    def test_transition_to_running_sets_started_at(self):
        """Admission stamps started_at."""
        job = JobRecord()
        job.transition_to(JobStatus.RUNNING)

        assert job.status == JobStatus.RUNNING
        assert job.started_at is not None
        assert job.completed_at is None

    def test_transition_to_failed_records_error(self):
        """Failure stamps completed_at and keeps the error."""
        job = JobRecord()
        job.transition_to(JobStatus.RUNNING)
        job.transition_to(JobStatus.FAILED, error="boom")

        assert job.status == JobStatus.FAILED
        assert job.error == "boom"
        assert job.completed_at >= job.started_at

    def test_completed_ignores_error(self):
        """Only failures carry an error."""
        job = JobRecord()
        job.transition_to(JobStatus.RUNNING)
        job.transition_to(JobStatus.COMPLETED, error="ignored")

        assert job.error is None

    def test_pending_cannot_finish(self):
        """A pending job cannot jump to a terminal state."""
        job = JobRecord()
        with pytest.raises(InvalidTransitionError):
            job.transition_to(JobStatus.COMPLETED)

    def test_terminal_is_absorbing(self):
        """No transition leaves a terminal state."""
        job = JobRecord()
        job.transition_to(JobStatus.RUNNING)
        job.transition_to(JobStatus.TIMED_OUT)

        for status in JobStatus:
            assert not job.can_transition_to(status)
        with pytest.raises(InvalidTransitionError):
            job.transition_to(JobStatus.RUNNING)

    def test_reset_for_recovery(self):
        """Running records go back to pending and keep started_at."""
        job = JobRecord()
        job.transition_to(JobStatus.RUNNING)
        started = job.started_at

        assert job.reset_for_recovery() is True
        assert job.status == JobStatus.PENDING
        assert job.started_at == started

    def test_reset_for_recovery_ignores_pending(self):
        """Pending records are left alone."""
        job = JobRecord()
        assert job.reset_for_recovery() is False
        assert job.status == JobStatus.PENDING

    def test_snapshot_is_detached(self):
        """Mutating the original does not change a snapshot."""
        job = JobRecord(payload="p")
        snap = job.snapshot()
        job.transition_to(JobStatus.RUNNING)

        assert snap.status == JobStatus.PENDING
        assert snap.job_id == job.job_id

    def test_dict_round_trip(self):
        """to_dict/from_dict preserve every field."""
        job = JobRecord(payload={"x": [1, 2]}, lane_index=3, timeout_ms=500)
        job.transition_to(JobStatus.RUNNING)
        job.transition_to(JobStatus.FAILED, error="bad")

        data = job.to_dict()
        assert data["status"] == "failed"

        restored = JobRecord.from_dict(data)
        assert restored == job
