"""Tests for a single lane: admission, finalization, timeouts and state."""

from __future__ import annotations

import pytest

from _testkit import EventRecorder, make_job, settle
from lane_dispatch.errors import (
    InvalidConcurrencyError,
    InvalidTimeoutError,
    InvalidTransitionError,
    LaneShutdownError,
)
from lane_dispatch.events import DispatchEventType
from lane_dispatch.jobs import JobStatus
from lane_dispatch.lanes import DEFAULT_TIMEOUT_MS, Lane

E = DispatchEventType


class TestConstruction:
    """Test lane construction and validation."""

    def test_defaults(self):
        """A lane defaults to one slot and a 30s timeout."""
        lane = Lane()

        assert lane.concurrency == 1
        assert lane.default_timeout_ms == DEFAULT_TIMEOUT_MS == 30_000
        assert lane.is_active
        assert lane.name == "lane-0"

    @pytest.mark.parametrize("value", [0, -1, True, 1.5, "2"])
    def test_invalid_concurrency(self, value):
        """Concurrency must be a positive integer."""
        with pytest.raises(InvalidConcurrencyError):
            Lane(concurrency=value)

    @pytest.mark.parametrize("value", [0, -10])
    def test_invalid_default_timeout(self, value):
        """Default timeout must be positive."""
        with pytest.raises(InvalidTimeoutError):
            Lane(default_timeout_ms=value)


class TestAdmission:
    """Test FIFO admission under the concurrency cap."""

    @pytest.mark.asyncio
    async def test_submit_admits_when_slot_free(self, recorder: EventRecorder):
        """A job submitted to an idle lane starts before submit returns."""
        lane = Lane(on_event=recorder)
        job_id = lane.submit({"a": 1})

        assert lane.running_count == 1
        assert lane.get(job_id).status == JobStatus.RUNNING
        assert recorder.for_job(job_id) == [E.JOB_QUEUED, E.JOB_STARTED]
        lane.close()

    @pytest.mark.asyncio
    async def test_cap_is_respected(self):
        """Never more than `concurrency` jobs run at once."""
        lane = Lane(concurrency=2)
        for i in range(5):
            lane.submit(i)

        assert lane.running_count == 2
        assert lane.pending_count == 3
        assert lane.load == 5
        lane.close()

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        """Pending jobs are admitted in submission order."""
        lane = Lane(concurrency=1)
        a = lane.submit("A")
        b = lane.submit("B")
        c = lane.submit("C")

        assert [j.job_id for j in lane.pending_snapshot()] == [b, c]

        lane.complete(a)
        assert [j.job_id for j in lane.running_snapshot()] == [b]
        assert [j.job_id for j in lane.pending_snapshot()] == [c]
        lane.close()

    @pytest.mark.asyncio
    async def test_default_timeout_applied(self):
        """Jobs without a timeout get the lane default."""
        lane = Lane(default_timeout_ms=1234)
        job_id = lane.submit("x")
        other = lane.submit("y", timeout_ms=99)

        assert lane.get(job_id).timeout_ms == 1234
        assert lane.get(other).timeout_ms == 99
        lane.close()

    @pytest.mark.asyncio
    async def test_invalid_submit_timeout(self):
        """A non-positive per-job timeout is rejected."""
        lane = Lane()
        with pytest.raises(InvalidTimeoutError):
            lane.submit("x", timeout_ms=0)
        assert lane.load == 0

    @pytest.mark.asyncio
    async def test_lane_index_stamped(self):
        """Jobs record the index of the lane holding them."""
        lane = Lane(index=3)
        job_id = lane.submit("x")

        assert lane.get(job_id).lane_index == 3
        lane.close()

    @pytest.mark.asyncio
    async def test_reentrant_sink(self):
        """A sink that finishes jobs from inside admission keeps the lane consistent."""
        lane: Lane

        def finish_on_start(event_type, job, data):
            if event_type == E.JOB_STARTED:
                lane.complete(job.job_id)

        lane = Lane(concurrency=1, on_event=finish_on_start)
        lane.submit("A")
        lane.submit("B")

        assert lane.running_count == 0
        assert lane.pending_count == 0

    @pytest.mark.asyncio
    async def test_sink_errors_are_contained(self):
        """A failing sink does not break admission."""
        def broken(event_type, job, data):
            raise RuntimeError("observer bug")

        lane = Lane(concurrency=1, on_event=broken)
        job_id = lane.submit("x")

        assert lane.get(job_id).status == JobStatus.RUNNING
        lane.close()


class TestFinalization:
    """Test completion, failure and timeout."""

    @pytest.mark.asyncio
    async def test_complete(self, recorder: EventRecorder):
        """complete() finishes a running job and frees its slot."""
        lane = Lane(on_event=recorder)
        job_id = lane.submit("x")

        assert lane.complete(job_id) is True
        assert lane.running_count == 0
        assert lane.get(job_id) is None

        _, job, _ = recorder.calls[-1]
        assert recorder.types()[-1] == E.JOB_COMPLETED
        assert job.status == JobStatus.COMPLETED
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_fail_records_error(self, recorder: EventRecorder):
        """fail() stores the error message."""
        lane = Lane(on_event=recorder)
        job_id = lane.submit("x")

        assert lane.fail(job_id, ValueError("bad input")) is True
        _, job, _ = recorder.calls[-1]
        assert job.status == JobStatus.FAILED
        assert job.error == "bad input"

    @pytest.mark.asyncio
    async def test_unknown_or_pending_ids_are_ignored(self, recorder: EventRecorder):
        """Signals for jobs that are not running are no-ops."""
        lane = Lane(concurrency=1, on_event=recorder)
        lane.submit("A")
        pending = lane.submit("B")
        before = len(recorder.calls)

        assert lane.complete("missing") is False
        assert lane.fail(pending, "x") is False
        assert len(recorder.calls) == before
        assert lane.get(pending).status == JobStatus.PENDING
        lane.close()

    @pytest.mark.asyncio
    async def test_second_signal_is_ignored(self):
        """A finished job cannot be finished again."""
        lane = Lane()
        job_id = lane.submit("x")
        lane.complete(job_id)

        assert lane.fail(job_id, "late") is False

    @pytest.mark.asyncio
    async def test_timeout(self, recorder: EventRecorder):
        """A job with no signal before its timeout ends timed_out and frees its slot."""
        lane = Lane(concurrency=1, on_event=recorder)
        first = lane.submit("A", timeout_ms=20)
        second = lane.submit("B", timeout_ms=5_000)

        await settle(0.08)

        assert recorder.for_job(first)[-1] == E.JOB_TIMED_OUT
        assert lane.get(second).status == JobStatus.RUNNING
        timed_out = [job for t, job, _ in recorder.calls if t == E.JOB_TIMED_OUT][0]
        assert timed_out.status == JobStatus.TIMED_OUT
        assert timed_out.error is None
        lane.close()

    @pytest.mark.asyncio
    async def test_complete_disarms_timer(self, recorder: EventRecorder):
        """Completing before the timeout prevents a timed_out transition."""
        lane = Lane(on_event=recorder)
        job_id = lane.submit("x", timeout_ms=20)
        lane.complete(job_id)

        await settle(0.06)

        assert E.JOB_TIMED_OUT not in recorder.types()


class TestLaneState:
    """Test pause, resume and shutdown."""

    @pytest.mark.asyncio
    async def test_pause_holds_pending(self, recorder: EventRecorder):
        """A paused lane queues but does not admit."""
        lane = Lane(on_event=recorder)
        lane.pause()
        job_id = lane.submit("x")

        assert lane.get(job_id).status == JobStatus.PENDING
        assert not lane.is_active

        lane.resume()
        assert lane.get(job_id).status == JobStatus.RUNNING
        assert E.LANE_PAUSED in recorder.types()
        assert E.LANE_RESUMED in recorder.types()
        lane.close()

    @pytest.mark.asyncio
    async def test_pause_keeps_running_jobs(self):
        """Running jobs still finish while paused, without promoting others."""
        lane = Lane(concurrency=1)
        a = lane.submit("A")
        b = lane.submit("B")
        lane.pause()

        assert lane.complete(a) is True
        assert lane.get(b).status == JobStatus.PENDING
        lane.close()

    @pytest.mark.asyncio
    async def test_shutdown_rejects_submissions(self, recorder: EventRecorder):
        """Submitting after shutdown raises."""
        lane = Lane(on_event=recorder)
        lane.shutdown()

        with pytest.raises(LaneShutdownError):
            lane.submit("x")
        assert recorder.types() == [E.LANE_SHUTDOWN]

    @pytest.mark.asyncio
    async def test_resume_after_shutdown_is_noop(self):
        """Shutdown is permanent."""
        lane = Lane(concurrency=1)
        lane.submit("A")
        pending = lane.submit("B")
        lane.shutdown()
        lane.resume()

        assert lane.is_shutdown
        assert not lane.is_active
        assert lane.get(pending).status == JobStatus.PENDING
        lane.close()

    @pytest.mark.asyncio
    async def test_running_jobs_finish_after_shutdown(self):
        """Shutdown stops admission but not finalization."""
        lane = Lane(concurrency=1)
        a = lane.submit("A")
        b = lane.submit("B")
        lane.shutdown()

        assert lane.complete(a) is True
        assert lane.get(b).status == JobStatus.PENDING
        lane.close()

    @pytest.mark.asyncio
    async def test_close_disarms_timers(self, recorder: EventRecorder):
        """close() leaves running jobs running and never times them out."""
        lane = Lane(on_event=recorder)
        job_id = lane.submit("x", timeout_ms=20)
        lane.close()

        await settle(0.06)

        assert lane.get(job_id).status == JobStatus.RUNNING
        assert E.JOB_TIMED_OUT not in recorder.types()


class TestMovingJobs:
    """Test take_pending and enqueue."""

    @pytest.mark.asyncio
    async def test_take_pending(self):
        """take_pending empties the queue in FIFO order."""
        lane = Lane(concurrency=1)
        lane.submit("A")
        b = lane.submit("B")
        c = lane.submit("C")

        taken = lane.take_pending()

        assert [j.job_id for j in taken] == [b, c]
        assert lane.pending_count == 0
        assert lane.running_count == 1
        lane.close()

    @pytest.mark.asyncio
    async def test_enqueue_preserves_identity(self):
        """Enqueued records keep id, payload, creation time and timeout."""
        lane = Lane(index=1, default_timeout_ms=999)
        job = make_job(payload={"k": "v"}, timeout_ms=50_000)

        assert lane.enqueue(job) == job.job_id
        held = lane.get(job.job_id)
        assert held.payload == {"k": "v"}
        assert held.created_at == 1000.0
        assert held.timeout_ms == 50_000
        assert held.lane_index == 1
        lane.close()

    @pytest.mark.asyncio
    async def test_enqueue_rejects_non_pending(self):
        """Only pending records can be enqueued."""
        lane = Lane()
        with pytest.raises(InvalidTransitionError):
            lane.enqueue(make_job(status=JobStatus.COMPLETED))

    @pytest.mark.asyncio
    async def test_enqueue_after_shutdown(self):
        """enqueue obeys shutdown like submit."""
        lane = Lane()
        lane.shutdown()
        with pytest.raises(LaneShutdownError):
            lane.enqueue(make_job())


class TestStats:
    """Test lane statistics."""

    @pytest.mark.asyncio
    async def test_stats(self):
        """stats() reports counts, cap and activity."""
        lane = Lane(concurrency=2, index=4)
        for i in range(3):
            lane.submit(i)

        stats = lane.stats()
        assert stats.pending == 1
        assert stats.running == 2
        assert stats.concurrency == 2
        assert stats.active is True
        assert stats.load == 3
        assert stats.to_dict()["lane_index"] == 4
        lane.close()
