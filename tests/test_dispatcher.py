"""Tests for the persistent dispatcher facade."""

from __future__ import annotations

import asyncio
import time

import pytest

from _testkit import FakePool, FlakyJobRepository, make_job, settle
from lane_dispatch import LaneDispatcher
from lane_dispatch.config import LaneConfig, PersistenceConfig, Settings
from lane_dispatch.errors import LaneShutdownError, PersistenceError, RecoveryError
from lane_dispatch.events import DispatchEventType, InMemoryEventBus
from lane_dispatch.jobs import JobStatus
from lane_dispatch.persistence import InMemoryJobRepository, PostgresJobRepository
from lane_dispatch.persistence.adapter import SECONDS_PER_DAY

E = DispatchEventType


def make_settings(lane_count: int = 1, concurrency: int = 1, **persistence) -> Settings:
    return Settings(
        lanes=LaneConfig(lane_count=lane_count, concurrency=concurrency),
        persistence=PersistenceConfig(**persistence),
    )


class TestCreate:
    """Test building a dispatcher from settings."""

    @pytest.mark.asyncio
    async def test_memory_backend(self):
        """The default backend keeps state in memory."""
        dispatcher = await LaneDispatcher.create(make_settings(lane_count=3, concurrency=2))

        assert dispatcher.manager.lane_count == 3
        assert dispatcher.manager.concurrency == 2
        assert isinstance(dispatcher.persistence.repository, InMemoryJobRepository)
        assert isinstance(dispatcher.event_bus, InMemoryEventBus)
        await dispatcher.shutdown()

    @pytest.mark.asyncio
    async def test_no_persistence(self):
        """backend='none' runs without storage."""
        dispatcher = await LaneDispatcher.create(make_settings(backend="none"))

        assert dispatcher.persistence is None
        assert await dispatcher.start() == 0
        with pytest.raises(PersistenceError):
            await dispatcher.jobs_by_status(JobStatus.PENDING)
        with pytest.raises(PersistenceError):
            await dispatcher.cleanup()
        await dispatcher.shutdown()

    @pytest.mark.asyncio
    async def test_postgres_backend(self, monkeypatch):
        """backend='postgres' connects with the configured dsn and table."""
        calls = []

        async def fake_connect(cls, dsn, table_name=None, **kwargs):
            calls.append((dsn, table_name))
            return cls(FakePool(), table_name, owns_pool=True)

        monkeypatch.setattr(PostgresJobRepository, "connect", classmethod(fake_connect))
        settings = make_settings(backend="postgres", dsn="postgresql://db/jobs", table_name="jobs_v2")

        dispatcher = await LaneDispatcher.create(settings)

        assert calls == [("postgresql://db/jobs", "jobs_v2")]
        assert dispatcher.persistence.repository.table_name == "jobs_v2"
        await dispatcher.shutdown()

    @pytest.mark.asyncio
    async def test_explicit_repository_and_bus(self, repository, event_bus):
        """Caller-provided collaborators are used as is and the bus stays open."""
        dispatcher = await LaneDispatcher.create(make_settings(), repository=repository, event_bus=event_bus)
        sub = event_bus.subscribe(event_types={E.ALL_SHUTDOWN})

        assert dispatcher.persistence.repository is repository
        await dispatcher.shutdown()

        event = await event_bus.wait_for_event(sub, timeout=0.1)
        assert event.type == E.ALL_SHUTDOWN
        assert repository.closed


class TestLifecycle:
    """Test start, restart and shutdown."""

    @pytest.mark.asyncio
    async def test_restart_recovers_unfinished_jobs(self, repository: InMemoryJobRepository):
        """Jobs left pending or running by one process resume in the next."""
        first = await LaneDispatcher.create(make_settings(), repository=repository)
        await first.start()
        a = first.submit({"job": "A"}, timeout_ms=60_000)
        b = first.submit({"job": "B"})
        c = first.submit({"job": "C"})
        done = first.submit({"job": "D"})
        first.complete(a)
        first.complete(b)
        await first.shutdown()

        assert repository.get(c).status == JobStatus.RUNNING
        assert repository.get(done).status == JobStatus.PENDING

        second = await LaneDispatcher.create(make_settings(lane_count=2), repository=repository)
        restored = await second.start()

        assert restored == 2
        job_c = second.get_job(c)
        assert job_c.status == JobStatus.RUNNING
        assert job_c.payload == {"job": "C"}
        assert job_c.lane_index == 0
        assert second.get_job(done).status == JobStatus.PENDING
        assert second.get_job(a) is None

        assert second.complete(c) is True
        assert second.get_job(done).status == JobStatus.RUNNING
        await second.shutdown()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, repository: InMemoryJobRepository):
        """A second start does not restore jobs twice."""
        await repository.upsert_by_id(make_job())
        dispatcher = await LaneDispatcher.create(make_settings(), repository=repository)

        assert await dispatcher.start() == 1
        assert await dispatcher.start() == 0
        assert dispatcher.is_started
        await dispatcher.shutdown()

    @pytest.mark.asyncio
    async def test_start_retries_after_failed_recovery(self, flaky_repository: FlakyJobRepository):
        """A start that failed to recover can be repeated once storage is back."""
        job = make_job()
        await flaky_repository.upsert_by_id(job)
        dispatcher = await LaneDispatcher.create(make_settings(), repository=flaky_repository)
        flaky_repository.failing = True

        with pytest.raises(RecoveryError):
            await dispatcher.start()
        assert not dispatcher.is_started
        assert not dispatcher.persistence.is_running

        flaky_repository.failing = False
        assert await dispatcher.start() == 1
        assert dispatcher.is_started
        assert dispatcher.persistence.is_running
        assert dispatcher.get_job(job.job_id).status == JobStatus.RUNNING
        await dispatcher.shutdown()

    @pytest.mark.asyncio
    async def test_context_manager(self, repository: InMemoryJobRepository):
        """async with starts and shuts down the dispatcher."""
        async with await LaneDispatcher.create(make_settings(), repository=repository) as dispatcher:
            job_id = dispatcher.submit("x")
            assert dispatcher.persistence.is_running

        assert repository.get(job_id).status == JobStatus.RUNNING
        with pytest.raises(LaneShutdownError):
            dispatcher.submit("late")

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self):
        """Shutting down twice is harmless."""
        dispatcher = await LaneDispatcher.create(make_settings())
        await dispatcher.start()
        await dispatcher.shutdown()
        await dispatcher.shutdown()


class TestJobs:
    """Test job operations through the facade."""

    @pytest.mark.asyncio
    async def test_wait_for_completion(self):
        """wait_for returns the terminal event of a live job."""
        async with await LaneDispatcher.create(make_settings(backend="none")) as dispatcher:
            job_id = dispatcher.submit("x")
            waiter = asyncio.create_task(dispatcher.wait_for(job_id, timeout=1.0))
            await settle()

            dispatcher.fail(job_id, "broken")
            event = await waiter

        assert event.type == E.JOB_FAILED
        assert event.job_id == job_id
        assert event.data["error"] == "broken"

    @pytest.mark.asyncio
    async def test_wait_for_timeout_event(self):
        """A timed-out job resolves wait_for with job.timed_out."""
        async with await LaneDispatcher.create(make_settings(backend="none")) as dispatcher:
            job_id = dispatcher.submit("x", timeout_ms=20)
            event = await dispatcher.wait_for(job_id, timeout=1.0)

        assert event.type == E.JOB_TIMED_OUT

    @pytest.mark.asyncio
    async def test_wait_for_unknown_or_slow(self):
        """wait_for returns None for unknown jobs and on timeout."""
        async with await LaneDispatcher.create(make_settings(backend="none")) as dispatcher:
            assert await dispatcher.wait_for("missing", timeout=0.1) is None

            job_id = dispatcher.submit("x")
            assert await dispatcher.wait_for(job_id, timeout=0.02) is None
            assert dispatcher.event_bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_jobs_by_status(self):
        """Persisted state is queryable by status."""
        async with await LaneDispatcher.create(make_settings()) as dispatcher:
            a = dispatcher.submit("A")
            b = dispatcher.submit("B")
            dispatcher.complete(a)

            completed = await dispatcher.jobs_by_status(JobStatus.COMPLETED)
            running = await dispatcher.jobs_by_status("running")

        assert [j.job_id for j in completed] == [a]
        assert [j.job_id for j in running] == [b]

    @pytest.mark.asyncio
    async def test_topology_and_stats(self):
        """Topology changes pass through to the manager."""
        async with await LaneDispatcher.create(make_settings(lane_count=2)) as dispatcher:
            dispatcher.submit("A")
            dispatcher.submit("B")
            dispatcher.submit("C")
            dispatcher.resize(3)
            dispatcher.update_concurrency(2)
            dispatcher.pause_all()
            dispatcher.submit("D")
            stats = dispatcher.stats()
            dispatcher.resume_all()

        assert stats["lane_count"] == 3
        assert stats["concurrency"] == 2
        assert stats["pending"] == 1
        assert stats["running"] == 1
        assert stats["draining_lanes"] == 2
        assert len(stats["lanes"]) == 3


class TestCleanup:
    """Test manual and periodic cleanup."""

    @staticmethod
    def old_finished_job(age_days: float):
        job = make_job()
        job.transition_to(JobStatus.RUNNING)
        job.transition_to(JobStatus.COMPLETED)
        job.completed_at = time.time() - age_days * SECONDS_PER_DAY
        return job

    @pytest.mark.asyncio
    async def test_manual_cleanup_defaults_to_a_week(self, repository: InMemoryJobRepository):
        """cleanup() without arguments removes jobs finished over 7 days ago."""
        old = self.old_finished_job(8)
        recent = self.old_finished_job(3)
        await repository.batch_upsert([old, recent])

        async with await LaneDispatcher.create(make_settings(), repository=repository) as dispatcher:
            assert await dispatcher.cleanup() == 1
            assert await dispatcher.cleanup(older_than_days=1) == 1

    @pytest.mark.asyncio
    async def test_periodic_cleanup(self, repository: InMemoryJobRepository):
        """With cleanup_after_days set, old jobs are swept in the background."""
        old = self.old_finished_job(3)
        await repository.upsert_by_id(old)
        settings = make_settings(cleanup_after_days=2, cleanup_interval_ms=10)

        async with await LaneDispatcher.create(settings, repository=repository):
            await settle(0.08)
            assert repository.get(old.job_id) is None
