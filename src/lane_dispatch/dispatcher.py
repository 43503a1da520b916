"""
Persistent dispatcher facade.

Wires a LaneSetManager to a PersistenceAdapter and an EventBus, restores
unfinished jobs at startup, sweeps old finished jobs in the background and
shuts the pieces down in order.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from .config import Settings, get_settings
from .errors import CleanupError, ErrorContext, PersistenceError
from .events.bus import EventBus, EventSubscription, InMemoryEventBus
from .events.types import TERMINAL_EVENT_TYPES, DispatchEvent
from .jobs.types import JobRecord, JobStatus
from .lanes.manager import LaneSetManager
from .persistence.adapter import PersistenceAdapter
from .persistence.postgres import PostgresJobRepository
from .persistence.store import InMemoryJobRepository, JobRepository

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_DAYS = 7


class LaneDispatcher:
    """Lane set with durable job state.

    Example:
        ```python
        async with await LaneDispatcher.create(settings) as dispatcher:
            job_id = dispatcher.submit({"order": 42})
            ...
            dispatcher.complete(job_id)
        ```
    """

    def __init__(
        self,
        manager: LaneSetManager,
        event_bus: EventBus,
        *,
        cleanup_after_days: float = 0,
        cleanup_interval_ms: int = 24 * 60 * 60 * 1000,
        owns_event_bus: bool = False,
    ):
        self._manager = manager
        self._event_bus = event_bus
        self._persistence = manager.persistence
        self._cleanup_after_days = cleanup_after_days
        self._cleanup_interval = cleanup_interval_ms / 1000
        self._owns_event_bus = owns_event_bus

        self._cleanup_task: asyncio.Task[None] | None = None
        self._start_lock = asyncio.Lock()
        self._started = False
        self._closed = False

    @classmethod
    async def create(
        cls,
        settings: Settings | None = None,
        *,
        repository: JobRepository | None = None,
        event_bus: EventBus | None = None,
    ) -> LaneDispatcher:
        """Build a dispatcher and its collaborators from settings.

        Args:
            settings: Configuration (defaults to the global settings)
            repository: Storage to use instead of the configured backend
            event_bus: Bus to publish on (an in-memory bus is created if omitted)
        """
        settings = settings or get_settings()
        persistence_config = settings.persistence

        if repository is None and persistence_config.enabled:
            if persistence_config.backend == "postgres":
                repository = await PostgresJobRepository.connect(
                    persistence_config.dsn,
                    persistence_config.table_name,
                )
            else:
                repository = InMemoryJobRepository()

        persistence = None
        if repository is not None:
            persistence = PersistenceAdapter(
                repository,
                batch_size=persistence_config.batch_size,
                flush_interval_ms=persistence_config.flush_interval_ms,
            )

        owns_event_bus = event_bus is None
        bus = event_bus or InMemoryEventBus()

        manager = LaneSetManager(
            lane_count=settings.lanes.lane_count,
            concurrency=settings.lanes.concurrency,
            default_timeout_ms=settings.lanes.default_timeout_ms,
            event_bus=bus,
            persistence=persistence,
        )
        return cls(
            manager,
            bus,
            cleanup_after_days=persistence_config.cleanup_after_days,
            cleanup_interval_ms=persistence_config.cleanup_interval_ms,
            owns_event_bus=owns_event_bus,
        )

    async def __aenter__(self) -> LaneDispatcher:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def manager(self) -> LaneSetManager:
        return self._manager

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def persistence(self) -> PersistenceAdapter | None:
        return self._persistence

    @property
    def is_started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> int:
        """Recover unfinished jobs and start the background tasks.

        The dispatcher only counts as started once recovery succeeded, so
        ``start()`` can be called again after a RecoveryError.

        Returns:
            Number of jobs restored into lanes

        Raises:
            RecoveryError: If unfinished jobs could not be loaded
        """
        async with self._start_lock:
            if self._started:
                return 0

            restored = 0
            if self._persistence is not None:
                recovered = await self._persistence.recover(self._manager.lane_count)
                for lane_index, jobs in recovered.items():
                    for job in jobs:
                        self._manager.restore(job, lane_index)
                        restored += 1
                self._persistence.start()

                if self._cleanup_after_days > 0:
                    self._cleanup_task = asyncio.create_task(
                        self._cleanup_loop(),
                        name="lane-dispatch-cleanup",
                    )
            self._started = True

        logger.info(
            "Dispatcher started with %d lanes (concurrency %d), restored %d jobs",
            self._manager.lane_count,
            self._manager.concurrency,
            restored,
        )
        return restored

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            try:
                await self.cleanup(self._cleanup_after_days)
            except CleanupError:
                # Already logged by the adapter; try again next interval.
                continue

    async def shutdown(self) -> None:
        """Stop cleanup, shut down every lane, flush persistence, close the bus."""
        if self._closed:
            return
        self._closed = True

        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

        try:
            await self._manager.shutdown_all()
        finally:
            if self._owns_event_bus:
                await self._event_bus.close()
        logger.info("Dispatcher shut down")

    # ------------------------------------------------------------------ #
    # Jobs
    # ------------------------------------------------------------------ #

    def submit(self, payload: Any, timeout_ms: int | None = None) -> str:
        return self._manager.submit(payload, timeout_ms)

    def complete(self, job_id: str) -> bool:
        return self._manager.complete(job_id)

    def fail(self, job_id: str, error: str | BaseException | None = None) -> bool:
        return self._manager.fail(job_id, error)

    def get_job(self, job_id: str) -> JobRecord | None:
        return self._manager.get_job(job_id)

    async def wait_for(self, job_id: str, timeout: float | None = None) -> DispatchEvent | None:
        """Wait for the terminal event of a live job.

        Returns:
            The job.completed / job.failed / job.timed_out event, or None if
            the job is not held by any lane or the timeout elapsed first.
        """
        subscription = self._event_bus.subscribe(job_id=job_id, event_types=set(TERMINAL_EVENT_TYPES))
        try:
            if self._manager.get_job(job_id) is None:
                return None
            try:
                return await asyncio.wait_for(self._next_event(subscription), timeout)
            except asyncio.TimeoutError:
                return None
        finally:
            self._event_bus.unsubscribe(subscription)

    async def _next_event(self, subscription: EventSubscription) -> DispatchEvent | None:
        async for event in self._event_bus.events(subscription):
            return event
        return None

    async def jobs_by_status(self, status: JobStatus | str) -> list[JobRecord]:
        """Persisted jobs with ``status``, oldest first."""
        return await self._require_persistence("jobs_by_status").jobs_by_status(status)

    async def cleanup(self, older_than_days: float | None = None) -> int:
        """Delete finished jobs older than ``older_than_days`` (default 7)."""
        if older_than_days is None:
            older_than_days = self._cleanup_after_days or DEFAULT_CLEANUP_DAYS
        return await self._require_persistence("cleanup").cleanup(older_than_days)

    # ------------------------------------------------------------------ #
    # Topology
    # ------------------------------------------------------------------ #

    def resize(self, new_count: int) -> None:
        self._manager.resize(new_count)

    def update_concurrency(self, new_concurrency: int) -> None:
        self._manager.update_concurrency(new_concurrency)

    def pause_all(self) -> None:
        self._manager.pause_all()

    def resume_all(self) -> None:
        self._manager.resume_all()

    def stats(self) -> dict[str, Any]:
        lanes = self._manager.stats()
        return {
            "lane_count": self._manager.lane_count,
            "concurrency": self._manager.concurrency,
            "pending": sum(s.pending for s in lanes),
            "running": sum(s.running for s in lanes),
            "draining_lanes": len(self._manager.draining_lanes),
            "pending_writes": self._persistence.pending_writes if self._persistence else 0,
            "lanes": [s.to_dict() for s in lanes],
        }

    def _require_persistence(self, operation: str) -> PersistenceAdapter:
        if self._persistence is None:
            raise PersistenceError(
                "Persistence is disabled",
                retryable=False,
                context=ErrorContext(operation=operation),
            )
        return self._persistence


__all__ = ["LaneDispatcher", "DEFAULT_CLEANUP_DAYS"]
