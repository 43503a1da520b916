"""
Lane-set manager.

Owns the ordered collection of lanes: places submissions on the least
loaded lane, routes completion and failure signals to the lane that owns
the job, forwards every lane event (annotated with the lane index) to the
event bus and the persistence adapter, and changes the topology at runtime.

Lanes removed by ``resize`` or rebuilt by ``update_concurrency`` are
drained rather than dropped: their pending jobs are placed again through
the normal least-loaded path, and their running jobs stay reachable until
they complete, fail or time out. Events from such a lane carry
``draining: True`` in their data, since a new lane may reuse its index.
"""

from __future__ import annotations

import logging
from typing import Any

from ..errors import ErrorContext, InvalidLaneCountError, LaneShutdownError
from ..events.bus import EventBus
from ..events.types import DispatchEvent, DispatchEventType
from ..jobs.types import JobRecord
from ..persistence.adapter import PersistenceAdapter
from .lane import DEFAULT_TIMEOUT_MS, Lane, LaneStats, validate_concurrency, validate_timeout

logger = logging.getLogger(__name__)


def validate_lane_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidLaneCountError(value)
    return value


class LaneSetManager:
    """Distributes jobs across a resizable set of lanes.

    Example:
        ```python
        manager = LaneSetManager(lane_count=2, concurrency=1)
        job_id = manager.submit({"order": 42})
        ...
        manager.complete(job_id)  # delivered later by an external actor
        ```
    """

    def __init__(
        self,
        lane_count: int,
        concurrency: int = 1,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        event_bus: EventBus | None = None,
        persistence: PersistenceAdapter | None = None,
    ):
        validate_lane_count(lane_count)
        self._concurrency = validate_concurrency(concurrency)
        self._default_timeout_ms = validate_timeout(default_timeout_ms)
        self._event_bus = event_bus
        self._persistence = persistence

        # job_id -> lane currently holding it (active or draining)
        self._owners: dict[str, Lane] = {}
        self._draining: list[Lane] = []
        self._paused = False
        self._shutdown = False

        self._lanes: list[Lane] = [self._create_lane(i) for i in range(lane_count)]

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def lane_count(self) -> int:
        return len(self._lanes)

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def lanes(self) -> list[Lane]:
        return list(self._lanes)

    @property
    def draining_lanes(self) -> list[Lane]:
        return list(self._draining)

    @property
    def event_bus(self) -> EventBus | None:
        return self._event_bus

    @property
    def persistence(self) -> PersistenceAdapter | None:
        return self._persistence

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    # ------------------------------------------------------------------ #
    # Jobs
    # ------------------------------------------------------------------ #

    def submit(self, payload: Any, timeout_ms: int | None = None) -> str:
        """Submit a job to the least loaded lane and return its id.

        Load is pending + running; ties go to the lowest lane index.
        """
        self._ensure_open("submit")
        return self._select_lane().submit(payload, timeout_ms)

    def restore(self, job: JobRecord, lane_index: int) -> str:
        """Place a recovered pending job directly into ``lane_index``."""
        self._ensure_open("restore")
        if not 0 <= lane_index < len(self._lanes):
            raise IndexError(f"Lane index {lane_index} out of range for {len(self._lanes)} lanes")
        return self._lanes[lane_index].enqueue(job)

    def complete(self, job_id: str) -> bool:
        """Mark a running job completed. Unknown or non-running ids are ignored."""
        lane = self._owners.get(job_id)
        if lane is None:
            return False
        return lane.complete(job_id)

    def fail(self, job_id: str, error: str | BaseException | None = None) -> bool:
        """Mark a running job failed. Unknown or non-running ids are ignored."""
        lane = self._owners.get(job_id)
        if lane is None:
            return False
        return lane.fail(job_id, error)

    def get_job(self, job_id: str) -> JobRecord | None:
        """Snapshot of a live (pending or running) job, if any lane holds it."""
        lane = self._owners.get(job_id)
        return lane.get(job_id) if lane else None

    def _select_lane(self) -> Lane:
        # min() keeps the first of equal keys, so ties resolve to the lowest index.
        return min(self._lanes, key=lambda lane: lane.load)

    # ------------------------------------------------------------------ #
    # Topology
    # ------------------------------------------------------------------ #

    def resize(self, new_count: int) -> None:
        """Grow or shrink the lane set.

        Growing appends fresh lanes and leaves existing ones untouched.
        Shrinking drains the lanes at index >= new_count and places their
        pending jobs on the surviving lanes.
        """
        validate_lane_count(new_count)
        self._ensure_open("resize")

        current = len(self._lanes)
        if new_count > current:
            self._lanes.extend(self._create_lane(i) for i in range(current, new_count))
            logger.info("Added %d lanes (now %d)", new_count - current, new_count)
            self._publish(
                DispatchEventType.LANES_ADDED,
                new_count=new_count,
                added_count=new_count - current,
            )
        elif new_count < current:
            removed = self._lanes[new_count:]
            self._lanes = self._lanes[:new_count]
            redistributed = self._retire(removed)
            logger.info(
                "Removed %d lanes (now %d), redistributed %d pending jobs",
                current - new_count,
                new_count,
                redistributed,
            )
            self._publish(
                DispatchEventType.LANES_REMOVED,
                new_count=new_count,
                removed_count=current - new_count,
                redistributed_jobs=redistributed,
            )

    def update_concurrency(self, new_concurrency: int) -> None:
        """Rebuild every lane with a new concurrency cap.

        Pending jobs of the old lanes are placed again on the new ones;
        running jobs finish in their old, draining lanes.
        """
        validate_concurrency(new_concurrency)
        self._ensure_open("update_concurrency")

        old_lanes = self._lanes
        self._concurrency = new_concurrency
        self._lanes = [self._create_lane(i) for i in range(len(old_lanes))]
        redistributed = self._retire(old_lanes)
        logger.info(
            "Concurrency per lane set to %d, redistributed %d pending jobs",
            new_concurrency,
            redistributed,
        )
        self._publish(
            DispatchEventType.CONCURRENCY_UPDATED,
            new_concurrency=new_concurrency,
            redistributed_jobs=redistributed,
        )

    def _create_lane(self, index: int) -> Lane:
        lane: Lane

        def forward(event_type: DispatchEventType, job: JobRecord | None, data: dict[str, Any]) -> None:
            self._forward(lane, event_type, job, data)

        lane = Lane(
            concurrency=self._concurrency,
            default_timeout_ms=self._default_timeout_ms,
            on_event=forward,
            index=index,
        )
        if self._paused:
            lane.pause()
        return lane

    def _retire(self, lanes: list[Lane]) -> int:
        collected: list[JobRecord] = []
        for lane in lanes:
            collected.extend(lane.take_pending())
            self._draining.append(lane)
            lane.shutdown()
            if not lane.running_count:
                self._draining.remove(lane)
                self._publish(DispatchEventType.LANE_DRAINED, lane_index=lane.index, draining=True)

        for job in collected:
            self._select_lane().enqueue(job)
        return len(collected)

    # ------------------------------------------------------------------ #
    # Lane state
    # ------------------------------------------------------------------ #

    def pause_all(self) -> None:
        self._paused = True
        for lane in self._lanes:
            lane.pause()
        self._publish(DispatchEventType.ALL_PAUSED)

    def resume_all(self) -> None:
        self._paused = False
        for lane in self._lanes:
            lane.resume()
        self._publish(DispatchEventType.ALL_RESUMED)

    async def shutdown_all(self) -> None:
        """Stop every lane, then flush and close persistence."""
        if self._shutdown:
            return
        self._shutdown = True
        for lane in [*self._lanes, *self._draining]:
            lane.close()
        self._publish(DispatchEventType.ALL_SHUTDOWN)
        logger.info("All lanes shut down")

        if self._persistence is not None:
            await self._persistence.shutdown()

    def stats(self) -> list[LaneStats]:
        return [lane.stats() for lane in self._lanes]

    # ------------------------------------------------------------------ #
    # Event forwarding
    # ------------------------------------------------------------------ #

    def _forward(
        self,
        lane: Lane,
        event_type: DispatchEventType,
        job: JobRecord | None,
        data: dict[str, Any],
    ) -> None:
        if job is not None:
            if event_type == DispatchEventType.JOB_QUEUED:
                self._owners[job.job_id] = lane
            elif event_type.is_terminal and self._owners.get(job.job_id) is lane:
                del self._owners[job.job_id]

            if self._persistence is not None:
                self._persistence.record_transition(job, lane.index)

            data = {
                "status": job.status.value,
                "error": job.error,
                "timeout_ms": job.timeout_ms,
                **data,
            }

        # A retired lane may share its index with an active lane.
        if lane in self._draining:
            data = {**data, "draining": True}

        if self._event_bus is not None:
            self._event_bus.publish_nowait(DispatchEvent(
                type=event_type,
                job_id=job.job_id if job else None,
                lane_index=lane.index,
                data=data,
            ))

        if event_type.is_terminal and lane in self._draining and lane.running_count == 0:
            self._draining.remove(lane)
            logger.info("Drained %s", lane.name)
            self._publish(DispatchEventType.LANE_DRAINED, lane_index=lane.index, draining=True)

    def _publish(
        self,
        event_type: DispatchEventType,
        lane_index: int | None = None,
        **data: Any,
    ) -> None:
        if self._event_bus is None:
            return
        self._event_bus.publish_nowait(DispatchEvent(
            type=event_type,
            lane_index=lane_index,
            data=data,
        ))

    def _ensure_open(self, operation: str) -> None:
        if self._shutdown:
            raise LaneShutdownError(
                "Lane set has been shut down",
                context=ErrorContext(operation=operation),
            )


__all__ = ["LaneSetManager", "validate_lane_count"]
