"""
A single concurrency-bounded FIFO lane.

A lane owns admission, timeout and finalization for the jobs placed in it.
Admission is event-driven: it runs whenever capacity or pending work may
have changed (enqueue, finalize, resume) rather than on a clock.

Lane methods are synchronous but must run on the event loop thread, since
timeouts are armed with ``loop.call_later``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable

from ..errors import (
    ErrorContext,
    InvalidConcurrencyError,
    InvalidTimeoutError,
    InvalidTransitionError,
    LaneShutdownError,
)
from ..events.types import DispatchEventType
from ..jobs.types import JobRecord, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30_000

# (event type, job snapshot or None, extra data)
LaneEventSink = Callable[[DispatchEventType, "JobRecord | None", "dict[str, Any]"], None]

_FINAL_EVENTS: dict[JobStatus, DispatchEventType] = {
    JobStatus.COMPLETED: DispatchEventType.JOB_COMPLETED,
    JobStatus.FAILED: DispatchEventType.JOB_FAILED,
    JobStatus.TIMED_OUT: DispatchEventType.JOB_TIMED_OUT,
}


def validate_concurrency(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidConcurrencyError(value)
    return value


def validate_timeout(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise InvalidTimeoutError(value)
    return value


@dataclass
class LaneStats:
    """Point-in-time view of one lane."""
    pending: int
    running: int
    concurrency: int
    active: bool
    lane_index: int | None = None

    @property
    def load(self) -> int:
        return self.pending + self.running

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Lane:
    """FIFO queue with a cap on how many of its jobs may run at once.

    Jobs move pending -> running when admitted and leave the lane on
    ``complete``, ``fail`` or when their timeout fires. Every lifecycle step is
    reported through ``on_event``.
    """

    def __init__(
        self,
        concurrency: int = 1,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        on_event: LaneEventSink | None = None,
        *,
        index: int = 0,
        name: str | None = None,
    ):
        self._concurrency = validate_concurrency(concurrency)
        self._default_timeout_ms = validate_timeout(default_timeout_ms)
        self._on_event = on_event
        self.index = index
        self.name = name or f"lane-{index}"

        self._pending: deque[JobRecord] = deque()
        self._running: dict[str, JobRecord] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

        self._paused = False
        self._shutdown = False
        self._admitting = False

    def __repr__(self) -> str:
        return (
            f"Lane(name={self.name!r}, pending={len(self._pending)}, "
            f"running={len(self._running)}, concurrency={self._concurrency})"
        )

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def default_timeout_ms(self) -> int:
        return self._default_timeout_ms

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def load(self) -> int:
        """Pending plus running; the figure load balancing compares."""
        return len(self._pending) + len(self._running)

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    @property
    def is_active(self) -> bool:
        """Whether admission currently promotes pending jobs."""
        return not self._paused and not self._shutdown

    # ------------------------------------------------------------------ #
    # Submission
    # ------------------------------------------------------------------ #

    def submit(self, payload: Any, timeout_ms: int | None = None) -> str:
        """Enqueue a new pending job and return its id.

        Returns before the job is admitted; admission may still promote it
        to running before this call returns if a slot is free.

        Raises:
            LaneShutdownError: If the lane has been shut down
            InvalidTimeoutError: If timeout_ms is not positive
        """
        if self._shutdown:
            raise LaneShutdownError(
                f"Cannot submit to {self.name}: lane has been shut down",
                context=ErrorContext(lane_index=self.index, operation="submit"),
            )
        if timeout_ms is not None:
            validate_timeout(timeout_ms)

        job = JobRecord(
            payload=payload,
            timeout_ms=timeout_ms if timeout_ms is not None else self._default_timeout_ms,
        )
        return self.enqueue(job)

    def enqueue(self, job: JobRecord) -> str:
        """Place an existing pending record at the tail of this lane.

        Used when jobs move between lanes or come back from storage; the
        record keeps its id, payload, creation time and timeout.
        """
        if self._shutdown:
            raise LaneShutdownError(
                f"Cannot enqueue into {self.name}: lane has been shut down",
                context=ErrorContext(lane_index=self.index, job_id=job.job_id, operation="enqueue"),
            )
        if job.status != JobStatus.PENDING:
            raise InvalidTransitionError(
                f"Only pending jobs can be enqueued, got {job.status.value}",
                context=ErrorContext(lane_index=self.index, job_id=job.job_id, operation="enqueue"),
            )
        if job.timeout_ms is None:
            job.timeout_ms = self._default_timeout_ms

        job.lane_index = self.index
        self._pending.append(job)
        self._emit(DispatchEventType.JOB_QUEUED, job)
        self._admit()
        return job.job_id

    def take_pending(self) -> list[JobRecord]:
        """Remove and return every pending job, in FIFO order."""
        jobs = list(self._pending)
        self._pending.clear()
        return jobs

    # ------------------------------------------------------------------ #
    # Finalization
    # ------------------------------------------------------------------ #

    def complete(self, job_id: str) -> bool:
        """Mark a running job completed. No-op unless this lane runs it."""
        return self._finalize(job_id, JobStatus.COMPLETED)

    def fail(self, job_id: str, error: str | BaseException | None = None) -> bool:
        """Mark a running job failed. No-op unless this lane runs it."""
        message = str(error) if error is not None else None
        return self._finalize(job_id, JobStatus.FAILED, error=message)

    def _finalize(self, job_id: str, status: JobStatus, error: str | None = None) -> bool:
        job = self._running.pop(job_id, None)
        if job is None:
            return False

        handle = self._timers.pop(job_id, None)
        if handle is not None:
            handle.cancel()

        job.transition_to(status, error=error)
        logger.debug("%s: job %s %s", self.name, job_id, status.value)
        self._emit(_FINAL_EVENTS[status], job)
        self._admit()
        return True

    def _on_timeout(self, job_id: str) -> None:
        self._timers.pop(job_id, None)
        job = self._running.pop(job_id, None)
        if job is None:
            return

        job.transition_to(JobStatus.TIMED_OUT)
        logger.info("%s: job %s timed out after %sms", self.name, job_id, job.timeout_ms)
        self._emit(DispatchEventType.JOB_TIMED_OUT, job)
        self._admit()

    # ------------------------------------------------------------------ #
    # Admission
    # ------------------------------------------------------------------ #

    def _admit(self) -> None:
        # An event sink may call back into the lane; the outer loop keeps going.
        if self._admitting:
            return
        self._admitting = True
        try:
            while self.is_active and self._pending and len(self._running) < self._concurrency:
                job = self._pending.popleft()
                job.transition_to(JobStatus.RUNNING)
                self._running[job.job_id] = job
                loop = asyncio.get_running_loop()
                self._timers[job.job_id] = loop.call_later(
                    job.timeout_ms / 1000,
                    self._on_timeout,
                    job.job_id,
                )
                logger.debug("%s: job %s started", self.name, job.job_id)
                self._emit(DispatchEventType.JOB_STARTED, job)
        finally:
            self._admitting = False

    # ------------------------------------------------------------------ #
    # Lane state
    # ------------------------------------------------------------------ #

    def pause(self) -> None:
        """Stop promoting pending jobs. Running jobs are unaffected."""
        if self._shutdown or self._paused:
            return
        self._paused = True
        self._emit(DispatchEventType.LANE_PAUSED, None)

    def resume(self) -> None:
        """Resume admission. Has no effect after shutdown."""
        if self._shutdown:
            logger.warning("%s: resume ignored, lane has been shut down", self.name)
            return
        if not self._paused:
            return
        self._paused = False
        self._emit(DispatchEventType.LANE_RESUMED, None)
        self._admit()

    def shutdown(self) -> None:
        """Stop admission permanently.

        Running jobs may still complete, fail or time out.
        """
        if self._shutdown:
            return
        self._shutdown = True
        self._emit(
            DispatchEventType.LANE_SHUTDOWN,
            None,
            pending=len(self._pending),
            running=len(self._running),
        )

    def close(self) -> None:
        """Shut down and disarm every timeout timer.

        Running jobs stay running; once persisted they are picked up again by
        recovery on the next start.
        """
        self.shutdown()
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get(self, job_id: str) -> JobRecord | None:
        job = self._running.get(job_id)
        if job is None:
            job = next((j for j in self._pending if j.job_id == job_id), None)
        return job.snapshot() if job else None

    def pending_snapshot(self) -> list[JobRecord]:
        return [job.snapshot() for job in self._pending]

    def running_snapshot(self) -> list[JobRecord]:
        return [job.snapshot() for job in self._running.values()]

    def stats(self) -> LaneStats:
        return LaneStats(
            pending=len(self._pending),
            running=len(self._running),
            concurrency=self._concurrency,
            active=self.is_active,
            lane_index=self.index,
        )

    def _emit(self, event_type: DispatchEventType, job: JobRecord | None, **data: Any) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event_type, job.snapshot() if job else None, data)
        except Exception:
            logger.exception("%s: event handler failed for %s", self.name, event_type.value)


__all__ = [
    "Lane",
    "LaneStats",
    "LaneEventSink",
    "DEFAULT_TIMEOUT_MS",
    "validate_concurrency",
    "validate_timeout",
]
