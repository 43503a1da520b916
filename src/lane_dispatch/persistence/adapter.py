"""
Write-behind persistence for job lifecycle transitions.

Lifecycle handlers call ``record_transition`` on the hot path; it only
touches an in-memory buffer keyed by job id. A background task drains the
buffer in batches. Several transitions of the same job between two flushes
collapse into the latest one, so an intermediate state may never reach
storage. Storage failures are logged and the batch is retried on the next
cycle; in-memory lane state is never rolled back because of them. A record
the repository cannot serialize is dropped on its own.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from itertools import islice

from ..errors import (
    CleanupError,
    ErrorContext,
    FlushError,
    InvalidConfigError,
    InvalidLaneCountError,
    JobSerializationError,
    RecoveryError,
)
from ..jobs.types import ACTIVE_STATUSES, TERMINAL_STATUSES, JobRecord, JobStatus
from .store import JobRepository

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class PersistenceAdapter:
    """Buffers lifecycle transitions and writes them to a JobRepository.

    Example:
        ```python
        adapter = PersistenceAdapter(InMemoryJobRepository(), batch_size=50)
        adapter.start()
        adapter.record_transition(job, lane_index=0)
        ...
        await adapter.shutdown()
        ```
    """

    def __init__(
        self,
        repository: JobRepository,
        batch_size: int = 100,
        flush_interval_ms: int = 500,
    ):
        if batch_size <= 0:
            raise InvalidConfigError(f"batch_size must be positive, got {batch_size}")
        if flush_interval_ms <= 0:
            raise InvalidConfigError(f"flush_interval_ms must be positive, got {flush_interval_ms}")

        self._repository = repository
        self._batch_size = batch_size
        self._flush_interval = flush_interval_ms / 1000
        self._buffer: dict[str, JobRecord] = {}
        self._flush_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def repository(self) -> JobRepository:
        return self._repository

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def pending_writes(self) -> int:
        """Number of buffered transitions not yet persisted."""
        return len(self._buffer)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def record_transition(self, job: JobRecord, lane_index: int) -> None:
        """Buffer the current state of ``job``; the latest state per id wins."""
        if self._closed:
            logger.warning(
                "Persistence is shut down; transition of job %s to %s not recorded",
                job.job_id,
                job.status.value,
            )
            return

        record = job.snapshot()
        record.lane_index = lane_index
        self._buffer[record.job_id] = record

    # ------------------------------------------------------------------ #
    # Flushing
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Start the periodic flush task on the running loop."""
        if self._closed:
            raise InvalidConfigError("Cannot start a persistence adapter after shutdown")
        if self.is_running:
            return
        self._task = asyncio.create_task(self._flush_loop(), name="lane-dispatch-flush")

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval)
            if not self._buffer:
                continue
            try:
                await self.flush()
            except FlushError:
                # Already logged; the batch stays buffered for the next cycle.
                continue

    async def flush(self) -> int:
        """Persist up to ``batch_size`` buffered transitions as one batch.

        When the batch upsert fails, its records are written one at a time.
        A record the repository cannot serialize is dropped and logged.

        Returns:
            Number of transitions written

        Raises:
            FlushError: If storage rejected a record for any other reason.
                That record and the rest of the batch are put back into the
                buffer unless a newer transition for the same job arrived
                meanwhile.
        """
        async with self._flush_lock:
            if not self._buffer:
                return 0

            batch_ids = list(islice(self._buffer, self._batch_size))
            batch = [self._buffer.pop(job_id) for job_id in batch_ids]

            try:
                await self._repository.batch_upsert(batch)
            except Exception:
                logger.warning(
                    "Batch upsert of %d job transitions failed; writing them one by one",
                    len(batch),
                    exc_info=True,
                )
                return await self._write_each(batch)

            logger.debug("Persisted %d job transitions", len(batch))
            return len(batch)

    async def _write_each(self, batch: list[JobRecord]) -> int:
        written = 0
        for position, record in enumerate(batch):
            try:
                await self._repository.upsert_by_id(record)
            except JobSerializationError:
                logger.exception("Dropping transition of job %s to %s", record.job_id, record.status.value)
            except Exception as exc:
                remaining = batch[position:]
                for pending in remaining:
                    self._buffer.setdefault(pending.job_id, pending)
                logger.exception(
                    "Failed to persist %d job transitions; retrying next cycle",
                    len(remaining),
                )
                raise FlushError(
                    f"Upsert of {len(remaining)} jobs failed",
                    context=ErrorContext(operation="flush", extra={"batch_size": len(remaining)}),
                    cause=exc,
                ) from exc
            else:
                written += 1

        logger.debug("Persisted %d of %d job transitions individually", written, len(batch))
        return written

    async def flush_all(self) -> int:
        """Flush batches until the buffer is empty."""
        total = 0
        while self._buffer:
            total += await self.flush()
        return total

    # ------------------------------------------------------------------ #
    # Recovery and maintenance
    # ------------------------------------------------------------------ #

    async def recover(self, lane_count: int) -> dict[int, list[JobRecord]]:
        """Load unfinished jobs and assign them to lanes.

        Every persisted pending or running job is returned as pending. Running
        rows are downgraded and the downgrade is written immediately. Stored
        lane indexes outside ``[0, lane_count)`` are remapped with modulo.

        Returns:
            Mapping of lane index to jobs in creation order; every lane index
            is present, possibly with an empty list.
        """
        if isinstance(lane_count, bool) or not isinstance(lane_count, int) or lane_count <= 0:
            raise InvalidLaneCountError(lane_count)

        try:
            await self.flush_all()
            rows = await self._repository.find_many(ACTIVE_STATUSES)
        except Exception as exc:
            logger.exception("Job recovery failed while reading storage")
            raise RecoveryError(
                "Could not load unfinished jobs",
                context=ErrorContext(operation="recover"),
                cause=exc,
            ) from exc

        by_lane: dict[int, list[JobRecord]] = {i: [] for i in range(lane_count)}
        downgraded = 0

        for job in rows:
            if job.reset_for_recovery():
                try:
                    await self._repository.upsert_by_id(job)
                except Exception as exc:
                    logger.exception("Could not persist recovery downgrade of job %s", job.job_id)
                    raise RecoveryError(
                        "Could not downgrade running job",
                        context=ErrorContext(job_id=job.job_id, operation="recover"),
                        cause=exc,
                    ) from exc
                downgraded += 1

            job.lane_index = job.lane_index % lane_count
            by_lane[job.lane_index].append(job)

        for jobs in by_lane.values():
            jobs.sort(key=lambda j: j.created_at)

        logger.info(
            "Recovered %d unfinished jobs across %d lanes (%d were running)",
            len(rows),
            lane_count,
            downgraded,
        )
        return by_lane

    async def cleanup(self, older_than_days: float = 7) -> int:
        """Delete terminal rows completed more than ``older_than_days`` ago.

        Returns:
            Number of rows deleted
        """
        if older_than_days < 0:
            raise InvalidConfigError(f"older_than_days cannot be negative, got {older_than_days}")

        cutoff = time.time() - older_than_days * SECONDS_PER_DAY
        try:
            count = await self._repository.delete_many(TERMINAL_STATUSES, cutoff)
        except Exception as exc:
            logger.exception("Cleanup of finished jobs failed")
            raise CleanupError(
                "Could not delete finished jobs",
                context=ErrorContext(operation="cleanup"),
                cause=exc,
            ) from exc

        logger.info("Cleaned up %d finished jobs older than %s days", count, older_than_days)
        return count

    async def jobs_by_status(self, status: JobStatus | str) -> list[JobRecord]:
        """Read persisted jobs with ``status`` after flushing the buffer."""
        await self.flush_all()
        return await self._repository.find_many({JobStatus(status)})

    async def shutdown(self) -> None:
        """Stop the flush task, flush everything and close the repository."""
        if self._closed:
            return
        self._closed = True

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        try:
            await self.flush_all()
        finally:
            await self._repository.close()


__all__ = ["PersistenceAdapter"]
