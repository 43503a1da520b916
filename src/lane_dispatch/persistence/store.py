"""
Job repository interface and in-memory implementation.

The repository is the storage boundary the PersistenceAdapter writes
through. Upserts create rows the store has never seen and otherwise update
the mutable lifecycle columns only: status and lane_index always,
started_at / completed_at / error when the incoming record has them set.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Iterable

from ..jobs.types import JobRecord, JobStatus


class JobRepository(ABC):
    """Abstract interface for job persistence."""

    @abstractmethod
    async def upsert_by_id(self, record: JobRecord) -> None:
        """Create or update a single job row."""
        ...

    @abstractmethod
    async def batch_upsert(self, records: list[JobRecord]) -> None:
        """Create or update many rows atomically: all of them or none."""
        ...

    @abstractmethod
    async def find_many(self, statuses: Iterable[JobStatus]) -> list[JobRecord]:
        """Return every job whose status is in ``statuses``, oldest first."""
        ...

    @abstractmethod
    async def delete_many(
        self,
        statuses: Iterable[JobStatus],
        completed_before: float,
    ) -> int:
        """Delete rows with a matching status and completed_at < cutoff.

        Returns:
            Number of rows deleted
        """
        ...

    async def close(self) -> None:
        """Release the storage connection."""
        return None


def merge_record(existing: JobRecord, incoming: JobRecord) -> JobRecord:
    """Apply the upsert update rule to an already stored record."""
    merged = copy.deepcopy(existing)
    merged.status = incoming.status
    merged.lane_index = incoming.lane_index
    if incoming.started_at is not None:
        merged.started_at = incoming.started_at
    if incoming.completed_at is not None:
        merged.completed_at = incoming.completed_at
    if incoming.error is not None:
        merged.error = incoming.error
    return merged


class InMemoryJobRepository(JobRepository):
    """In-memory job repository.

    Suitable for testing and single-process deployments. Records are deep
    copied on the way in and out so callers never share state with the store.
    """

    def __init__(self):
        self._rows: dict[str, JobRecord] = {}
        self.closed = False

    def __len__(self) -> int:
        return len(self._rows)

    def get(self, job_id: str) -> JobRecord | None:
        row = self._rows.get(job_id)
        return copy.deepcopy(row) if row else None

    async def upsert_by_id(self, record: JobRecord) -> None:
        self._apply(record)

    async def batch_upsert(self, records: list[JobRecord]) -> None:
        staged = dict(self._rows)
        for record in records:
            existing = staged.get(record.job_id)
            staged[record.job_id] = (
                merge_record(existing, record) if existing else copy.deepcopy(record)
            )
        self._rows = staged

    async def find_many(self, statuses: Iterable[JobStatus]) -> list[JobRecord]:
        wanted = set(statuses)
        rows = [copy.deepcopy(r) for r in self._rows.values() if r.status in wanted]
        rows.sort(key=lambda r: r.created_at)
        return rows

    async def delete_many(
        self,
        statuses: Iterable[JobStatus],
        completed_before: float,
    ) -> int:
        wanted = set(statuses)
        doomed = [
            job_id
            for job_id, row in self._rows.items()
            if row.status in wanted
            and row.completed_at is not None
            and row.completed_at < completed_before
        ]
        for job_id in doomed:
            del self._rows[job_id]
        return len(doomed)

    async def close(self) -> None:
        self.closed = True

    def _apply(self, record: JobRecord) -> None:
        existing = self._rows.get(record.job_id)
        self._rows[record.job_id] = (
            merge_record(existing, record) if existing else copy.deepcopy(record)
        )


__all__ = [
    "JobRepository",
    "InMemoryJobRepository",
    "merge_record",
]
