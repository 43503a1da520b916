"""
PostgreSQL job repository.

Persists JobRecords through an asyncpg pool. Batch upserts run inside one
transaction so a batch lands completely or not at all. Payloads are stored
as JSONB; a payload json.dumps rejects raises JobSerializationError before
anything is sent.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import asyncpg

from ..errors import ErrorContext, JobSerializationError
from ..jobs.types import JobRecord, JobStatus
from .store import JobRepository


def _sanitize_table_name(name: str) -> str:
    """Ensure the table name is safe for SQL interpolation."""
    if not name:
        raise ValueError("table_name cannot be empty")
    if not re.fullmatch(r"[a-zA-Z0-9_]+", name):
        raise ValueError(f"Invalid table name: {name!r}")
    return name


def _to_timestamptz(value: Any) -> Any:
    """Convert epoch seconds floats into timezone-aware datetimes for TIMESTAMPTZ columns."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    return value


def _from_timestamptz(value: Any) -> float | None:
    if value is None:
        return None
    if hasattr(value, "timestamp"):
        return value.timestamp()
    return float(value)


class PostgresJobRepository(JobRepository):
    """PostgreSQL implementation of JobRepository.

    Table schema:
    - job_id (TEXT PRIMARY KEY)
    - payload (JSONB)
    - status (TEXT)
    - lane_index (INTEGER)
    - created_at, started_at, completed_at (TIMESTAMPTZ)
    - timeout_ms (INTEGER)
    - error (TEXT)
    """

    TABLE_NAME = "dispatch_jobs"

    def __init__(
        self,
        pool: Any,  # asyncpg.Pool
        table_name: str | None = None,
        *,
        owns_pool: bool = False,
    ):
        self._pool = pool
        self._table = _sanitize_table_name(table_name or self.TABLE_NAME)
        self._owns_pool = owns_pool
        self._ensured = False
        self._lock = asyncio.Lock()

    @classmethod
    async def connect(
        cls,
        dsn: str,
        table_name: str | None = None,
        *,
        min_size: int = 1,
        max_size: int = 5,
    ) -> PostgresJobRepository:
        """Create a pool for ``dsn`` that the repository closes on ``close()``."""
        pool = await asyncpg.create_pool(dsn, min_size=min_size, max_size=max_size)
        return cls(pool, table_name, owns_pool=True)

    @property
    def table_name(self) -> str:
        return self._table

    async def _ensure_table(self) -> None:
        """Create the jobs table if it doesn't exist."""
        async with self._lock:
            if self._ensured:
                return

            ddl = f'''
            CREATE TABLE IF NOT EXISTS "{self._table}" (
                job_id TEXT PRIMARY KEY,
                payload JSONB,
                status TEXT NOT NULL DEFAULT 'pending',
                lane_index INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                timeout_ms INTEGER,
                error TEXT
            );
            CREATE INDEX IF NOT EXISTS "{self._table}_status_idx" ON "{self._table}" (status);
            CREATE INDEX IF NOT EXISTS "{self._table}_completed_at_idx" ON "{self._table}" (completed_at)
            '''

            async with self._pool.acquire() as conn:
                for stmt in [s.strip() for s in ddl.split(";") if s.strip()]:
                    await conn.execute(stmt)

            self._ensured = True

    def _upsert_sql(self) -> str:
        t = self._table
        return f'''
        INSERT INTO "{t}" (job_id, payload, status, lane_index, created_at,
                           started_at, completed_at, timeout_ms, error)
        VALUES ($1, $2::jsonb, $3, $4, $5, $6, $7, $8, $9)
        ON CONFLICT (job_id) DO UPDATE SET
            status = EXCLUDED.status,
            lane_index = EXCLUDED.lane_index,
            started_at = COALESCE(EXCLUDED.started_at, "{t}".started_at),
            completed_at = COALESCE(EXCLUDED.completed_at, "{t}".completed_at),
            error = COALESCE(EXCLUDED.error, "{t}".error)
        '''

    def _job_to_args(self, job: JobRecord) -> tuple[Any, ...]:
        try:
            payload = json.dumps(job.payload)
        except (TypeError, ValueError) as exc:
            raise JobSerializationError(
                f"Payload of type {type(job.payload).__name__} is not JSON serializable",
                context=ErrorContext(job_id=job.job_id, operation="upsert"),
                cause=exc,
            ) from exc
        return (
            job.job_id,
            payload,
            job.status.value,
            job.lane_index,
            _to_timestamptz(job.created_at),
            _to_timestamptz(job.started_at),
            _to_timestamptz(job.completed_at),
            job.timeout_ms,
            job.error,
        )

    def _row_to_job(self, row: Any) -> JobRecord:
        payload = row["payload"]
        if isinstance(payload, str):
            payload = json.loads(payload)
        return JobRecord(
            job_id=row["job_id"],
            payload=payload,
            status=JobStatus(row["status"]),
            lane_index=row["lane_index"] or 0,
            created_at=_from_timestamptz(row["created_at"]),
            started_at=_from_timestamptz(row["started_at"]),
            completed_at=_from_timestamptz(row["completed_at"]),
            timeout_ms=row["timeout_ms"],
            error=row["error"],
        )

    async def upsert_by_id(self, record: JobRecord) -> None:
        await self._ensure_table()

        async with self._pool.acquire() as conn:
            await conn.execute(self._upsert_sql(), *self._job_to_args(record))

    async def batch_upsert(self, records: list[JobRecord]) -> None:
        if not records:
            return
        await self._ensure_table()

        args = [self._job_to_args(r) for r in records]
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(self._upsert_sql(), args)

    async def find_many(self, statuses: Iterable[JobStatus]) -> list[JobRecord]:
        await self._ensure_table()

        q = f'SELECT * FROM "{self._table}" WHERE status = ANY($1::text[]) ORDER BY created_at ASC'
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(q, [s.value for s in statuses])
            return [self._row_to_job(row) for row in rows]

    async def delete_many(
        self,
        statuses: Iterable[JobStatus],
        completed_before: float,
    ) -> int:
        await self._ensure_table()

        q = f'''
        DELETE FROM "{self._table}"
        WHERE status = ANY($1::text[]) AND completed_at < $2
        '''
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                q,
                [s.value for s in statuses],
                _to_timestamptz(completed_before),
            )
        # asyncpg returns the command tag, e.g. "DELETE 3"
        try:
            return int(result.split()[-1])
        except (AttributeError, IndexError, ValueError):
            return 0

    async def close(self) -> None:
        if self._owns_pool:
            await self._pool.close()


__all__ = ["PostgresJobRepository"]
