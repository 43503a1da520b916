"""
Job types for the lane dispatcher.

This module defines the JobStatus enum and JobRecord dataclass
that form the core of the job lifecycle system.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ..errors import ErrorContext, InvalidTransitionError


class JobStatus(str, Enum):
    """Job lifecycle states.

    State transitions:
    - PENDING -> RUNNING (admitted by its lane)
    - RUNNING -> COMPLETED (external success signal)
    - RUNNING -> FAILED (external failure signal)
    - RUNNING -> TIMED_OUT (no signal before timeout_ms elapsed)
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """Check if the job is still active."""
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.TIMED_OUT,
})

ACTIVE_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.PENDING,
    JobStatus.RUNNING,
})


# Valid state transitions
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.TIMED_OUT,
    },
    # Terminal states have no valid transitions
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
    JobStatus.TIMED_OUT: set(),
}


@dataclass
class JobRecord:
    """State of one submitted work item.

    The payload is opaque to the dispatcher; it is stored and handed back
    untouched. Timestamps are epoch seconds.
    """
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    payload: Any = None
    status: JobStatus = JobStatus.PENDING
    lane_index: int = 0

    # Timestamps
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    completed_at: float | None = None

    timeout_ms: int | None = None
    error: str | None = None

    def can_transition_to(self, new_status: JobStatus) -> bool:
        """Check if transition to new_status is valid."""
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: JobStatus, *, error: str | None = None) -> None:
        """Move this record to new_status in place, stamping timestamps.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Invalid transition: {self.status.value} -> {new_status.value}",
                context=ErrorContext(job_id=self.job_id, lane_index=self.lane_index),
            )

        now = time.time()
        self.status = new_status
        if new_status == JobStatus.RUNNING:
            self.started_at = now
        if new_status.is_terminal:
            self.completed_at = now
        if new_status == JobStatus.FAILED:
            self.error = error

    def reset_for_recovery(self) -> bool:
        """Downgrade a RUNNING record found at startup back to PENDING.

        A running row seen at startup belongs to a process that died while the
        job was in flight, so nobody holds a handle on it any more.

        Returns:
            True if the record was downgraded
        """
        if self.status != JobStatus.RUNNING:
            return False
        self.status = JobStatus.PENDING
        return True

    def snapshot(self) -> JobRecord:
        """Detached copy for persistence buffers and observers."""
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "job_id": self.job_id,
            "payload": self.payload,
            "status": self.status.value,
            "lane_index": self.lane_index,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "timeout_ms": self.timeout_ms,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobRecord:
        """Deserialize from dictionary."""
        return cls(
            job_id=data.get("job_id", str(uuid.uuid4())),
            payload=data.get("payload"),
            status=JobStatus(data.get("status", "pending")),
            lane_index=int(data.get("lane_index", 0)),
            created_at=data.get("created_at", time.time()),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            timeout_ms=data.get("timeout_ms"),
            error=data.get("error"),
        )


__all__ = [
    "JobStatus",
    "JobRecord",
    "VALID_TRANSITIONS",
    "TERMINAL_STATUSES",
    "ACTIVE_STATUSES",
]
