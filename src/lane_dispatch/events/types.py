"""
Dispatch event types.

This module defines the DispatchEvent schema, the single event model
shared by lanes, the lane-set manager and external observers.

Event Categories:
- job.*: Job lifecycle events (queued, started, completed, failed, timed_out)
- lane.*: Single-lane state changes (paused, resumed, shutdown, drained)
- lanes.*: Topology changes (added, removed)
- concurrency.*: Per-lane cap changes
- all.*: Manager-wide state changes
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DispatchEventType(str, Enum):
    """Event types emitted by the dispatcher."""

    # Job lifecycle events
    JOB_QUEUED = "job.queued"
    JOB_STARTED = "job.started"
    JOB_COMPLETED = "job.completed"
    JOB_FAILED = "job.failed"
    JOB_TIMED_OUT = "job.timed_out"

    # Lane events
    LANE_PAUSED = "lane.paused"
    LANE_RESUMED = "lane.resumed"
    LANE_SHUTDOWN = "lane.shutdown"
    LANE_DRAINED = "lane.drained"

    # Topology events
    LANES_ADDED = "lanes.added"
    LANES_REMOVED = "lanes.removed"
    CONCURRENCY_UPDATED = "concurrency.updated"

    # Manager-wide events
    ALL_PAUSED = "all.paused"
    ALL_RESUMED = "all.resumed"
    ALL_SHUTDOWN = "all.shutdown"

    @property
    def is_job_event(self) -> bool:
        return self.value.startswith("job.")

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_EVENT_TYPES


TERMINAL_EVENT_TYPES: frozenset[DispatchEventType] = frozenset({
    DispatchEventType.JOB_COMPLETED,
    DispatchEventType.JOB_FAILED,
    DispatchEventType.JOB_TIMED_OUT,
})


@dataclass
class DispatchEvent:
    """Unified dispatcher event.

    Job events carry ``job_id`` and the index of the lane that produced them.
    Manager-wide events leave ``lane_index`` as None. A lane retired by a
    resize or concurrency change keeps its index while it drains, so its
    events set ``data["draining"]`` to tell it apart from a new lane at the
    same index.
    """
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    type: DispatchEventType = DispatchEventType.JOB_QUEUED
    timestamp: float = field(default_factory=time.time)

    job_id: str | None = None
    lane_index: int | None = None

    data: dict[str, Any] = field(default_factory=dict)

    schema_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "event_id": self.event_id,
            "type": self.type.value,
            "timestamp": self.timestamp,
            "job_id": self.job_id,
            "lane_index": self.lane_index,
            "data": self.data,
            "schema_version": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DispatchEvent:
        """Deserialize from dictionary."""
        return cls(
            event_id=data.get("event_id", str(uuid.uuid4())),
            type=DispatchEventType(data["type"]),
            timestamp=data.get("timestamp", time.time()),
            job_id=data.get("job_id"),
            lane_index=data.get("lane_index"),
            data=dict(data.get("data", {})),
            schema_version=data.get("schema_version", 1),
        )


__all__ = [
    "DispatchEventType",
    "DispatchEvent",
    "TERMINAL_EVENT_TYPES",
]
