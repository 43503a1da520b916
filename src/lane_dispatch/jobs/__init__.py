"""
Job model for the lane dispatcher.

- JobStatus: lifecycle states
- JobRecord: state of one submitted work item
"""

from .types import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    JobRecord,
    JobStatus,
)

__all__ = [
    "JobStatus",
    "JobRecord",
    "VALID_TRANSITIONS",
    "TERMINAL_STATUSES",
    "ACTIVE_STATUSES",
]
