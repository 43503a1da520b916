"""
Lane scheduling.

- Lane: one concurrency-bounded FIFO queue
- LaneSetManager: load balancing, completion routing and resizing
"""

from .lane import DEFAULT_TIMEOUT_MS, Lane, LaneEventSink, LaneStats
from .manager import LaneSetManager

__all__ = [
    "Lane",
    "LaneStats",
    "LaneEventSink",
    "LaneSetManager",
    "DEFAULT_TIMEOUT_MS",
]
