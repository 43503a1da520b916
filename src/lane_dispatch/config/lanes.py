"""
Lane and persistence configuration.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import (
    InvalidConcurrencyError,
    InvalidConfigError,
    InvalidLaneCountError,
    InvalidTimeoutError,
)
from .base import PersistenceBackendType


@dataclass
class LaneConfig:
    """Topology and admission defaults for the lane set."""

    lane_count: int = 1
    concurrency: int = 1
    default_timeout_ms: int = 30_000

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.lane_count <= 0:
            raise InvalidLaneCountError(self.lane_count)
        if self.concurrency <= 0:
            raise InvalidConcurrencyError(self.concurrency)
        if self.default_timeout_ms <= 0:
            raise InvalidTimeoutError(self.default_timeout_ms)


@dataclass
class PersistenceConfig:
    """Configuration for durable job state."""

    backend: PersistenceBackendType = "memory"
    dsn: str | None = None
    table_name: str = "dispatch_jobs"

    # Write-behind batching
    batch_size: int = 100
    flush_interval_ms: int = 500

    # Auto-cleanup of finished jobs (0 disables)
    cleanup_after_days: float = 0
    cleanup_interval_ms: int = 24 * 60 * 60 * 1000

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.backend not in ("none", "memory", "postgres"):
            raise InvalidConfigError(f"Invalid persistence backend: {self.backend}")
        if self.backend == "postgres" and not self.dsn:
            raise InvalidConfigError("postgres backend requires a dsn")
        if self.batch_size <= 0:
            raise InvalidConfigError("batch_size must be positive")
        if self.flush_interval_ms <= 0:
            raise InvalidConfigError("flush_interval_ms must be positive")
        if self.cleanup_after_days < 0:
            raise InvalidConfigError("cleanup_after_days cannot be negative")
        if self.cleanup_interval_ms <= 0:
            raise InvalidConfigError("cleanup_interval_ms must be positive")

    @property
    def enabled(self) -> bool:
        return self.backend != "none"


__all__ = ["LaneConfig", "PersistenceConfig"]
