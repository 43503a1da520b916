"""
lane-dispatch: bounded-concurrency job dispatching across independent lanes.

Jobs are submitted with an opaque payload, placed on the least loaded lane,
admitted in FIFO order up to each lane's concurrency cap, and finished by an
external completion or failure signal, or by their timeout. Lifecycle
transitions are published on an event bus and written behind to durable
storage, from which unfinished jobs are recovered at startup.

Example:
    ```python
    from lane_dispatch import LaneDispatcher, Settings, LaneConfig

    settings = Settings(lanes=LaneConfig(lane_count=4, concurrency=2))
    async with await LaneDispatcher.create(settings) as dispatcher:
        job_id = dispatcher.submit({"order": 42})
        ...
        dispatcher.complete(job_id)
    ```
"""

from .config import (
    LaneConfig,
    LoggingConfig,
    PersistenceConfig,
    Settings,
    configure,
    get_settings,
    load_env,
)
from .dispatcher import LaneDispatcher
from .errors import (
    CleanupError,
    JobSerializationError,
    ConfigError,
    DispatchError,
    ErrorCode,
    ErrorContext,
    FlushError,
    InvalidConcurrencyError,
    InvalidConfigError,
    InvalidLaneCountError,
    InvalidTimeoutError,
    InvalidTransitionError,
    LaneError,
    LaneShutdownError,
    PersistenceError,
    RecoveryError,
    is_retryable,
)
from .events import (
    DispatchEvent,
    DispatchEventType,
    EventBus,
    EventSubscription,
    InMemoryEventBus,
)
from .jobs import JobRecord, JobStatus
from .lanes import Lane, LaneSetManager, LaneStats
from .logging import configure_from_settings, configure_logging
from .persistence import (
    InMemoryJobRepository,
    JobRepository,
    PersistenceAdapter,
    PostgresJobRepository,
)

__version__ = "0.1.0"

__all__ = [
    # Facade
    "LaneDispatcher",
    # Scheduling
    "Lane",
    "LaneStats",
    "LaneSetManager",
    # Jobs
    "JobRecord",
    "JobStatus",
    # Events
    "DispatchEvent",
    "DispatchEventType",
    "EventBus",
    "EventSubscription",
    "InMemoryEventBus",
    # Persistence
    "PersistenceAdapter",
    "JobRepository",
    "InMemoryJobRepository",
    "PostgresJobRepository",
    # Config
    "Settings",
    "LaneConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "get_settings",
    "configure",
    "load_env",
    # Logging
    "configure_logging",
    "configure_from_settings",
    # Errors
    "ErrorCode",
    "ErrorContext",
    "DispatchError",
    "ConfigError",
    "InvalidLaneCountError",
    "InvalidConcurrencyError",
    "InvalidTimeoutError",
    "InvalidConfigError",
    "LaneError",
    "LaneShutdownError",
    "InvalidTransitionError",
    "PersistenceError",
    "FlushError",
    "RecoveryError",
    "CleanupError",
    "JobSerializationError",
    "is_retryable",
]
